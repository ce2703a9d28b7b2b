"""Configuration models and helpers for wallcycle."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

POOL_PACK_NAME = "pool"


@dataclass(frozen=True)
class BootstrapReport:
    """Summary of files/directories created during initialisation."""

    base_created: bool
    state_dir_created: bool
    global_config_created: bool
    global_config_overwritten: bool


class ConfigError(RuntimeError):
    """Raised when configuration files cannot be parsed or are invalid."""


def normalize_pack_name(value: str) -> str:
    """Lowercase, turn whitespace/underscores into dashes and drop anything else."""

    name = re.sub(r"[\s_]+", "-", value.strip().lower())
    name = re.sub(r"[^a-z0-9-]", "", name)
    return re.sub(r"-+", "-", name)


def _absolute(path: Path) -> Path:
    return Path(os.path.abspath(path.expanduser()))


@dataclass(frozen=True)
class ConfigPaths:
    """Resolved filesystem locations used by the application."""

    base_dir: Path
    global_config: Path

    @classmethod
    def default(cls) -> "ConfigPaths":
        """Return default locations under the user's home directory."""

        base = Path.home() / ".wallcycle"
        return cls.from_base_dir(base)

    @classmethod
    def from_base_dir(cls, base_dir: Path) -> "ConfigPaths":
        """Construct paths using ``base_dir`` as root."""

        base_dir = base_dir.expanduser()
        return cls(base_dir=base_dir, global_config=base_dir / "config.yml")

    @property
    def state_dir(self) -> Path:
        """Default directory for state, favorites and history files."""

        return self.base_dir / "state"


class SelectionSettings(BaseModel):
    """Cooldown windows applied when picking images for outputs."""

    per_output_cooldown: int = Field(default=10, ge=0, alias="perOutputCooldown")
    global_cooldown: int = Field(default=20, ge=0, alias="globalCooldown")
    avoid_same_tick_duplicates: bool = Field(default=True, alias="avoidSameTickDuplicates")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class CacheSettings(BaseModel):
    """Where downloads and the cache index live, and how large they may grow."""

    dir: Path = Field(default=Path("~/.cache/wallcycle"))
    download_dir: Path = Field(default=Path("~/.cache/wallcycle/downloads"), alias="downloadDir")
    max_mb: float = Field(default=2048, gt=0, alias="maxMB")
    default_ttl_sec: int = Field(default=604800, gt=0, alias="defaultTtlSec")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @property
    def max_bytes(self) -> int:
        return int(self.max_mb * 1024 * 1024)


class PoolSourceSettings(BaseModel):
    """One entry of the aggregated pool."""

    name: str
    weight: int = Field(default=1, ge=1)
    max_candidates: Optional[int] = Field(default=None, ge=1, alias="maxCandidates")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        name = normalize_pack_name(value)
        if not name:
            raise ValueError("Pool source name must contain letters or digits.")
        return name


class PoolSettings(BaseModel):
    """Weighted combination of several packs."""

    enabled: bool = Field(default=False)
    dedupe: Literal["path", "hash", "url"] = Field(default="path")
    sources: List[PoolSourceSettings] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class LocalPackConfig(BaseModel):
    """Images already on disk, scanned recursively."""

    type: Literal["local"]
    paths: List[Path] = Field(min_length=1)

    model_config = ConfigDict(extra="forbid")


class StaticUrlPackConfig(BaseModel):
    """One or more fixed image URLs downloaded into the cache."""

    type: Literal["static_url"]
    url: Optional[str] = None
    urls: List[str] = Field(default_factory=list)
    different_images: bool = Field(default=False, alias="differentImages")
    count: Optional[int] = Field(default=None, ge=1)
    ttl_sec: Optional[int] = Field(default=None, gt=0, alias="ttlSec")
    author_name: Optional[str] = Field(default=None, alias="authorName")
    author_url: Optional[str] = Field(default=None, alias="authorUrl")
    post_url: Optional[str] = Field(default=None, alias="postUrl")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @model_validator(mode="after")
    def check_urls(self) -> "StaticUrlPackConfig":
        self.urls = [item.strip() for item in self.urls if item and item.strip()]
        if self.url is not None:
            self.url = self.url.strip() or None
        if not self.url and not self.urls:
            raise ValueError("static_url packs need 'url' or 'urls'.")
        return self

    @property
    def url_list(self) -> List[str]:
        return list(self.urls) if self.urls else [self.url or ""]


PackConfig = Annotated[Union[LocalPackConfig, StaticUrlPackConfig], Field(discriminator="type")]


class TransitionSettings(BaseModel):
    """Arguments forwarded to ``swww img``."""

    type: str = Field(default="center")
    fps: int = Field(default=60, ge=1)
    duration: float = Field(default=0.7, ge=0)
    angle: Optional[float] = None
    pos: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class RotationSettings(BaseModel):
    """Schedule used by ``wallcycle serve``."""

    interval: str = Field(default="30m")

    model_config = ConfigDict(extra="forbid")


class HttpSettings(BaseModel):
    """Timeouts and retry policy for image downloads."""

    timeout_seconds: float = Field(default=15.0, gt=0)
    retries: int = Field(default=2, ge=0)
    backoff_seconds: float = Field(default=0.3, ge=0.0)
    min_image_bytes: int = Field(default=1024, ge=0)

    model_config = ConfigDict(extra="forbid")


class RuntimeSettings(BaseModel):
    """Runtime-level defaults."""

    storage_dir: Path = Field(default_factory=lambda: ConfigPaths.default().state_dir)
    log_level: str = Field(default="INFO")
    lock_timeout_seconds: float = Field(default=30.0)
    namespace: str = Field(default="wallcycle")

    model_config = ConfigDict(extra="forbid")


class GlobalConfig(BaseModel):
    """Top-level configuration file model."""

    selection: SelectionSettings = Field(default_factory=SelectionSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    packs: Dict[str, PackConfig] = Field(default_factory=dict)
    transition: TransitionSettings = Field(default_factory=TransitionSettings)
    rotation: RotationSettings = Field(default_factory=RotationSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)

    model_config = ConfigDict(extra="forbid")

    @field_validator("packs", mode="before")
    @classmethod
    def _normalize_pack_names(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        normalized: Dict[str, Any] = {}
        for raw_name, pack in value.items():
            name = normalize_pack_name(str(raw_name))
            if not name:
                raise ValueError(f"Invalid pack name: {raw_name!r}")
            if name == POOL_PACK_NAME:
                raise ValueError(f"'{POOL_PACK_NAME}' is reserved for the aggregated pool.")
            normalized[name] = pack
        return normalized

    @model_validator(mode="after")
    def _check_local_paths_outside_downloads(self) -> "GlobalConfig":
        # Hard pruning deletes every image under download_dir, so a local
        # library must never live there.
        download_dir = _absolute(self.cache.download_dir)
        for name, pack in self.packs.items():
            if not isinstance(pack, LocalPackConfig):
                continue
            for path in pack.paths:
                resolved = _absolute(path)
                if resolved == download_dir or download_dir in resolved.parents:
                    raise ValueError(
                        f"Local pack '{name}' path {path} is inside cache.download_dir {self.cache.download_dir}; "
                        "point download_dir somewhere else."
                    )
        return self


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"Configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse YAML file: {path}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping at top level of {path}")
    return data


def load_global_config(path: Path) -> GlobalConfig:
    """Load and validate the global configuration file."""

    payload = _read_yaml(path)
    try:
        return GlobalConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc


def _default_global_config(paths: ConfigPaths) -> Dict[str, Any]:
    """Dictionary representing the starter global configuration."""

    return {
        "selection": {
            "per_output_cooldown": 10,
            "global_cooldown": 20,
            "avoid_same_tick_duplicates": True,
        },
        "cache": {
            "dir": "~/.cache/wallcycle",
            "download_dir": "~/.cache/wallcycle/downloads",
            "max_mb": 2048,
            "default_ttl_sec": 604800,
        },
        "pool": {
            "enabled": False,
            "dedupe": "path",
            "sources": [],
        },
        "packs": {
            "wallpapers": {
                "type": "local",
                "paths": ["~/Pictures/Wallpapers"],
            },
        },
        "transition": {"type": "center", "fps": 60, "duration": 0.7},
        "rotation": {"interval": "30m"},
        "runtime": {
            "storage_dir": str(paths.state_dir),
            "log_level": "INFO",
            "lock_timeout_seconds": 30,
            "namespace": "wallcycle",
        },
    }


def _write_yaml(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, sort_keys=False)


def bootstrap(paths: ConfigPaths, overwrite: bool = False) -> BootstrapReport:
    """Ensure configuration directories/files exist.

    Parameters
    ----------
    paths:
        Target filesystem layout.
    overwrite:
        When ``True`` the global config file is re-written even if it already exists.
    """

    base_created = False
    state_dir_created = False
    global_config_created = False
    global_config_overwritten = False

    if not paths.base_dir.exists():
        paths.base_dir.mkdir(parents=True, exist_ok=True)
        base_created = True

    if not paths.state_dir.exists():
        paths.state_dir.mkdir(parents=True, exist_ok=True)
        state_dir_created = True

    existing_global = paths.global_config.exists()
    if not existing_global or overwrite:
        _write_yaml(paths.global_config, _default_global_config(paths))
        global_config_created = True
        global_config_overwritten = existing_global and overwrite

    return BootstrapReport(
        base_created=base_created,
        state_dir_created=state_dir_created,
        global_config_created=global_config_created,
        global_config_overwritten=global_config_overwritten,
    )
