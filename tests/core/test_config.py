from pathlib import Path

import pytest
import yaml

from wallcycle.config import (
    ConfigError,
    ConfigPaths,
    GlobalConfig,
    LocalPackConfig,
    StaticUrlPackConfig,
    bootstrap,
    load_global_config,
    normalize_pack_name,
)


def _write(path: Path, payload) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(payload))
    return path


def test_normalize_pack_name():
    assert normalize_pack_name("  Nature Shots ") == "nature-shots"
    assert normalize_pack_name("city__Lights!!") == "city-lights"
    assert normalize_pack_name("$$$") == ""


def test_bootstrap_creates_default_layout(tmp_path):
    paths = ConfigPaths.from_base_dir(tmp_path / "wallcycle")

    report = bootstrap(paths)

    assert report.base_created
    assert report.state_dir_created
    assert report.global_config_created
    config = load_global_config(paths.global_config)
    assert list(config.packs) == ["wallpapers"]
    assert config.runtime.storage_dir == paths.state_dir


def test_bootstrap_keeps_existing_config_unless_overwritten(tmp_path):
    paths = ConfigPaths.from_base_dir(tmp_path)
    bootstrap(paths)
    paths.global_config.write_text("packs: {}\n")

    again = bootstrap(paths)
    assert not again.global_config_created
    assert paths.global_config.read_text() == "packs: {}\n"

    forced = bootstrap(paths, overwrite=True)
    assert forced.global_config_overwritten
    assert "wallpapers" in paths.global_config.read_text()


def test_pack_names_are_normalized_and_typed(tmp_path):
    path = _write(
        tmp_path / "config.yml",
        {
            "packs": {
                "Nature Shots": {"type": "local", "paths": ["~/Pictures/nature"]},
                "Daily": {"type": "static_url", "url": "https://img.test/daily.jpg", "ttlSec": 3600},
            }
        },
    )

    config = load_global_config(path)

    assert list(config.packs) == ["nature-shots", "daily"]
    assert isinstance(config.packs["nature-shots"], LocalPackConfig)
    daily = config.packs["daily"]
    assert isinstance(daily, StaticUrlPackConfig)
    assert daily.ttl_sec == 3600
    assert daily.url_list == ["https://img.test/daily.jpg"]


def test_camel_case_aliases_are_accepted():
    config = GlobalConfig.model_validate(
        {
            "selection": {"perOutputCooldown": 3, "globalCooldown": 0, "avoidSameTickDuplicates": False},
            "cache": {"maxMB": 1, "defaultTtlSec": 60, "downloadDir": "/tmp/walls"},
            "pool": {"enabled": True, "sources": [{"name": "Nature", "maxCandidates": 5}]},
        }
    )

    assert config.selection.per_output_cooldown == 3
    assert config.selection.global_cooldown == 0
    assert not config.selection.avoid_same_tick_duplicates
    assert config.cache.max_bytes == 1024 * 1024
    assert config.cache.download_dir == Path("/tmp/walls")
    assert config.pool.sources[0].name == "nature"
    assert config.pool.sources[0].max_candidates == 5


def test_pool_is_reserved_pack_name(tmp_path):
    path = _write(tmp_path / "config.yml", {"packs": {"Pool": {"type": "local", "paths": ["/x"]}}})

    with pytest.raises(ConfigError, match="reserved"):
        load_global_config(path)


def test_unknown_keys_are_rejected(tmp_path):
    path = _write(tmp_path / "config.yml", {"selection": {"cooldown": 5}})

    with pytest.raises(ConfigError):
        load_global_config(path)


def test_static_url_pack_requires_a_url(tmp_path):
    path = _write(tmp_path / "config.yml", {"packs": {"empty": {"type": "static_url", "urls": ["  "]}}})

    with pytest.raises(ConfigError, match="url"):
        load_global_config(path)


def test_unknown_pack_type_is_rejected(tmp_path):
    path = _write(tmp_path / "config.yml", {"packs": {"reddit": {"type": "reddit", "subreddits": ["x"]}}})

    with pytest.raises(ConfigError):
        load_global_config(path)


def test_missing_file_and_non_mapping_payload(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_global_config(tmp_path / "absent.yml")

    listing = tmp_path / "list.yml"
    listing.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_global_config(listing)


def test_bootstrap_keeps_downloads_away_from_local_library(tmp_path):
    paths = ConfigPaths.from_base_dir(tmp_path / "wallcycle")
    bootstrap(paths)

    config = load_global_config(paths.global_config)

    library = config.packs["wallpapers"].paths[0].expanduser()
    download_dir = config.cache.download_dir.expanduser()
    assert library != download_dir
    assert download_dir not in library.parents
    assert library not in download_dir.parents


def test_local_pack_inside_download_dir_is_rejected(tmp_path):
    downloads = tmp_path / "walls"
    same = _write(
        tmp_path / "same.yml",
        {"cache": {"download_dir": str(downloads)}, "packs": {"mine": {"type": "local", "paths": [str(downloads)]}}},
    )
    nested = _write(
        tmp_path / "nested.yml",
        {
            "cache": {"download_dir": str(downloads)},
            "packs": {"mine": {"type": "local", "paths": [str(tmp_path / "other"), str(downloads / "nature")]}},
        },
    )

    with pytest.raises(ConfigError, match="download_dir"):
        load_global_config(same)
    with pytest.raises(ConfigError, match="download_dir"):
        load_global_config(nested)
