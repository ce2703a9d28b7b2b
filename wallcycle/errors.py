"""User-facing error types raised by the rotation core."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class WallcycleError(RuntimeError):
    """Base error carrying a stable machine-readable code and a remediation hint."""

    code = "wallcycle_error"
    hint = ""

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if hint is not None:
            self.hint = hint

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "hint": self.hint}


class PoolNotEnabled(WallcycleError):
    code = "pool_not_enabled"
    hint = "Enable the pool and add at least one source under 'pool' in config.yml."

    def __init__(self, message: str = "Pool is not enabled or has no sources") -> None:
        super().__init__(message)


class NoImagesForPack(WallcycleError):
    code = "no_images_for_pack"

    def __init__(self, pack: str) -> None:
        super().__init__(
            f"No images found for pack: {pack}",
            hint=f"Run 'wallcycle pool-status --refresh' or 'wallcycle hydrate-pack {pack}'.",
        )
        self.pack = pack


class NoSelectionPossible(WallcycleError):
    code = "no_selection_possible"
    hint = "The pool is non-empty but nothing could be selected; please report this."

    def __init__(self, pack: str) -> None:
        super().__init__(f"No images could be selected for outputs (pack: {pack})")
        self.pack = pack


class HydrationFailure(WallcycleError):
    code = "hydration_failure"
    hint = "Check network access and 'wallcycle pool-status --refresh'."

    def __init__(self, message: str, *, failures: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.failures = failures or []

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.failures:
            payload["failures"] = self.failures
        return payload


class PackNotFound(WallcycleError):
    code = "pack_not_found"
    hint = "Check the 'packs' section of config.yml; 'wallcycle status' lists configured packs."

    def __init__(self, pack: Optional[str] = None) -> None:
        super().__init__(f"Pack not found: {pack}" if pack else "No packs configured")
        self.pack = pack


class NoOutputsDetected(WallcycleError):
    code = "no_outputs"
    hint = "Make sure hyprctl or swww can see your monitors."

    def __init__(self) -> None:
        super().__init__("No outputs detected")


class StateLocked(WallcycleError):
    code = "state_locked"
    hint = "Another wallcycle process is running; retry in a moment."


class ApplyFailure(WallcycleError):
    code = "apply_failed"
    hint = "Check that swww and swww-daemon are installed and a Wayland session is active."
