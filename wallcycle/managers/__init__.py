"""Wallpaper backends for wallcycle."""

from .swww import SwwwApplier

__all__ = [
    "SwwwApplier",
]
