"""wallcycle: per-output wallpaper rotation with a size-bounded image cache."""

__version__ = "0.1.0"
