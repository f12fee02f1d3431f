"""FEDY: task lifecycle scheduler for parallel coding agents."""

from fedy.config import VERSION as __version__

__all__ = ["__version__"]
