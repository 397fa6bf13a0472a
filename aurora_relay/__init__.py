"""Aurora smart-home command/state relay."""

from .version import __version__

__all__ = ["__version__"]
