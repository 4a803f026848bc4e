"""Packrat release acquisition core."""

from packrat.__version__ import __version__

__all__ = ["__version__"]
