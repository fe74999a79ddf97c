"""Build customized Debian Live USB media from an official ISO."""

from custom_live.__version__ import __version__

__all__ = ["__version__"]
