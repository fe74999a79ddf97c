"""Version information for custom-live."""

__version__ = "1.2.0"
