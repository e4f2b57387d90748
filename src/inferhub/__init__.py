"""inferhub — local inference runtime manager."""

__version__ = "0.1.0"
