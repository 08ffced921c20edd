"""Snapshot a UPnP ContentDirectory into a zip archive."""

__version__ = "0.1.0"
