"""Fatal export errors."""

from __future__ import annotations


class ExportError(Exception):
    """Raised when an export cannot complete at all."""


class AllocationExhaustedError(ExportError):
    """Raised when every collision suffix for an archive path is taken."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"No free archive path left for {path}")
