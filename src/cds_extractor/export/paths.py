"""Collision-free archive entry naming."""

from __future__ import annotations

import re

from cds_extractor.export.exceptions import AllocationExhaustedError

XML_SUFFIX = ".xml"
ARCHIVE_SUFFIX = ".zip"
COLLISION_MARKER = "$"

# Characters that are illegal in file names on at least one common platform.
_ILLEGAL_CHARS = re.compile(r'[\\/:*?"<>|]')

# Largest collision index tried before giving up.
MAX_COLLISION_SUFFIX = 2**31 - 1


def to_file_name(name: str) -> str:
    """Replace characters that are illegal in file paths with underscores."""
    return _ILLEGAL_CHARS.sub("_", name)


def range_suffix(start: int, end: int) -> str:
    """Suffix for a page that holds only entries ``start``..``end`` of a listing."""
    return f"({start}-{end}){XML_SUFFIX}"


def archive_file_name(friendly_name: str) -> str:
    """Archive file name for a device, e.g. ``"My NAS.zip"``."""
    return to_file_name(friendly_name) + ARCHIVE_SUFFIX


class ArchivePathAllocator:
    """Hands out archive entry paths that are unique within one export run.

    Allocation is single-threaded: a path is registered in the same step that
    finds it free, and a registered path is never handed out again.
    """

    def __init__(self, max_suffix: int = MAX_COLLISION_SUFFIX) -> None:
        self._registry: set[str] = set()
        self._max_suffix = max_suffix

    def allocate(self, base_name: str, entity_name: str, suffix: str = XML_SUFFIX) -> str:
        """Register and return a unique path for an entity.

        The first request for a name gets ``{base}/{name}{suffix}``; later ones
        get ``{base}/{name}$0{suffix}``, ``{base}/{name}$1{suffix}`` and so on.

        Args:
            base_name: Directory-like prefix inside the archive.
            entity_name: Display name or ObjectID; canonicalized with to_file_name.
            suffix: Extension, or a range suffix from range_suffix().

        Returns:
            The allocated path.

        Raises:
            AllocationExhaustedError: If every collision index is taken.
        """
        body = f"{base_name}/{to_file_name(entity_name)}"
        path = body + suffix
        if path not in self._registry:
            self._registry.add(path)
            return path
        for i in range(self._max_suffix):
            path = f"{body}{COLLISION_MARKER}{i}{suffix}"
            if path not in self._registry:
                self._registry.add(path)
                return path
        raise AllocationExhaustedError(body + suffix)

    def reset(self) -> None:
        self._registry.clear()

    def __contains__(self, path: object) -> bool:
        return path in self._registry

    def __len__(self) -> int:
        return len(self._registry)
