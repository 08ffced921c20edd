"""Best-effort zip entry writer."""

from __future__ import annotations

import logging
import zipfile

from cds_extractor.export.session import SCOPE_ENTRY, ExportSession

logger = logging.getLogger(__name__)


class ArchiveWriter:
    """Writes text documents as UTF-8 entries of an open zip archive.

    A failing entry is logged and recorded on the session, and the export
    carries on with the next one.
    """

    def __init__(self, archive: zipfile.ZipFile, session: ExportSession) -> None:
        self._archive = archive
        self._session = session
        self.entries_written = 0

    def write(self, path: str, content: str) -> bool:
        """Write one entry.

        Args:
            path: Entry path, already unique within the archive.
            content: Text to store.

        Returns:
            True if the entry was written, False if it was skipped.
        """
        try:
            with self._archive.open(path, mode="w") as entry:
                entry.write(content.encode("utf-8"))
        except Exception as exc:
            logger.warning("[write] skipping archive entry; path:%s;error:%s", path, exc)
            self._session.record_failure(SCOPE_ENTRY, path, str(exc))
            return False
        self.entries_written += 1
        return True
