"""Export coordinator — drives one full ContentDirectory snapshot into a zip archive."""

from __future__ import annotations

import logging
import os
import zipfile
from typing import TYPE_CHECKING

from cds_extractor.export.exceptions import ExportError
from cds_extractor.export.paths import XML_SUFFIX, range_suffix, to_file_name
from cds_extractor.export.session import (
    CancellationToken,
    ExportOutcome,
    ExportResult,
    ExportSession,
    ProgressCallback,
)
from cds_extractor.export.walker import TreeWalker, WalkStats
from cds_extractor.export.writer import ArchiveWriter
from cds_extractor.upnp.fetcher import CHUNK_SIZE

if TYPE_CHECKING:
    from cds_extractor.config import AppConfig
    from cds_extractor.upnp.device import MediaServer
    from cds_extractor.upnp.models import Page

logger = logging.getLogger(__name__)

ROOT_OBJECT_ID = "0"
DESCRIPTION_PREFIX = "description"
CDS_PREFIX = "cds"


class ExportCoordinator:
    """Writes a MediaServer's descriptions and every Browse page into one archive."""

    def __init__(
        self,
        root_object_id: str = ROOT_OBJECT_ID,
        browse_filter: str = "*",
        sort_criteria: str = "",
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        """Initialise the coordinator.

        Args:
            root_object_id: ObjectID the traversal starts from.
            browse_filter: Browse Filter argument.
            sort_criteria: Browse SortCriteria argument.
            chunk_size: Max entries requested per Browse call.

        Raises:
            ValueError: If chunk_size is not positive.
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._root_object_id = root_object_id
        self._browse_filter = browse_filter
        self._sort_criteria = sort_criteria
        self._chunk_size = chunk_size

    def export(
        self,
        server: MediaServer,
        destination: str | os.PathLike[str],
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ExportResult:
        """Run one export.

        Steps:
            1. Open ``destination`` as a new zip archive.
            2. Write the device description and each service description
               under ``description/<device>/``.
            3. Walk the hierarchy from the root object and write every page's
               DIDL-Lite verbatim under ``cds/<device>/cds/``.
            4. Close the archive, also when cancelled; partial content stays.

        Browse failures and entry write failures are contained and listed in
        the result. Cancellation is checked before each step and before each
        container.

        Args:
            server: MediaServer to snapshot.
            destination: Archive file to create (overwritten if present).
            cancel_token: Token the caller can use to stop the run.
            on_progress: Called with visited/discovered counts after each page.

        Returns:
            ExportResult describing how the run ended.

        Raises:
            ExportError: If the archive cannot be opened or closed.
            AllocationExhaustedError: If no unique entry path can be found.
        """
        session = ExportSession(cancel_token=cancel_token, on_progress=on_progress)
        archive_path = os.fspath(destination)
        device_name = to_file_name(server.friendly_name)
        logger.info(
            "[export] starting export; device:%s;archive:%s", server.friendly_name, archive_path
        )

        try:
            archive = zipfile.ZipFile(archive_path, mode="w", compression=zipfile.ZIP_DEFLATED)
        except OSError as exc:
            logger.error("[export] cannot open archive; archive:%s", archive_path, exc_info=True)
            raise ExportError(f"Cannot open archive {archive_path}: {exc}") from exc

        writer = ArchiveWriter(archive, session)
        stats: WalkStats | None = None
        try:
            if not session.cancelled:
                self._write_descriptions(server, device_name, session, writer)
            if not session.cancelled:
                stats = self._write_listings(server, device_name, session, writer)
        finally:
            try:
                archive.close()
            except OSError as exc:
                logger.error(
                    "[export] cannot close archive; archive:%s", archive_path, exc_info=True
                )
                raise ExportError(f"Cannot close archive {archive_path}: {exc}") from exc

        if stats is None:
            interrupted = session.cancelled
        else:
            interrupted = stats.cancelled
        outcome = ExportOutcome.CANCELLED if interrupted else ExportOutcome.COMPLETED
        result = ExportResult(
            outcome=outcome,
            archive_path=archive_path,
            entries_written=writer.entries_written,
            containers_visited=stats.visited if stats else 0,
            containers_discovered=stats.discovered if stats else 0,
            failures=list(session.failures),
        )
        logger.info(
            "[export] export finished; outcome:%s;entries:%d;containers:%d/%d;failures:%d",
            outcome.value,
            result.entries_written,
            result.containers_visited,
            result.containers_discovered,
            len(result.failures),
        )
        return result

    def _write_descriptions(
        self,
        server: MediaServer,
        device_name: str,
        session: ExportSession,
        writer: ArchiveWriter,
    ) -> None:
        base = f"{DESCRIPTION_PREFIX}/{device_name}"
        for name, document in server.description_documents():
            writer.write(session.allocator.allocate(base, name, XML_SUFFIX), document)

    def _write_listings(
        self,
        server: MediaServer,
        device_name: str,
        session: ExportSession,
        writer: ArchiveWriter,
    ) -> WalkStats:
        base = f"{CDS_PREFIX}/{device_name}/{CDS_PREFIX}"

        def on_page(container_id: str, page: Page) -> None:
            if page.covers_whole_listing:
                suffix = XML_SUFFIX
            else:
                suffix = range_suffix(page.start, page.end)
            writer.write(session.allocator.allocate(base, container_id, suffix), page.raw)

        walker = TreeWalker(
            server.page_fetcher(self._chunk_size),
            session,
            browse_filter=self._browse_filter,
            sort_criteria=self._sort_criteria,
        )
        return walker.walk(self._root_object_id, on_page)


def export_coordinator_from_config(config: AppConfig) -> ExportCoordinator:
    """Construct an ExportCoordinator from application configuration.

    Args:
        config: Application configuration instance.

    Returns:
        Configured ExportCoordinator instance.
    """
    return ExportCoordinator(
        root_object_id=config.root_object_id,
        browse_filter=config.browse_filter,
        sort_criteria=config.sort_criteria,
        chunk_size=config.chunk_size,
    )
