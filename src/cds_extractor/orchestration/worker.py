"""Background export worker with a one-way progress channel."""

from __future__ import annotations

import logging
import os
import queue
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING

from cds_extractor.export.session import CancellationToken, ExportResult, Progress

if TYPE_CHECKING:
    from cds_extractor.orchestration.coordinator import ExportCoordinator
    from cds_extractor.upnp.device import MediaServer

logger = logging.getLogger(__name__)


class ExportWorker:
    """Runs at most one export at a time on a dedicated thread.

    The invoking context polls ``progress_events`` and waits on the returned
    future; it never touches the session, registry or archive of the run.
    """

    def __init__(self, coordinator: ExportCoordinator) -> None:
        self._coordinator = coordinator
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cds-export")
        self._future: Future[ExportResult] | None = None
        self._cancel_token = CancellationToken()
        self.progress_events: queue.Queue[Progress] = queue.Queue()

    @property
    def busy(self) -> bool:
        return self._future is not None and not self._future.done()

    def start(
        self, server: MediaServer, destination: str | os.PathLike[str]
    ) -> Future[ExportResult]:
        """Submit an export of ``server`` into ``destination``.

        Raises:
            RuntimeError: If an export is already running.
        """
        if self.busy:
            raise RuntimeError("An export is already running")
        self._cancel_token = CancellationToken()
        logger.info("[start] submitting export; device:%s", server.friendly_name)
        self._future = self._executor.submit(
            self._coordinator.export,
            server,
            destination,
            self._cancel_token,
            self.progress_events.put,
        )
        return self._future

    def cancel(self) -> None:
        """Ask the running export to stop at its next cancellation point."""
        if self.busy:
            logger.info("[cancel] cancellation requested")
        self._cancel_token.cancel()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
