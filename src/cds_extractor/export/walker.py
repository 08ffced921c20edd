"""Breadth-first traversal of a ContentDirectory container hierarchy."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from cds_extractor.export.session import SCOPE_CONTAINER, ExportSession
from cds_extractor.upnp.fetcher import BrowseProtocolError, PageFetcher
from cds_extractor.upnp.models import Page

logger = logging.getLogger(__name__)

PageHandler = Callable[[str, Page], None]


@dataclass(frozen=True)
class WalkStats:
    visited: int
    discovered: int
    cancelled: bool = False


class TreeWalker:
    """Visits every container reachable from a root, in discovery order."""

    def __init__(
        self,
        fetcher: PageFetcher,
        session: ExportSession,
        browse_filter: str = "*",
        sort_criteria: str = "",
    ) -> None:
        """Initialise the walker.

        Args:
            fetcher: Pager for the server being walked.
            session: Run state supplying the cancel token and progress sink,
                and collecting contained failures.
            browse_filter: Browse Filter argument for every call.
            sort_criteria: Browse SortCriteria argument for every call.
        """
        self._fetcher = fetcher
        self._session = session
        self._browse_filter = browse_filter
        self._sort_criteria = sort_criteria

    def walk(self, root_id: str, on_page: PageHandler) -> WalkStats:
        """Traverse the hierarchy under ``root_id`` breadth-first.

        Each container is drained page by page. Sub-containers found in a page
        are queued behind everything already pending. Cancellation is checked
        before each container; a page already in flight is still delivered.

        A Browse failure for one container ends that container only: it is
        logged, recorded on the session, and the walk moves on.

        Args:
            root_id: ObjectID to start from.
            on_page: Called with (container_id, page) for every page.

        Returns:
            Visited and discovered container counts when the walk stopped, and
            whether cancellation cut it short with work still pending.
        """
        queue: deque[str] = deque([root_id])
        discovered = 1
        visited = 0
        token = self._session.cancel_token
        interrupted = False

        while queue:
            if token.cancelled:
                interrupted = True
                break
            container_id = queue.popleft()
            visited = discovered - len(queue)
            pages = self._fetcher.fetch(
                container_id,
                browse_filter=self._browse_filter,
                sort_criteria=self._sort_criteria,
                cancel_token=token,
            )
            last_page: Page | None = None
            try:
                for page in pages:
                    for entry in page.entries:
                        if entry.is_container:
                            queue.append(entry.object_id)
                            discovered += 1
                    visited = discovered - len(queue)
                    self._session.report_progress(visited, discovered)
                    on_page(container_id, page)
                    last_page = page
            except BrowseProtocolError as exc:
                logger.warning(
                    "[walk] abandoning container; object_id:%s;error:%s", container_id, exc
                )
                self._session.record_failure(SCOPE_CONTAINER, container_id, str(exc))
            else:
                if token.cancelled and not _drained(last_page):
                    interrupted = True
                    break

        if interrupted:
            logger.info(
                "[walk] cancelled; visited:%d;discovered:%d;pending:%d",
                visited,
                discovered,
                len(queue),
            )
        return WalkStats(visited=visited, discovered=discovered, cancelled=interrupted)


def _drained(last_page: Page | None) -> bool:
    """True when the last delivered page reached the end of its container."""
    return last_page is not None and last_page.start + last_page.count >= last_page.total
