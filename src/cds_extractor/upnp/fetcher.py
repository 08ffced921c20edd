"""Paginated Browse client — enumerates a container one bounded page at a time."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from http.client import HTTPException
from typing import TYPE_CHECKING

from cds_extractor.upnp.client import UpnpError
from cds_extractor.upnp.models import BrowseResponse, ListingEntry, Page

if TYPE_CHECKING:
    from cds_extractor.export.session import CancellationToken

logger = logging.getLogger(__name__)

# Max entries requested per Browse call; keeps payloads small and gives the
# traversal frequent cancellation and progress points.
CHUNK_SIZE = 10

# RequestedCount of 0 means "everything"; this is the largest count we ask for.
UNBOUNDED_COUNT = 2**31 - 1

BrowseInvoker = Callable[[str, str, str, int, int], BrowseResponse]
Decoder = Callable[[str, str], list[ListingEntry]]


class BrowseProtocolError(Exception):
    """Raised when a paginated Browse response is malformed or the call fails."""

    def __init__(self, object_id: str, start: int, message: str) -> None:
        super().__init__(f"Browse of {object_id!r} at {start} failed: {message}")
        self.object_id = object_id
        self.start = start
        self.message = message


class PageFetcher:
    """Pull-based pager over the Browse action of one ContentDirectory."""

    def __init__(
        self,
        invoke: BrowseInvoker,
        decode: Decoder,
        device_context: str = "",
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        """Initialise the fetcher.

        Args:
            invoke: Calls Browse with (object_id, filter, sort_criteria,
                starting_index, requested_count) and returns the raw response.
            decode: Turns (device_context, DIDL-Lite text) into entries.
            device_context: Passed to ``decode`` (the MediaServer UDN).
            chunk_size: Max entries requested per call.
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._invoke = invoke
        self._decode = decode
        self._device_context = device_context
        self._chunk_size = chunk_size

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def fetch(
        self,
        container_id: str,
        browse_filter: str = "*",
        sort_criteria: str = "",
        start_index: int = 0,
        requested_count: int = 0,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[Page]:
        """Yield the pages of a container's direct children in offset order.

        One Browse call is outstanding at a time and nothing is requested until
        the consumer pulls the next page, so abandoning the iterator between
        pages is always safe.

        Args:
            container_id: ObjectID of the container to list.
            browse_filter: Browse Filter argument.
            sort_criteria: Browse SortCriteria argument.
            start_index: Offset of the first entry to request.
            requested_count: Total entries wanted; 0 means unbounded.
            cancel_token: Checked before every call; once cancelled, the
                sequence ends without issuing further calls.

        Yields:
            Page objects with strictly increasing ``start``.

        Raises:
            BrowseProtocolError: On a transport failure or an inconsistent page.
        """
        request = UNBOUNDED_COUNT if requested_count == 0 else requested_count
        start = start_index
        while True:
            if cancel_token is not None and cancel_token.cancelled:
                logger.info("[fetch] cancelled; object_id:%s;start:%d", container_id, start)
                return

            count = min(request - start, self._chunk_size)
            try:
                response = self._invoke(container_id, browse_filter, sort_criteria, start, count)
            except (UpnpError, OSError, HTTPException) as exc:
                raise BrowseProtocolError(container_id, start, str(exc)) from exc

            number = response.number_returned
            total = response.total_matches
            if number == 0 or total == 0:
                return

            entries = self._decode(self._device_context, response.result)
            if not entries or number < 0 or total < 0:
                raise BrowseProtocolError(
                    container_id,
                    start,
                    f"inconsistent page; returned:{number};total:{total};decoded:{len(entries)}",
                )
            if len(entries) != number:
                logger.warning(
                    "[fetch] decoded count differs from NumberReturned;"
                    " object_id:%s;start:%d;returned:%d;decoded:%d",
                    container_id,
                    start,
                    number,
                    len(entries),
                )

            yield Page(entries=entries, start=start, count=number, total=total, raw=response.result)

            start += number
            if start >= total or start >= request:
                return
