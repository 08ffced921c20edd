"""Unit tests for export/walker.py — breadth-first container traversal."""

from unittest.mock import MagicMock

from cds_extractor.export.session import ExportSession, Progress
from cds_extractor.export.walker import TreeWalker, WalkStats
from cds_extractor.upnp.client import UpnpTransportError
from cds_extractor.upnp.fetcher import PageFetcher
from cds_extractor.upnp.models import BrowseResponse, ListingEntry

# Container id -> children as (object_id, is_container)
TREE: dict[str, list[tuple[str, bool]]] = {
    "0": [("A", True), ("B", True), ("i1", False)],
    "A": [("A1", True), ("i2", False)],
    "B": [("i3", False)],
    "A1": [],
}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _tree_invoke(tree: dict[str, list[tuple[str, bool]]], failing: frozenset[str] = frozenset()):
    """Browse stub serving ``tree``; containers in ``failing`` raise a transport error."""

    def invoke(object_id: str, browse_filter: str, sort: str, start: int, count: int):
        if object_id in failing:
            raise UpnpTransportError("http://nas/ctl", f"no answer for {object_id}")
        children = tree[object_id]
        chunk = children[start : start + count]
        raw = ",".join(f"{cid}|{int(is_container)}" for cid, is_container in chunk)
        return BrowseResponse(
            result=f"{object_id}#{raw}",
            number_returned=len(chunk),
            total_matches=len(children),
            update_id=1,
        )

    return MagicMock(side_effect=invoke)


def _decode(device_context: str, raw: str) -> list[ListingEntry]:
    parent, _, body = raw.partition("#")
    entries = []
    for part in filter(None, body.split(",")):
        object_id, flag = part.split("|")
        entries.append(
            ListingEntry(
                udn=device_context,
                object_id=object_id,
                parent_id=parent,
                is_container=flag == "1",
            )
        )
    return entries


def _walker(
    session: ExportSession,
    failing: frozenset[str] = frozenset(),
    chunk_size: int = 2,
) -> tuple[TreeWalker, MagicMock]:
    invoke = _tree_invoke(TREE, failing)
    fetcher = PageFetcher(invoke, _decode, device_context="uuid:nas", chunk_size=chunk_size)
    return TreeWalker(fetcher, session), invoke


# ---------------------------------------------------------------------------
# Traversal tests
# ---------------------------------------------------------------------------


class TestWalk:
    def test_visits_containers_in_breadth_first_order(self) -> None:
        walker, invoke = _walker(ExportSession())
        on_page = MagicMock()

        stats = walker.walk("0", on_page)

        assert [c.args[0] for c in on_page.call_args_list] == ["0", "0", "A", "B"]
        browsed = [c.args[0] for c in invoke.call_args_list]
        assert list(dict.fromkeys(browsed)) == ["0", "A", "B", "A1"]
        assert stats == WalkStats(visited=4, discovered=4)

    def test_each_container_is_listed_once(self) -> None:
        walker, invoke = _walker(ExportSession(), chunk_size=10)

        walker.walk("0", MagicMock())

        browsed = [c.args[0] for c in invoke.call_args_list]
        assert sorted(browsed) == ["0", "A", "A1", "B"]

    def test_pages_carry_browse_arguments(self) -> None:
        invoke = _tree_invoke(TREE)
        fetcher = PageFetcher(invoke, _decode, chunk_size=10)
        walker = TreeWalker(
            fetcher, ExportSession(), browse_filter="dc:title", sort_criteria="-dc:date"
        )

        walker.walk("B", MagicMock())

        invoke.assert_called_once_with("B", "dc:title", "-dc:date", 0, 10)

    def test_progress_is_reported_before_each_page(self) -> None:
        reported: list[Progress] = []
        session = ExportSession(on_progress=reported.append)
        walker, _ = _walker(session)
        seen_at_page: list[Progress] = []

        walker.walk("0", lambda container_id, page: seen_at_page.append(session.progress))

        assert reported == [
            Progress(visited=1, discovered=3),
            Progress(visited=1, discovered=3),
            Progress(visited=2, discovered=4),
            Progress(visited=3, discovered=4),
        ]
        assert seen_at_page == reported

    def test_progress_never_decreases(self) -> None:
        reported: list[Progress] = []
        walker, _ = _walker(ExportSession(on_progress=reported.append), chunk_size=1)

        walker.walk("0", MagicMock())

        for previous, current in zip(reported, reported[1:]):
            assert current.visited >= previous.visited
            assert current.discovered >= previous.discovered
        assert all(p.visited <= p.discovered for p in reported)

    def test_root_without_children_produces_no_pages(self) -> None:
        walker, _ = _walker(ExportSession())
        on_page = MagicMock()

        stats = walker.walk("A1", on_page)

        on_page.assert_not_called()
        assert stats == WalkStats(visited=1, discovered=1)


# ---------------------------------------------------------------------------
# Failure containment and cancellation tests
# ---------------------------------------------------------------------------


class TestWalkFailures:
    def test_failing_container_is_recorded_and_skipped(self) -> None:
        session = ExportSession()
        walker, _ = _walker(session, failing=frozenset({"A"}))
        on_page = MagicMock()

        stats = walker.walk("0", on_page)

        assert [c.args[0] for c in on_page.call_args_list] == ["0", "0", "B"]
        assert len(session.failures) == 1
        failure = session.failures[0]
        assert failure.scope == "container"
        assert failure.target == "A"
        assert "no answer for A" in failure.reason
        assert stats == WalkStats(visited=3, discovered=3)

    def test_failing_root_ends_walk(self) -> None:
        session = ExportSession()
        walker, _ = _walker(session, failing=frozenset({"0"}))

        stats = walker.walk("0", MagicMock())

        assert [f.target for f in session.failures] == ["0"]
        assert stats == WalkStats(visited=1, discovered=1)

    def test_cancel_during_page_stops_traversal(self) -> None:
        session = ExportSession()
        walker, invoke = _walker(session)
        pages = []

        def on_page(container_id, page):
            pages.append(container_id)
            session.cancel_token.cancel()

        stats = walker.walk("0", on_page)

        assert pages == ["0"]
        assert invoke.call_count == 1
        assert stats.discovered == 3
        assert stats.cancelled is True

    def test_cancelled_before_start_browses_nothing(self) -> None:
        session = ExportSession()
        session.cancel_token.cancel()
        walker, invoke = _walker(session)

        stats = walker.walk("0", MagicMock())

        invoke.assert_not_called()
        assert stats == WalkStats(visited=0, discovered=1, cancelled=True)

    def test_cancel_on_final_page_is_not_an_interruption(self) -> None:
        session = ExportSession()
        tree = {"0": [("i1", False), ("i2", False), ("i3", False)]}
        fetcher = PageFetcher(_tree_invoke(tree), _decode, chunk_size=2)
        starts = []

        def on_page(container_id, page):
            starts.append(page.start)
            if page.start + page.count == page.total:
                session.cancel_token.cancel()

        stats = TreeWalker(fetcher, session).walk("0", on_page)

        assert starts == [0, 2]
        assert stats == WalkStats(visited=1, discovered=1, cancelled=False)

    def test_cancel_with_containers_pending_is_an_interruption(self) -> None:
        session = ExportSession()
        walker, _ = _walker(session)
        visited = []

        def on_page(container_id, page):
            visited.append(container_id)
            if container_id == "B":
                session.cancel_token.cancel()

        stats = walker.walk("0", on_page)

        assert visited == ["0", "0", "A", "B"]
        assert stats.cancelled is True
