"""Unit tests for orchestration/coordinator.py — ExportCoordinator end to end."""

import zipfile
from http.client import IncompleteRead
from pathlib import Path
from unittest.mock import MagicMock, patch
from xml.sax.saxutils import quoteattr

import pytest

from cds_extractor.config import AppConfig
from cds_extractor.export.exceptions import AllocationExhaustedError, ExportError
from cds_extractor.export.paths import ArchivePathAllocator
from cds_extractor.export.session import (
    CancellationToken,
    ExportOutcome,
    ExportSession,
    Progress,
)
from cds_extractor.orchestration.coordinator import (
    ExportCoordinator,
    export_coordinator_from_config,
)
from cds_extractor.upnp.client import SoapClient, UpnpActionError
from cds_extractor.upnp.device import MediaServer
from cds_extractor.upnp.models import DeviceInfo, ServiceInfo

DEVICE_DESCRIPTION = "<root><device><friendlyName>NAS</friendlyName></device></root>"
CDS_SCPD = "<scpd><actionList><action><name>Browse</name></action></actionList></scpd>"
CMS_SCPD = "<scpd><actionList/></scpd>"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _didl(parent_id: str, children: list[tuple[str, bool]]) -> str:
    objects = []
    for object_id, is_container in children:
        tag = "container" if is_container else "item"
        objects.append(
            f"<{tag} id={quoteattr(object_id)} parentID={quoteattr(parent_id)} restricted=\"1\">"
            f"<dc:title>{object_id}</dc:title></{tag}>"
        )
    return (
        '<DIDL-Lite xmlns="urn:schemas-upnp-org:metadata-1-0/DIDL-Lite/"'
        ' xmlns:dc="http://purl.org/dc/elements/1.1/">' + "".join(objects) + "</DIDL-Lite>"
    )


def _content_directory(
    tree: dict[str, list[tuple[str, bool]]],
    failing: frozenset[str] = frozenset(),
) -> MagicMock:
    """Return a SoapClient mock answering Browse from ``tree``."""

    def invoke(control_url: str, service_type: str, action: str, arguments: list) -> dict:
        args = dict(arguments)
        object_id = args["ObjectID"]
        if object_id in failing:
            raise UpnpActionError(701, "No such object")
        start = int(args["StartingIndex"])
        count = int(args["RequestedCount"])
        children = tree[object_id]
        chunk = children[start : start + count]
        return {
            "Result": _didl(object_id, chunk),
            "NumberReturned": str(len(chunk)),
            "TotalMatches": str(len(children)),
            "UpdateID": "1",
        }

    client = MagicMock(spec=SoapClient)
    client.invoke.side_effect = invoke
    return client


def _server(client: MagicMock, friendly_name: str = "NAS") -> MediaServer:
    device = DeviceInfo(
        udn="uuid:nas",
        friendly_name=friendly_name,
        device_type="urn:schemas-upnp-org:device:MediaServer:1",
        location="http://nas/desc.xml",
        description=DEVICE_DESCRIPTION,
        services=[
            ServiceInfo(
                service_id="urn:upnp-org:serviceId:ContentDirectory",
                service_type="urn:schemas-upnp-org:service:ContentDirectory:1",
                scpd_url="http://nas/cds.xml",
                control_url="http://nas/cds/control",
                description=CDS_SCPD,
                action_names=["Browse"],
            ),
            ServiceInfo(
                service_id="urn:upnp-org:serviceId:ConnectionManager",
                service_type="urn:schemas-upnp-org:service:ConnectionManager:1",
                scpd_url="http://nas/cms.xml",
                control_url="http://nas/cms/control",
                description=CMS_SCPD,
            ),
        ],
    )
    return MediaServer(device, client)


def _items(prefix: str, count: int) -> list[tuple[str, bool]]:
    return [(f"{prefix}{i}", False) for i in range(count)]


DESCRIPTION_ENTRIES = [
    "description/NAS/NAS.xml",
    "description/NAS/urn_upnp-org_serviceId_ContentDirectory.xml",
    "description/NAS/urn_upnp-org_serviceId_ConnectionManager.xml",
]

# ---------------------------------------------------------------------------
# export tests
# ---------------------------------------------------------------------------


class TestExport:
    def test_single_container_snapshot(self, tmp_path: Path) -> None:
        client = _content_directory({"0": _items("i", 5)})
        destination = tmp_path / "NAS.zip"

        result = ExportCoordinator().export(_server(client), destination)

        with zipfile.ZipFile(destination) as archive:
            names = archive.namelist()
            listing = archive.read("cds/NAS/cds/0.xml").decode("utf-8")
            device_doc = archive.read("description/NAS/NAS.xml").decode("utf-8")
        assert names == [*DESCRIPTION_ENTRIES, "cds/NAS/cds/0.xml"]
        assert listing == _didl("0", _items("i", 5))
        assert device_doc == DEVICE_DESCRIPTION
        assert result.outcome is ExportOutcome.COMPLETED
        assert result.archive_path == str(destination)
        assert result.entries_written == 4
        assert result.containers_visited == 1
        assert result.containers_discovered == 1
        assert result.failures == []

    def test_split_listing_uses_range_suffixes(self, tmp_path: Path) -> None:
        client = _content_directory({"0": _items("i", 25)})
        destination = tmp_path / "NAS.zip"

        ExportCoordinator().export(_server(client), destination)

        with zipfile.ZipFile(destination) as archive:
            listings = [n for n in archive.namelist() if n.startswith("cds/")]
        assert listings == [
            "cds/NAS/cds/0(0-9).xml",
            "cds/NAS/cds/0(10-19).xml",
            "cds/NAS/cds/0(20-24).xml",
        ]

    def test_colliding_container_ids_get_distinct_entries(self, tmp_path: Path) -> None:
        tree = {
            "0": [("Vid:eo", True), ("Vid/eo", True)],
            "Vid:eo": _items("a", 1),
            "Vid/eo": _items("b", 1),
        }
        destination = tmp_path / "NAS.zip"

        result = ExportCoordinator().export(_server(_content_directory(tree)), destination)

        with zipfile.ZipFile(destination) as archive:
            first = archive.read("cds/NAS/cds/Vid_eo.xml").decode("utf-8")
            second = archive.read("cds/NAS/cds/Vid_eo$0.xml").decode("utf-8")
        assert 'id="a0"' in first
        assert 'id="b0"' in second
        assert result.containers_visited == 3

    def test_device_name_is_canonicalized(self, tmp_path: Path) -> None:
        client = _content_directory({"0": _items("i", 1)})
        destination = tmp_path / "out.zip"

        ExportCoordinator().export(_server(client, friendly_name="NAS: Den"), destination)

        with zipfile.ZipFile(destination) as archive:
            names = archive.namelist()
        assert "description/NAS_ Den/NAS_ Den.xml" in names
        assert "cds/NAS_ Den/cds/0.xml" in names

    def test_browse_arguments_come_from_coordinator(self, tmp_path: Path) -> None:
        client = _content_directory({"64": _items("i", 3)})
        coordinator = ExportCoordinator(
            root_object_id="64", browse_filter="dc:title", sort_criteria="+dc:title", chunk_size=2
        )

        coordinator.export(_server(client), tmp_path / "NAS.zip")

        args = dict(client.invoke.call_args_list[0].args[3])
        assert args["ObjectID"] == "64"
        assert args["Filter"] == "dc:title"
        assert args["SortCriteria"] == "+dc:title"
        assert args["RequestedCount"] == "2"
        assert client.invoke.call_count == 2

    def test_failing_container_is_contained(self, tmp_path: Path) -> None:
        tree = {"0": [("A", True), ("B", True)], "B": _items("b", 2)}
        client = _content_directory(tree, failing=frozenset({"A"}))
        destination = tmp_path / "NAS.zip"

        result = ExportCoordinator().export(_server(client), destination)

        assert result.completed
        assert [(f.scope, f.target) for f in result.failures] == [("container", "A")]
        assert "701" in result.failures[0].reason
        with zipfile.ZipFile(destination) as archive:
            assert "cds/NAS/cds/B.xml" in archive.namelist()

    def test_truncated_response_is_contained(self, tmp_path: Path) -> None:
        tree = {"0": [("A", True), ("B", True)], "B": _items("b", 1)}
        client = _content_directory(tree)
        answer = client.invoke.side_effect

        def invoke(control_url, service_type, action, arguments):
            if dict(arguments)["ObjectID"] == "A":
                raise IncompleteRead(b"<s:Env", 494)
            return answer(control_url, service_type, action, arguments)

        client.invoke.side_effect = invoke
        destination = tmp_path / "NAS.zip"

        result = ExportCoordinator().export(_server(client), destination)

        assert result.completed
        assert [(f.scope, f.target) for f in result.failures] == [("container", "A")]
        with zipfile.ZipFile(destination) as archive:
            assert "cds/NAS/cds/B.xml" in archive.namelist()

    def test_progress_is_reported(self, tmp_path: Path) -> None:
        tree = {"0": [("A", True)], "A": _items("a", 1)}
        reported: list[Progress] = []

        ExportCoordinator().export(
            _server(_content_directory(tree)), tmp_path / "NAS.zip", on_progress=reported.append
        )

        assert reported == [Progress(visited=1, discovered=2), Progress(visited=2, discovered=2)]


# ---------------------------------------------------------------------------
# Cancellation and fatal error tests
# ---------------------------------------------------------------------------


class TestExportCancellation:
    def test_cancel_after_first_page_keeps_partial_archive(self, tmp_path: Path) -> None:
        tree = {"0": [("A", True), ("B", True)], "A": _items("a", 3), "B": _items("b", 3)}
        client = _content_directory(tree)
        token = CancellationToken()
        destination = tmp_path / "NAS.zip"

        result = ExportCoordinator().export(
            _server(client),
            destination,
            cancel_token=token,
            on_progress=lambda progress: token.cancel(),
        )

        assert result.outcome is ExportOutcome.CANCELLED
        assert result.entries_written == 4
        assert client.invoke.call_count == 1
        with zipfile.ZipFile(destination) as archive:
            assert archive.testzip() is None
            assert archive.namelist() == [*DESCRIPTION_ENTRIES, "cds/NAS/cds/0.xml"]

    def test_cancel_before_start_writes_empty_archive(self, tmp_path: Path) -> None:
        client = _content_directory({"0": _items("i", 5)})
        token = CancellationToken()
        token.cancel()
        destination = tmp_path / "NAS.zip"

        result = ExportCoordinator().export(_server(client), destination, cancel_token=token)

        assert result.outcome is ExportOutcome.CANCELLED
        assert result.entries_written == 0
        client.invoke.assert_not_called()
        with zipfile.ZipFile(destination) as archive:
            assert archive.namelist() == []

    def test_unwritable_destination_raises_export_error(self, tmp_path: Path) -> None:
        client = _content_directory({"0": _items("i", 1)})

        with pytest.raises(ExportError, match="Cannot open archive"):
            ExportCoordinator().export(_server(client), tmp_path / "missing" / "NAS.zip")

        client.invoke.assert_not_called()

    def test_cancel_on_last_page_still_completes(self, tmp_path: Path) -> None:
        tree = {"0": [("A", True)], "A": _items("a", 3)}
        client = _content_directory(tree)
        token = CancellationToken()

        def on_progress(progress: Progress) -> None:
            if progress.visited == progress.discovered == 2:
                token.cancel()

        result = ExportCoordinator().export(
            _server(client), tmp_path / "NAS.zip", cancel_token=token, on_progress=on_progress
        )

        assert token.cancelled
        assert result.outcome is ExportOutcome.COMPLETED
        assert result.entries_written == 5

    def test_allocation_exhaustion_is_fatal_and_archive_is_closed(self, tmp_path: Path) -> None:
        tree = {
            "0": [("Vid:eo", True), ("Vid/eo", True)],
            "Vid:eo": _items("a", 1),
            "Vid/eo": _items("b", 1),
        }
        destination = tmp_path / "NAS.zip"

        with (
            patch(
                "cds_extractor.orchestration.coordinator.ExportSession",
                side_effect=lambda **kwargs: ExportSession(
                    allocator=ArchivePathAllocator(max_suffix=0), **kwargs
                ),
            ),
            pytest.raises(AllocationExhaustedError, match="Vid_eo"),
        ):
            ExportCoordinator().export(_server(_content_directory(tree)), destination)

        with zipfile.ZipFile(destination) as archive:
            assert archive.testzip() is None
            assert archive.namelist() == [
                *DESCRIPTION_ENTRIES,
                "cds/NAS/cds/0.xml",
                "cds/NAS/cds/Vid_eo.xml",
            ]

    @pytest.mark.parametrize("chunk_size", [0, -1])
    def test_non_positive_chunk_size_is_rejected_before_any_io(
        self, tmp_path: Path, chunk_size: int
    ) -> None:
        with pytest.raises(ValueError, match="chunk_size must be positive"):
            ExportCoordinator(chunk_size=chunk_size)

        assert list(tmp_path.iterdir()) == []


class TestExportCoordinatorFromConfig:
    def test_uses_configured_browse_settings(self, tmp_path: Path) -> None:
        config = AppConfig(
            device_location="http://nas/desc.xml",
            root_object_id="64",
            browse_filter="dc:title",
            chunk_size=3,
        )
        client = _content_directory({"64": _items("i", 1)})

        export_coordinator_from_config(config).export(_server(client), tmp_path / "NAS.zip")

        args = dict(client.invoke.call_args.args[3])
        assert args["ObjectID"] == "64"
        assert args["Filter"] == "dc:title"
        assert args["RequestedCount"] == "3"
