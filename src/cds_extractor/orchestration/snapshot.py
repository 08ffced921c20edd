"""Snapshot processor — load a device, export it, and upload the archive."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cds_extractor.export.paths import archive_file_name
from cds_extractor.export.upload import ArchiveUploader, archive_uploader_from_config
from cds_extractor.orchestration.coordinator import (
    ExportCoordinator,
    export_coordinator_from_config,
)
from cds_extractor.upnp.client import SoapClient, soap_client_from_config
from cds_extractor.upnp.device import load_media_server

if TYPE_CHECKING:
    from cds_extractor.config import AppConfig
    from cds_extractor.export.session import CancellationToken, ExportResult

logger = logging.getLogger(__name__)


@dataclass
class SnapshotReport:
    """Outcome of one snapshot, plus the blob it was uploaded to (if any)."""

    result: ExportResult
    blob_name: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.result.outcome.value,
            "archive": os.path.basename(self.result.archive_path),
            "blob": self.blob_name,
            "entries_written": self.result.entries_written,
            "containers_visited": self.result.containers_visited,
            "containers_discovered": self.result.containers_discovered,
            "failures": [
                {"scope": f.scope, "target": f.target, "reason": f.reason}
                for f in self.result.failures
            ],
        }


class SnapshotProcessor:
    """Orchestrates the full device-to-archive snapshot pipeline."""

    def __init__(
        self,
        coordinator: ExportCoordinator,
        client: SoapClient,
        output_dir: str,
        uploader: ArchiveUploader | None = None,
    ) -> None:
        """Initialise the snapshot processor.

        Args:
            coordinator: ExportCoordinator that writes the archive.
            client: SoapClient used to load the device and browse it.
            output_dir: Directory the archive file is created in.
            uploader: Optional uploader; archives stay local when None.
        """
        self._coordinator = coordinator
        self._client = client
        self._output_dir = output_dir
        self._uploader = uploader

    def run(self, location: str, cancel_token: CancellationToken | None = None) -> SnapshotReport:
        """Snapshot the MediaServer described at ``location``.

        Steps:
            1. Load the device description and service descriptions.
            2. Export the ContentDirectory into ``<output_dir>/<device>.zip``.
            3. Upload the archive when an uploader is configured and the
               export completed.

        Args:
            location: URL of the device description document.
            cancel_token: Optional token to stop the export early.

        Returns:
            SnapshotReport for the run.
        """
        logger.info("[run] starting snapshot; location:%s", location)
        server = load_media_server(location, self._client)
        destination = os.path.join(self._output_dir, archive_file_name(server.friendly_name))
        result = self._coordinator.export(server, destination, cancel_token=cancel_token)

        blob_name = None
        if self._uploader is not None and result.completed:
            blob_name = self._uploader.upload(result.archive_path)
        logger.info(
            "[run] snapshot complete; outcome:%s;blob:%s", result.outcome.value, blob_name
        )
        return SnapshotReport(result=result, blob_name=blob_name)


def snapshot_processor_from_config(config: AppConfig) -> SnapshotProcessor:
    """Construct a SnapshotProcessor from application configuration.

    Args:
        config: Application configuration instance.

    Returns:
        Configured SnapshotProcessor instance.
    """
    return SnapshotProcessor(
        coordinator=export_coordinator_from_config(config),
        client=soap_client_from_config(config),
        output_dir=config.output_dir,
        uploader=archive_uploader_from_config(config),
    )
