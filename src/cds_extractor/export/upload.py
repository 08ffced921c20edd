"""Upload of finished snapshot archives to Azure Blob Storage."""

from __future__ import annotations

import contextlib
import logging
import os
from typing import TYPE_CHECKING

from azure.storage.blob import BlobServiceClient, ContentSettings

if TYPE_CHECKING:
    from cds_extractor.config import AppConfig

logger = logging.getLogger(__name__)

# Named constants for upload configuration defaults
DEFAULT_ARCHIVE_CONTAINER = "cds-snapshots"
DEFAULT_ARCHIVE_BLOB_PREFIX = "snapshots/"
ZIP_CONTENT_TYPE = "application/zip"


class ArchiveUploader:
    """Stores snapshot archives as blobs named after the archive file."""

    def __init__(
        self,
        storage_connection_string: str,
        container: str = DEFAULT_ARCHIVE_CONTAINER,
        blob_prefix: str = DEFAULT_ARCHIVE_BLOB_PREFIX,
    ) -> None:
        """Initialise the uploader.

        Args:
            storage_connection_string: Azure Storage connection string.
            container: Blob container name for archives.
            blob_prefix: Prefix for archive blob paths (e.g. "snapshots/").
        """
        self._blob_service = BlobServiceClient.from_connection_string(storage_connection_string)
        self._container = container
        self._blob_prefix = blob_prefix

    def blob_name(self, archive_path: str) -> str:
        return f"{self._blob_prefix}{os.path.basename(archive_path)}"

    def upload(self, archive_path: str) -> str:
        """Upload an archive, replacing any previous snapshot of the same name.

        Creates the container if it does not exist.

        Args:
            archive_path: Local path of a closed zip archive.

        Returns:
            Name of the blob written.
        """
        blob_name = self.blob_name(archive_path)
        container_client = self._blob_service.get_container_client(self._container)
        with contextlib.suppress(Exception):
            container_client.create_container()

        blob_client = container_client.get_blob_client(blob_name)
        with open(archive_path, "rb") as data:
            blob_client.upload_blob(
                data,
                overwrite=True,
                content_settings=ContentSettings(content_type=ZIP_CONTENT_TYPE),
            )
        logger.info(
            "[upload] stored archive; container:%s;blob:%s",
            self._container,
            blob_name,
        )
        return blob_name


def archive_uploader_from_config(config: AppConfig) -> ArchiveUploader | None:
    """Construct an ArchiveUploader, or None when no storage is configured.

    Args:
        config: Application configuration instance.

    Returns:
        Configured ArchiveUploader instance, or None.
    """
    if not config.storage_connection_string:
        return None
    return ArchiveUploader(
        storage_connection_string=config.storage_connection_string,
        container=config.archive_container,
        blob_prefix=config.archive_blob_prefix,
    )
