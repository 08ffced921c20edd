"""Application configuration loaded from environment variables."""

import os
import tempfile
from dataclasses import dataclass


@dataclass(frozen=True)
class AppConfig:
    """Centralized application configuration.

    Required fields have no defaults and will cause a KeyError at startup
    if the corresponding environment variable is missing. Domain constants
    have sensible defaults but can be overridden via environment variables.
    """

    # Required: KeyError at startup when unset
    device_location: str

    # Export and storage settings, overridable via env
    storage_connection_string: str = ""
    archive_container: str = "cds-snapshots"
    archive_blob_prefix: str = "snapshots/"
    output_dir: str = tempfile.gettempdir()
    root_object_id: str = "0"
    browse_filter: str = "*"
    sort_criteria: str = ""
    chunk_size: int = 10
    http_timeout: float = 30.0


def load_config() -> AppConfig:
    """Construct an AppConfig from environment variables.

    Required environment variables:
        CDS_DEVICE_LOCATION: URL of the MediaServer device description document.

    Optional environment variables (with defaults):
        AzureWebJobsStorage: Azure Storage connection string; archive upload is
            disabled when empty.
        CDS_ARCHIVE_CONTAINER: Blob container for uploaded archives.
        CDS_ARCHIVE_BLOB_PREFIX: Blob path prefix for uploaded archives.
        CDS_OUTPUT_DIR: Local directory archives are written to (default: temp dir).
        CDS_ROOT_OBJECT_ID: ContentDirectory object ID traversal starts from (default: 0).
        CDS_BROWSE_FILTER: Browse Filter argument (default: *).
        CDS_SORT_CRITERIA: Browse SortCriteria argument (default: empty).
        CDS_CHUNK_SIZE: Max entries requested per Browse call (default: 10).
        CDS_HTTP_TIMEOUT: Seconds before an HTTP request to the device times out (default: 30).

    Returns:
        Configured AppConfig instance.
    """
    return AppConfig(
        device_location=os.environ["CDS_DEVICE_LOCATION"],
        storage_connection_string=os.environ.get("AzureWebJobsStorage", ""),  # noqa: SIM112
        archive_container=os.environ.get("CDS_ARCHIVE_CONTAINER", "cds-snapshots"),
        archive_blob_prefix=os.environ.get("CDS_ARCHIVE_BLOB_PREFIX", "snapshots/"),
        output_dir=os.environ.get("CDS_OUTPUT_DIR", tempfile.gettempdir()),
        root_object_id=os.environ.get("CDS_ROOT_OBJECT_ID", "0"),
        browse_filter=os.environ.get("CDS_BROWSE_FILTER", "*"),
        sort_criteria=os.environ.get("CDS_SORT_CRITERIA", ""),
        chunk_size=int(os.environ.get("CDS_CHUNK_SIZE", "10")),
        http_timeout=float(os.environ.get("CDS_HTTP_TIMEOUT", "30")),
    )
