"""Command-line entry point — snapshot one MediaServer into a zip archive."""

from __future__ import annotations

import argparse
import logging
import os
import queue
import sys
from concurrent.futures import TimeoutError as FutureTimeoutError

from azure.core.exceptions import AzureError

from cds_extractor import __version__
from cds_extractor.config import AppConfig
from cds_extractor.export.exceptions import ExportError
from cds_extractor.export.paths import archive_file_name
from cds_extractor.export.upload import archive_uploader_from_config
from cds_extractor.orchestration.coordinator import export_coordinator_from_config
from cds_extractor.orchestration.worker import ExportWorker
from cds_extractor.upnp.client import UpnpError, soap_client_from_config
from cds_extractor.upnp.device import load_media_server

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

# Seconds between progress polls while the worker runs.
POLL_INTERVAL = 0.2


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="cds-extractor",
        description="Save the whole ContentDirectory of a UPnP MediaServer into a zip archive",
    )
    parser.add_argument("location", help="URL of the MediaServer device description document")
    parser.add_argument(
        "-o",
        "--output-dir",
        default=".",
        help="directory the archive is written to (default: current directory)",
    )
    parser.add_argument("--root", default="0", help="ObjectID to start from (default: 0)")
    parser.add_argument("--filter", default="*", help="Browse Filter argument (default: *)")
    parser.add_argument("--sort", default="", help="Browse SortCriteria argument")
    parser.add_argument(
        "--chunk-size", type=int, default=10, help="entries requested per Browse call"
    )
    parser.add_argument(
        "--timeout", type=float, default=30.0, help="HTTP timeout in seconds (default: 30)"
    )
    parser.add_argument(
        "--upload",
        action="store_true",
        help="upload the archive to the blob container configured via AzureWebJobsStorage",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def config_from_args(args: argparse.Namespace) -> AppConfig:
    """Build an AppConfig from parsed arguments; storage settings come from env."""
    return AppConfig(
        device_location=args.location,
        storage_connection_string=(
            os.environ.get("AzureWebJobsStorage", "") if args.upload else ""  # noqa: SIM112
        ),
        archive_container=os.environ.get("CDS_ARCHIVE_CONTAINER", "cds-snapshots"),
        archive_blob_prefix=os.environ.get("CDS_ARCHIVE_BLOB_PREFIX", "snapshots/"),
        output_dir=args.output_dir,
        root_object_id=args.root,
        browse_filter=args.filter,
        sort_criteria=args.sort,
        chunk_size=args.chunk_size,
        http_timeout=args.timeout,
    )


def main(argv: list[str] | None = None) -> int:
    """Run one export and report progress on stderr.

    Ctrl-C requests cancellation; the archive is closed with whatever was
    written so far.
    """
    args = create_argument_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    config = config_from_args(args)
    if args.upload and not config.storage_connection_string:
        logger.error("[main] --upload needs AzureWebJobsStorage to be set")
        return EXIT_FAILED

    try:
        coordinator = export_coordinator_from_config(config)
    except ValueError as exc:
        logger.error("[main] invalid export settings; error:%s", exc)
        return EXIT_FAILED

    try:
        server = load_media_server(config.device_location, soap_client_from_config(config))
    except UpnpError:
        logger.error(
            "[main] cannot load device; location:%s", config.device_location, exc_info=True
        )
        return EXIT_FAILED

    destination = os.path.join(config.output_dir, archive_file_name(server.friendly_name))
    worker = ExportWorker(coordinator)
    future = worker.start(server, destination)
    try:
        while True:
            try:
                result = future.result(timeout=POLL_INTERVAL)
                break
            except FutureTimeoutError:
                pass
            except KeyboardInterrupt:
                print("\ncancelling...", file=sys.stderr)
                worker.cancel()
            _drain_progress(worker)
    except ExportError:
        logger.error("[main] export did not complete; archive:%s", destination, exc_info=True)
        return EXIT_FAILED
    finally:
        worker.shutdown()

    _drain_progress(worker)
    print(file=sys.stderr)
    for failure in result.failures:
        print(f"skipped {failure.scope} {failure.target}: {failure.reason}", file=sys.stderr)

    if not result.completed:
        print(f"cancelled, partial archive kept: {result.archive_path}", file=sys.stderr)
        return EXIT_CANCELLED

    try:
        uploader = archive_uploader_from_config(config)
        if uploader is not None:
            uploader.upload(result.archive_path)
    except (AzureError, OSError, ValueError):
        logger.error("[main] upload failed; archive:%s", result.archive_path, exc_info=True)
        print(f"upload failed, archive kept: {result.archive_path}", file=sys.stderr)
        return EXIT_FAILED
    print(f"done: {result.archive_path}", file=sys.stderr)
    return EXIT_OK


def _drain_progress(worker: ExportWorker) -> None:
    latest = None
    while True:
        try:
            latest = worker.progress_events.get_nowait()
        except queue.Empty:
            break
    if latest is not None:
        print(f"\r{latest}", end="", file=sys.stderr, flush=True)


if __name__ == "__main__":
    sys.exit(main())
