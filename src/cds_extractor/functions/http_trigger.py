"""HTTP trigger blueprint — health check and manual snapshot endpoints."""

import json
import logging

import azure.functions as func

from cds_extractor import __version__
from cds_extractor.config import load_config
from cds_extractor.orchestration.snapshot import snapshot_processor_from_config

logger = logging.getLogger(__name__)

bp = func.Blueprint()


@bp.route(route="health", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health_check(req: func.HttpRequest) -> func.HttpResponse:
    """Health check endpoint.

    Returns service status and version.
    """
    logger.info("[health_check] health check requested")

    try:
        body = json.dumps({"status": "ok", "version": __version__})
        return func.HttpResponse(body, status_code=200, mimetype="application/json")

    except Exception:
        logger.error("[health_check] health check failed", exc_info=True)
        error_body = json.dumps({"status": "error", "message": "Internal server error"})
        return func.HttpResponse(error_body, status_code=500, mimetype="application/json")


def _requested_location(req: func.HttpRequest, default: str) -> str:
    """Return the ``location`` from a JSON body, or the configured default."""
    try:
        body = req.get_json()
    except ValueError:
        return default
    if isinstance(body, dict) and body.get("location"):
        return str(body["location"])
    return default


@bp.route(route="export", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def manual_export(req: func.HttpRequest) -> func.HttpResponse:
    """Manual export endpoint — snapshots a MediaServer on demand.

    Requires a function key for authentication. An optional JSON body
    ``{"location": "<device description URL>"}`` overrides the configured
    device. Returns the outcome, counts and skipped entries in the response.
    """
    logger.info("[manual_export] manual export requested")

    try:
        config = load_config()
        location = _requested_location(req, config.device_location)
        processor = snapshot_processor_from_config(config)
        report = processor.run(location)

        logger.info(
            "[manual_export] export complete; outcome:%s;entries:%d;failures:%d",
            report.result.outcome.value,
            report.result.entries_written,
            len(report.result.failures),
        )
        body = json.dumps({"status": "ok", **report.to_dict()})
        return func.HttpResponse(body, status_code=200, mimetype="application/json")

    except Exception:
        logger.error("[manual_export] manual export failed", exc_info=True)
        error_body = json.dumps({"status": "error", "message": "Export did not complete"})
        return func.HttpResponse(error_body, status_code=500, mimetype="application/json")
