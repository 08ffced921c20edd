"""Timer trigger blueprint — scheduled ContentDirectory snapshot."""

import logging

import azure.functions as func

from cds_extractor.config import load_config
from cds_extractor.orchestration.snapshot import snapshot_processor_from_config

logger = logging.getLogger(__name__)

bp = func.Blueprint()


@bp.timer_trigger(
    schedule="0 0 3 * * *",
    arg_name="timer",
    run_on_startup=False,
)
def timer_trigger(timer: func.TimerRequest) -> None:
    """Scheduled trigger that snapshots the configured MediaServer.

    Runs daily at 03:00. Exports the whole ContentDirectory of the device at
    CDS_DEVICE_LOCATION and uploads the archive when storage is configured.
    """
    logger.info("Timer trigger fired")

    try:
        if timer.past_due:
            logger.warning("Timer trigger is past due")

        config = load_config()
        processor = snapshot_processor_from_config(config)
        report = processor.run(config.device_location)
        for failure in report.result.failures:
            logger.warning("Skipped %s %s: %s", failure.scope, failure.target, failure.reason)
        logger.info(
            "Snapshot %s: %d entries, %d container(s)",
            report.result.outcome.value,
            report.result.entries_written,
            report.result.containers_visited,
        )

    except Exception:
        logger.exception("Timer trigger failed")
        raise
