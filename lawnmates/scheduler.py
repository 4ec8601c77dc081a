"""
LawnMates Background Scheduler

Runs periodic tasks:
- Sweep closed channels out of the notification registry (every heartbeat interval)

Started by create_app() only when HEARTBEAT_ENABLED is set, so test runs and
one-off CLI invocations do not spawn the thread.
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)


def sweep_channels(app):
    """Drop channels whose socket missed its ping window or closed."""
    from lawnmates.services import get_services

    registry = get_services(app).registry
    removed = registry.sweep()
    logger.debug(
        "Scheduler: sweep removed %d channel(s), %d still open",
        removed, registry.connected_count(),
    )
    return removed


def init_scheduler(app):
    """Initialize and start the background scheduler."""
    interval = int(app.config.get("HEARTBEAT_INTERVAL_SECONDS", 30))

    try:
        scheduler = BackgroundScheduler(daemon=True)

        scheduler.add_job(
            sweep_channels,
            "interval",
            seconds=interval,
            args=[app],
            id="sweep_channels",
            name="Sweep dead notification channels",
            max_instances=1,
            coalesce=True,
        )

        scheduler.start()
        logger.info("Background scheduler started (channel sweep every %ss)", interval)
        app.extensions["lawnmates_scheduler"] = scheduler
        return scheduler
    except Exception:
        logger.exception("Failed to start scheduler")
        return None
