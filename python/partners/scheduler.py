"""
Scheduled SAP reverse sync.

Uses APScheduler to run the reverse sync on the configured cron expression.
"""

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config_manager import SapConfig
from database.connection import DatabaseSessionProvider
from partners.reverse_sync import SapSyncService, SyncSummary

logger = logging.getLogger(__name__)

DEFAULT_CRON = "0 * * * *"
JOB_ID = "sap_reverse_sync"


def run_sync_job(provider: DatabaseSessionProvider, config: SapConfig) -> Optional[SyncSummary]:
    """
    Run one reverse sync in its own session.

    Errors are logged and swallowed so the scheduler keeps running.
    """
    if not config.enabled:
        return None
    try:
        with provider.session_scope() as session:
            summary = SapSyncService(session, config).sync_partners()
    except Exception:
        logger.exception("SAP reverse sync failed")
        return None
    logger.info(
        f"Scheduled SAP sync done. fetched={summary.fetched} updated={summary.updated} "
        f"skipped={summary.skipped} errors={summary.errors}"
    )
    return summary


def create_scheduler(provider: DatabaseSessionProvider, config: SapConfig) -> BackgroundScheduler:
    """Background scheduler with the reverse sync job registered"""
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_sync_job,
        trigger=CronTrigger.from_crontab(config.cron_expression or DEFAULT_CRON, timezone="UTC"),
        args=[provider, config],
        id=JOB_ID,
        name="SAP reverse sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
