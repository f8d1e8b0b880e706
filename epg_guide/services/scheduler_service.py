import logging
from datetime import datetime, timezone
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from epg_guide.config import settings
from epg_guide.services.refresh_service import RefreshCoordinator


logger = logging.getLogger(__name__)

class EPGScheduler:
    """Scheduler for periodic EPG refresh"""

    def __init__(self):
        self.scheduler: AsyncIOScheduler | None = None
        self._coordinator: RefreshCoordinator | None = None

    async def _refresh_job(self, conditional: bool) -> None:
        """Background job that runs the EPG refresh"""
        logger.info("Scheduled EPG refresh triggered (conditional=%s)", conditional)
        try:
            if conditional:
                result = await self._coordinator.check_and_refresh()
            else:
                result = await self._coordinator.refresh()
            if "error" in result:
                logger.error(f"Scheduled refresh failed: {result['error']}")
        except Exception as e:
            logger.error(f"Exception in scheduled refresh: {e}", exc_info=True)

    def start(self, coordinator: RefreshCoordinator) -> None:
        """Start the scheduler with the periodic refresh job and optional startup job"""
        if self.scheduler and self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        try:
            trigger = CronTrigger.from_crontab(settings.epg_refresh_cron, timezone="UTC")
        except (ValueError, KeyError) as exc:
            logger.error("Invalid cron expression '%s': %s", settings.epg_refresh_cron, exc)
            raise

        self._coordinator = coordinator
        self.scheduler = AsyncIOScheduler(timezone='UTC')
        self.scheduler.add_job(
            self._refresh_job,
            trigger=trigger,
            kwargs={"conditional": settings.epg_check_source_updates},
            id='epg_refresh',
            max_instances=1,
            coalesce=True,
            misfire_grace_time=settings.epg_refresh_misfire_grace_sec
        )

        if settings.epg_refresh_on_startup:
            self.scheduler.add_job(
                self._refresh_job,
                trigger=DateTrigger(run_date=datetime.now(timezone.utc)),
                kwargs={"conditional": False},
                id='epg_startup_refresh',
                misfire_grace_time=None
            )

        self.scheduler.start()
        next_time = self.get_next_run_time()
        logger.info(
            "Scheduler started. Next refresh: %s",
            next_time.isoformat() if next_time else "unknown"
        )

    def shutdown(self) -> None:
        """Shutdown the scheduler"""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
            self.scheduler = None

    def get_next_run_time(self) -> datetime | None:
        """Get next scheduled refresh time"""
        if not self.scheduler:
            return None
        job = self.scheduler.get_job('epg_refresh')
        return job.next_run_time if job else None


epg_scheduler = EPGScheduler()
