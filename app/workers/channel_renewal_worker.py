"""
Background worker renewing calendar push channels

Runs the channel renewal pass on a fixed interval and logs a channel health
snapshot more frequently. All lifecycle logic lives in CalendarChannelManager;
this worker only owns the schedule.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app import config
from app.services.calendar_channel_manager import CalendarChannelManager

logger = logging.getLogger(__name__)


class ChannelRenewalWorker:
    """
    Scheduled ticker for channel renewal and health reporting
    """

    def __init__(
        self,
        channel_manager: CalendarChannelManager,
        renewal_interval_hours: int = config.CHANNEL_RENEWAL_INTERVAL_HOURS,
        health_interval_minutes: int = config.CHANNEL_HEALTH_CHECK_INTERVAL_MINUTES,
        startup_delay_seconds: int = 60,
        scheduler: AsyncIOScheduler = None,
    ):
        """
        Args:
            channel_manager: Manager performing the renewals
            renewal_interval_hours: How often to run the renewal pass
            health_interval_minutes: How often to log channel health
            startup_delay_seconds: Delay of the first pass after start (lets health checks pass)
        """
        self.channel_manager = channel_manager
        self.scheduler = scheduler or AsyncIOScheduler()
        self.renewal_interval_hours = renewal_interval_hours
        self.health_interval_minutes = health_interval_minutes
        self.startup_delay_seconds = startup_delay_seconds
        self.is_running = False
        self.stats = {
            "runs": 0,
            "renewed": 0,
            "failed": 0,
            "last_run_at": None,
            "last_error": None,
        }

        logger.info(f"Initialized ChannelRenewalWorker with {renewal_interval_hours} hour interval")

    def start(self):
        """Start the scheduled renewal worker"""
        if self.is_running:
            return

        self.scheduler.add_job(
            self.run_renewal_pass,
            trigger=IntervalTrigger(hours=self.renewal_interval_hours),
            id='channel_renewal_worker',
            name='Channel Renewal Worker',
            misfire_grace_time=300,
            coalesce=True,
            max_instances=1
        )

        self.scheduler.add_job(
            self.log_channel_health,
            trigger=IntervalTrigger(minutes=self.health_interval_minutes),
            id='channel_health_monitor',
            name='Channel Health Monitor',
            misfire_grace_time=120,
            coalesce=True,
            max_instances=1
        )

        self.scheduler.add_job(
            self.run_renewal_pass,
            trigger='date',
            run_date=datetime.now() + timedelta(seconds=self.startup_delay_seconds),
            id='channel_renewal_startup',
            name='Channel Renewal Worker (Startup)'
        )

        self.scheduler.start()
        self.is_running = True
        logger.info(f"Channel renewal worker started (runs every {self.renewal_interval_hours} hours)")

    def stop(self):
        """Stop the scheduled renewal worker"""
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Channel renewal worker stopped")

    async def run_renewal_pass(self) -> Dict[str, Any]:
        """Run one renewal pass; failures are logged and never escape into the scheduler."""
        self.stats["runs"] += 1
        self.stats["last_run_at"] = datetime.now().isoformat()
        try:
            report = await self.channel_manager.process_channel_renewals()
        except Exception as e:
            self.stats["last_error"] = str(e)
            logger.error(f"Channel renewal pass failed: {e}", exc_info=True)
            return {"success": False, "error": str(e)}

        self.stats["renewed"] += report.succeeded
        self.stats["failed"] += report.failed
        return {"success": True, **report.to_dict()}

    async def log_channel_health(self) -> Dict[str, Any]:
        health = await self.channel_manager.health_check()
        if health.get("healthy"):
            logger.info(f"Channel health: {health.get('stats')}")
        else:
            logger.warning(f"Channel health degraded: {health}")
        return health

    def get_stats(self) -> Dict[str, Any]:
        return {"is_running": self.is_running, **self.stats}
