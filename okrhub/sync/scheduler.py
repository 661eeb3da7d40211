import atexit
import threading
from datetime import datetime, timedelta

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from okrhub.errors import NotConfigured
from okrhub.logging_config import get_logger

logger = get_logger(__name__)

DRAIN_JOB_ID = "okrhub_drain"


class DrainScheduler:
    """
    Self re-arming timer for the drain loop.

    There is never more than one pending drain job: every re-arm replaces the
    job with the fixed id, so arming twice is the same as arming once. Each
    tick runs the drain inside the app context and the drain re-arms from the
    config it reads after the run.
    """

    def __init__(self, app, drain=None):
        self.app = app
        self._drain = drain
        self._scheduler = None
        self._lock = threading.Lock()

    @property
    def running(self):
        return self._scheduler is not None and self._scheduler.running

    def start(self):
        """Start the background scheduler. Calling it again is a no-op."""
        with self._lock:
            if self.running:
                return False
            executors = {"default": ThreadPoolExecutor(1)}
            self._scheduler = BackgroundScheduler(executors=executors)
            self._scheduler.start()
            atexit.register(self.stop)
        logger.info("Drain scheduler started")
        return True

    def schedule_next(self, interval_ms):
        """Arm (or re-arm) the single drain job ``interval_ms`` from now."""
        if not self.running:
            self.start()
        run_date = datetime.now() + timedelta(milliseconds=int(interval_ms))
        self._scheduler.add_job(
            func=self._tick,
            trigger="date",
            run_date=run_date,
            id=DRAIN_JOB_ID,
            replace_existing=True,
        )
        logger.debug("Drain job armed", run_date=run_date.isoformat(), interval_ms=interval_ms)
        return run_date

    def cancel(self):
        """Drop the pending drain job, if any."""
        if self._scheduler is None:
            return
        if self._scheduler.get_job(DRAIN_JOB_ID) is not None:
            self._scheduler.remove_job(DRAIN_JOB_ID)
            logger.info("Pending drain job cancelled")

    def next_run_time(self):
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(DRAIN_JOB_ID)
        return job.next_run_time if job is not None else None

    def stop(self):
        with self._lock:
            if self.running:
                self._scheduler.shutdown(wait=False)
                logger.info("Drain scheduler stopped")
            self._scheduler = None

    def _tick(self):
        if self._drain is None:
            from okrhub.sync.processor import process_sync_queue
            drain = process_sync_queue
        else:
            drain = self._drain

        with self.app.app_context():
            try:
                drain(rescheduler=self.schedule_next)
            except NotConfigured:
                logger.warning("Scheduled drain skipped: LinkHub not configured")
            except Exception as e:
                logger.error("Scheduled drain failed", error=str(e), exc_info=True)
                # Keep the chain alive after an unexpected failure
                from okrhub.services.config_service import ConfigService
                settings = ConfigService.read_config()
                if settings is not None and settings.auto_sync_enabled:
                    self.schedule_next(settings.sync_interval_ms)
