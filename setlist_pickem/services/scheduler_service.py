"""
Setlist Pick'em Background Scheduler Service

Periodic scoring passes plus schedule and song-catalog refreshes, run by
APScheduler inside the web process. Every job uses max_instances=1 and
coalesce=True so a slow pass is never overlapped by the next tick.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from setlist_pickem import db
from setlist_pickem.services.submission_state import run_gated_scoring_pass
from setlist_pickem.utils.data_sync import DataSync
from setlist_pickem.utils.setlist_client import get_setlist_client
from setlist_pickem.utils.timezone_utils import get_lock_resolver

logger = logging.getLogger(__name__)


def _empty_stats():
    return {
        "last_run": None,
        "total_runs": 0,
        "successful_runs": 0,
        "failed_runs": 0,
        "skipped_runs": 0,
        "last_error": None,
        "submissions_updated": 0,
    }


class SchedulerService:
    """Manages the background scoring and sync jobs"""

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.is_running = False
        self.run_stats = _empty_stats()

        if app:
            self.init_app(app)

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        atexit.register(self.shutdown)

        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        if self.is_running:
            return

        try:
            self.scheduler.remove_all_jobs()
            self._add_core_jobs()
            self.scheduler.start()
            self.is_running = True
            logger.info("Scheduler started successfully")

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Scheduler stopped")

        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")

    def shutdown(self):
        """Graceful shutdown"""
        self.stop()

    def _add_core_jobs(self):
        interval = self.app.config.get("SCORING_INTERVAL_SECONDS", 60)

        self.scheduler.add_job(
            func=self._score_shows,
            trigger=IntervalTrigger(seconds=interval),
            id="score_shows",
            name="Score Locked Shows",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=30,
        )

        # Daily schedule refresh (10 AM UTC, well before any US show locks)
        self.scheduler.add_job(
            func=self._sync_schedule,
            trigger=CronTrigger(hour=10, minute=0),
            id="sync_schedule",
            name="Daily Tour Schedule Sync",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        # Weekly song catalog refresh (Monday 6 AM UTC)
        self.scheduler.add_job(
            func=self._sync_songs,
            trigger=CronTrigger(day_of_week=0, hour=6, minute=0),
            id="sync_songs",
            name="Weekly Song Catalog Sync",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        logger.info(f"Core scheduled jobs added (scoring every {interval}s)")

    def _score_shows(self):
        """Gated scoring pass; idle tours cost one count query"""
        with self.app.app_context():
            try:
                result = run_gated_scoring_pass()
                if result["skipped"]:
                    self.run_stats["skipped_runs"] += 1
                    return

                updated = sum(r["submissions_updated"] for r in result["results"])
                self._update_stats(True, updated)
                if updated:
                    logger.info(
                        f"Scoring pass: {result['shows_processed']} show(s), "
                        f"{updated} submission(s) updated"
                    )

            except Exception as e:
                db.session.rollback()
                self._update_stats(False)
                self.run_stats["last_error"] = str(e)
                logger.error(f"Error in scoring pass: {e}", exc_info=True)

    def _data_sync(self):
        return DataSync(get_setlist_client(), get_lock_resolver())

    def _sync_schedule(self):
        with self.app.app_context():
            year = datetime.now(timezone.utc).year
            success, message = self._data_sync().sync_tours(year)
            if success:
                logger.info(f"Schedule sync: {message}")
            else:
                logger.error(f"Schedule sync failed: {message}")

    def _sync_songs(self):
        with self.app.app_context():
            success, message = self._data_sync().sync_songs()
            if success:
                logger.info(f"Song sync: {message}")
            else:
                logger.error(f"Song sync failed: {message}")

    def _update_stats(self, success, submissions_updated=0):
        self.run_stats["last_run"] = datetime.now(timezone.utc)
        self.run_stats["total_runs"] += 1

        if success:
            self.run_stats["successful_runs"] += 1
            self.run_stats["submissions_updated"] += submissions_updated
            self.run_stats["last_error"] = None
        else:
            self.run_stats["failed_runs"] += 1

        if self.run_stats["total_runs"] > 10000:
            last_run = self.run_stats["last_run"]
            self.run_stats = _empty_stats()
            self.run_stats["last_run"] = last_run

    def get_status(self):
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = getattr(job, "next_run_time", None)
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        stats = dict(self.run_stats)
        if stats["last_run"]:
            stats["last_run"] = stats["last_run"].isoformat()
        return {"is_running": self.is_running, "jobs": jobs, "stats": stats}

    def force_run(self, job_type="score"):
        """Manually trigger a job outside its schedule"""
        jobs = {
            "score": self._score_shows,
            "schedule": self._sync_schedule,
            "songs": self._sync_songs,
        }
        if job_type not in jobs:
            raise ValueError(f"Unknown job type: {job_type}")

        jobs[job_type]()
        return True, f"Manual {job_type} run completed"


# Global scheduler instance
scheduler_service = SchedulerService()
