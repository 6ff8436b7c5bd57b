"""
APScheduler configuration for recurring backup runs.

The `schedule` command runs the configured batch on a cron expression. The
configuration file is re-read on every run, so edits take effect without a
restart.
"""

from typing import Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from backupx.backup.executor import BackupManager
from backupx.config import Config, load_config
from backupx.logs import BackupLog


BACKUP_JOB_ID = 'backup_batch'

# Lines kept by the long-lived scheduler sink
SCHEDULER_LOG_LINES = 1000

# Global scheduler instance
scheduler = None


def init_scheduler(cron: str, config_path: Optional[str] = None, log: Optional[BackupLog] = None):
    """
    Initialize and configure APScheduler.

    Args:
        cron: Crontab expression (e.g. '0 2 * * *')
        config_path: Configuration file to load on every run
        log: Log sink for scheduler messages

    Returns:
        The scheduler instance

    Raises:
        ValueError: If the cron expression is invalid
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    log = log or BackupLog(max_lines=SCHEDULER_LOG_LINES)
    trigger = CronTrigger.from_crontab(cron, timezone=Config.SCHEDULER_TIMEZONE)

    job_defaults = {
        'coalesce': True,  # Combine multiple pending runs into one
        'max_instances': 1,  # Runs never overlap
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(
        executors={'default': ThreadPoolExecutor(max_workers=1)},
        job_defaults=job_defaults,
        timezone=Config.SCHEDULER_TIMEZONE
    )

    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config_path, log],
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name=f"Backup ({cron})",
        replace_existing=True
    )

    log.info(f"Scheduled backup run: {cron} ({Config.SCHEDULER_TIMEZONE})")
    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until stop_scheduler() is called.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()


def stop_scheduler():
    """Stop the scheduler and forget it."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
    scheduler = None


def _execute_backup_wrapper(config_path: Optional[str], log: BackupLog):
    """
    Run one batch from the scheduler.

    Errors are logged so a bad run never stops the schedule. Each run gets
    its own sink so its lines are released when the run ends.
    """
    try:
        config = load_config(config_path)
        run_log = BackupLog(logger=log.logger, verbose=config.verbose)
        summary = BackupManager(config, run_log).run()
        log.info(
            f"Scheduled backup finished: {summary.success_count} succeeded, "
            f"{summary.failure_count} failed"
        )
        return summary
    except Exception as e:
        log.error(f"Scheduled backup failed: {e}")
        return None


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, 'next_run_time', None)
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })
    return jobs
