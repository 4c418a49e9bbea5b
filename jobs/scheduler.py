import logging
from typing import Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from common.config import SchedulerConfig

from .runner import JobRunner, JobStatus

logger = logging.getLogger(__name__)


def build_scheduler(
    runner: JobRunner,
    config: SchedulerConfig,
    after_run: Optional[Callable[[], None]] = None,
) -> BackgroundScheduler:
    """
    Register every job on its cron schedule.

    A single worker thread and ``max_instances=1`` keep the jobs strictly
    serial. ``after_run`` is called after each job, e.g. to persist state.
    """
    scheduler = BackgroundScheduler(
        executors={"default": ThreadPoolExecutor(max_workers=1)},
        job_defaults={"coalesce": True, "max_instances": 1},
        timezone=config.timezone,
    )

    for name, crontab in config.schedules().items():
        scheduler.add_job(
            _run_scheduled,
            trigger=CronTrigger.from_crontab(crontab, timezone=config.timezone),
            args=[runner, name, after_run],
            id=name,
            name=name,
            replace_existing=True,
        )
        logger.info("Scheduled %s with cron %r (%s)", name, crontab, config.timezone)

    return scheduler


def _run_scheduled(runner: JobRunner, name: str, after_run: Optional[Callable[[], None]] = None) -> None:
    for result in runner.run(name):
        if result.status == JobStatus.FAILED:
            logger.error("Scheduled job %s failed: %s", name, result.error)
    if after_run is not None:
        after_run()
