"""
toolshare-jobs CLI - run the batch jobs once, list them, or start the cron daemon.
"""

import logging
import time

import click

from common.config import AppConfig
from common.errors import InvalidRequestError
from common.log import configure_logging
from common.storage import InMemoryStorage

from .runner import JobRunner, JobStatus, build_services

logger = logging.getLogger(__name__)

EXIT_UNKNOWN_JOB = 1
EXIT_JOB_FAILED = 2


def _bootstrap(ctx) -> tuple[AppConfig, InMemoryStorage, JobRunner]:
    config = AppConfig.load(ctx.obj["config_path"])
    if ctx.obj["state_file"]:
        config.state_file = ctx.obj["state_file"]
    configure_logging(config.log.level, config.log.format)

    storage = InMemoryStorage.load(config.state_file) if config.state_file else InMemoryStorage()
    runner = JobRunner(build_services(config, storage), logging.getLogger("toolshare.jobs"))
    return config, storage, runner


def _save_state(config: AppConfig, storage: InMemoryStorage) -> None:
    if config.state_file:
        storage.dump(config.state_file)
        logger.info("State written to %s", config.state_file)


@click.group()
@click.version_option(version="1.0.0", prog_name="toolshare-jobs")
@click.option("--config", "-c", "config_path", default=None,
              help="Path to the YAML config file")
@click.option("--state", "state_file", default=None,
              help="JSON state file to load before and save after running")
@click.pass_context
def cli(ctx, config_path, state_file):
    """Tool-share settlement batch jobs."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["state_file"] = state_file


@cli.command("list")
def list_jobs():
    """List the available jobs and bundles."""
    for name in JobRunner.job_names():
        click.echo(name)


@cli.command()
@click.argument("job")
@click.option("--month", "-m", default=None,
              help="Settlement month (YYYY-MM) for the monthly jobs")
@click.pass_context
def run(ctx, job, month):
    """Run JOB once and exit."""
    if job not in JobRunner.job_names():
        click.echo(f"Unknown job: {job}", err=True)
        click.echo("Available jobs:", err=True)
        for name in JobRunner.job_names():
            click.echo(f"  {name}", err=True)
        ctx.exit(EXIT_UNKNOWN_JOB)

    config, storage, runner = _bootstrap(ctx)
    try:
        results = runner.run(job, month)
    except InvalidRequestError as e:
        raise click.BadParameter(str(e), param_hint="--month")

    _save_state(config, storage)

    for result in results:
        click.echo(
            f"{result.job}: {result.status.value} processed={result.processed} "
            f"skipped={result.skipped} errors={len(result.entity_errors)}"
        )
        if result.error:
            click.echo(f"  error: {result.error}", err=True)

    if any(r.status == JobStatus.FAILED for r in results):
        ctx.exit(EXIT_JOB_FAILED)


@cli.command()
@click.pass_context
def daemon(ctx):
    """Run all jobs on their cron schedules until interrupted."""
    from .scheduler import build_scheduler

    config, storage, runner = _bootstrap(ctx)
    scheduler = build_scheduler(
        runner, config.scheduler, after_run=lambda: _save_state(config, storage)
    )
    scheduler.start()
    click.echo("Scheduler started. Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        click.echo("Shutting down...")
    finally:
        scheduler.shutdown(wait=True)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
