"""CLI interface for widactl"""

import asyncio
import signal
import sys
from datetime import datetime, timezone

import click
from loguru import logger

from . import __version__, views
from .client import WidaClient
from .config import ConfigStore, apply_setting, resolve_config
from .errors import ConsoleError
from .export import DEFAULT_EXPORT_FILE, export_dlq_csv
from .job_manager import DEFAULT_PAYLOAD, EnqueueForm, JobManager, default_job_id
from .models import JobStatus
from .poller import PollCoordinator
from .store import ViewStore

# Seconds to wait for outstanding requests when leaving watch mode
SHUTDOWN_GRACE = 2.0


class Console:
    """Client, view-state and coordinator wired together for one command"""

    def __init__(self, config, transport=None):
        self.config = config
        self.store = ViewStore()
        self.client = WidaClient(config.base_url, config.request_timeout, transport)
        self.coordinator = PollCoordinator(self.client, self.store, config.poll_interval)
        self.job_manager = JobManager(self.client, self.coordinator)


def _configure_logging(log_level: str, quiet: bool):
    logger.remove()
    if quiet:
        logger.add(sys.stderr, level="ERROR", format="{message}")
    else:
        logger.add(
            sys.stderr,
            level=log_level.upper(),
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        )


def _console(ctx) -> Console:
    obj = ctx.obj
    config = resolve_config(obj['config_store'], obj.get('url'))
    return Console(config, transport=obj.get('transport'))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _echo_lines(lines):
    for line in lines:
        click.echo(line)


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


async def _refresh_once(console: Console):
    try:
        await console.coordinator.refresh()
    finally:
        await console.client.aclose()
    return console.store.snapshot()


def _snapshot(ctx):
    """Poll every resource once and return the resulting view-state"""
    return asyncio.run(_refresh_once(_console(ctx)))


@click.group()
@click.option('--url', help='Backend base URL (overrides WIDA_URL and stored config)')
@click.option('--log-level', default='WARNING',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Logging level')
@click.option('--quiet', '-q', is_flag=True, help='Only log errors')
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, url, log_level, quiet):
    """widactl - monitoring console for the Wida job platform"""
    _configure_logging(log_level, quiet)
    ctx.ensure_object(dict)
    ctx.obj['url'] = url
    if 'config_store' not in ctx.obj:
        ctx.obj['config_store'] = ConfigStore()


@cli.command()
@click.pass_context
def status(ctx):
    """Show the dashboard: KPIs, status distribution and queue backlog"""
    state = _snapshot(ctx)
    _echo_lines(views.render_dashboard(state, _now()))


@cli.command()
@click.pass_context
def queues(ctx):
    """Show per-queue job counts"""
    _echo_lines(views.render_queues(_snapshot(ctx)))


@cli.group()
def jobs():
    """Inspect jobs"""
    pass


@jobs.command('list')
@click.option('--status', 'status_filter',
              type=click.Choice([s.value for s in JobStatus if s != JobStatus.DEAD]),
              help='Only show jobs with this status')
@click.option('--limit', default=None, type=int, help='Maximum number of jobs to show')
@click.pass_context
def list_jobs(ctx, status_filter, limit):
    """List jobs"""
    job_status = JobStatus(status_filter) if status_filter else None
    _echo_lines(views.render_jobs(_snapshot(ctx), job_status, limit))


@jobs.command('show')
@click.argument('job_id')
@click.pass_context
def show_job(ctx, job_id):
    """Show payload, retry policy and attempts of one job"""
    state = _snapshot(ctx)
    for job in state.jobs:
        if job.id == job_id:
            _echo_lines(views.render_job(job))
            return
    _fail(f"Job {job_id} not found")


@cli.command()
@click.pass_context
def workers(ctx):
    """Show workers and their liveness"""
    _echo_lines(views.render_workers(_snapshot(ctx), _now()))


@cli.command()
@click.pass_context
def scheduler(ctx):
    """Show leader status, cron jobs and job dependencies"""
    _echo_lines(views.render_scheduler(_snapshot(ctx)))


@cli.group()
def dlq():
    """Dead Letter Queue"""
    pass


@dlq.command('list')
@click.option('--limit', default=None, type=int, help='Maximum number of jobs to show')
@click.pass_context
def list_dlq(ctx, limit):
    """View jobs in the Dead Letter Queue"""
    _echo_lines(views.render_dlq(_snapshot(ctx), limit))


@dlq.command('export')
@click.option('--output', '-o', default=DEFAULT_EXPORT_FILE, show_default=True,
              help="File to write, or '-' for stdout")
@click.pass_context
def export_dlq(ctx, output):
    """Export the Dead Letter Queue as CSV"""
    state = _snapshot(ctx)
    content = export_dlq_csv(state.dlq)
    if not content:
        click.echo("No jobs in Dead Letter Queue")
        return
    if output == '-':
        click.echo(content)
        return
    with open(output, 'w', encoding='utf-8', newline='') as f:
        f.write(content)
    click.echo(f"Exported {len(state.dlq)} jobs to {output}")


async def _enqueue(console: Console, form: EnqueueForm):
    try:
        job = await console.job_manager.enqueue_job(form)
    finally:
        await console.client.aclose()
    return job


@cli.command()
@click.option('--id', 'job_id', default=None, help='Job ID (default: job-ui-<epoch ms>)')
@click.option('--queue', default='default', show_default=True, help='Queue name')
@click.option('--payload', default=DEFAULT_PAYLOAD, help='Payload as JSON')
@click.option('--cron', 'cron_expr', default='', help='Cron expression for recurring jobs')
@click.option('--timeout', 'timeout_ms', default=30000, type=int, show_default=True,
              help='Timeout in milliseconds')
@click.option('--max-retries', default=3, type=int, show_default=True, help='Maximum retries')
@click.option('--dependencies', default='', help='Comma-separated IDs of jobs this job depends on')
@click.pass_context
def enqueue(ctx, job_id, queue, payload, cron_expr, timeout_ms, max_retries, dependencies):
    """Add a new job to the queue

    Example: widactl enqueue --queue emails --payload '{"to":"a@b.c"}'
    """
    form = EnqueueForm(
        id=job_id or default_job_id(),
        queue=queue,
        payload=payload,
        cron_expr=cron_expr,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
        dependencies=dependencies,
    )
    console = _console(ctx)
    try:
        job = asyncio.run(_enqueue(console, form))
    except ConsoleError as e:
        _fail(str(e))
    click.echo(f"Enqueued job {job['id']} on queue {job['queue']}")
    click.echo()
    _echo_lines(views.render_jobs(console.store.snapshot()))


async def _watch(console: Console, view: str):
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    def redraw(state):
        click.clear()
        _echo_lines(views.render_view(view, state, _now()))
        click.echo()
        click.echo(f"Polling {console.config.base_url} every {console.config.poll_interval:g}s. "
                   f"Press Ctrl+C to stop.")

    unsubscribe = console.store.subscribe(redraw)
    console.coordinator.start()
    try:
        await stop_event.wait()
    finally:
        unsubscribe()
        console.coordinator.stop()
        await console.coordinator.drain(timeout=SHUTDOWN_GRACE)
        await console.client.aclose()


@cli.command()
@click.option('--view', default='dashboard', type=click.Choice(views.VIEWS), show_default=True,
              help='View to display')
@click.pass_context
def watch(ctx, view):
    """Continuously poll the backend and redraw a view"""
    console = _console(ctx)
    try:
        asyncio.run(_watch(console, view))
    except KeyboardInterrupt:
        pass
    click.echo("Stopped.")


@cli.group()
def config():
    """Configuration management"""
    pass


@config.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def set_config(ctx, key, value):
    """Set a configuration value (base-url, poll-interval, request-timeout)"""
    store = ctx.obj['config_store']
    try:
        updated = apply_setting(store.get_config(), key, value)
    except ConsoleError as e:
        _fail(str(e))
    store.save_config(updated)
    click.echo(f"Set {key} = {value}")


@config.command('show')
@click.pass_context
def show_config(ctx):
    """Show current configuration"""
    current = resolve_config(ctx.obj['config_store'], ctx.obj.get('url'))
    timeout = "none" if current.request_timeout is None else f"{current.request_timeout:g}"
    click.echo("=== Configuration ===")
    click.echo(f"base-url: {current.base_url}")
    click.echo(f"poll-interval: {current.poll_interval:g}")
    click.echo(f"request-timeout: {timeout}")


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
