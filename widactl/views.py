"""Plain-text renderers for the console views"""

import json
from datetime import datetime, timezone
from typing import List, Optional

from . import stats
from .models import Job, JobStatus
from .store import ViewState

VIEWS = ("dashboard", "queues", "jobs", "workers", "scheduler", "dlq")


def _when(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _duration(nanos: int) -> str:
    seconds = nanos / 1_000_000_000
    return f"{seconds:g}s"


def render_dashboard(state: ViewState, now: datetime) -> List[str]:
    global_stats = stats.global_stats(state.jobs, state.dlq)
    alive = sum(1 for worker in state.workers if stats.is_alive(worker, now))
    lines = [
        "=== Dashboard ===",
        f"Total Jobs:        {global_stats.total_jobs}",
        f"Active Workers:    {len(state.workers)} ({alive} alive)",
        f"Scheduler Status:  {stats.leader_label(state.is_leader)}",
        f"Dead Letter Queue: {global_stats.dead_jobs}",
        f"Running: {global_stats.running_jobs}  Failed: {global_stats.failed_jobs}",
        "",
        "--- Status Distribution ---",
    ]
    histogram = stats.status_histogram(state.jobs, state.dlq)
    if histogram:
        lines.extend(f"{name:<8} {count}" for name, count in histogram)
    else:
        lines.append("No data")

    lines.extend(["", "--- Queue Backlog (pending) ---"])
    backlog = stats.queue_backlog(state.jobs)
    if backlog:
        lines.extend(f"{name:<16} {count}" for name, count in backlog)
    else:
        lines.append("No pending jobs")

    if not stats.throughput_series(state.jobs):
        lines.extend(["", "Throughput history is not available from the backend"])

    lines.extend(["", "--- Recent Activity ---"])
    recent = stats.recent_jobs(state.jobs)
    if recent:
        lines.extend(f"{job.id}  {job.queue}  [{job.status.value}]" for job in recent)
    else:
        lines.append("No jobs yet")
    return lines


def render_queues(state: ViewState) -> List[str]:
    lines = ["=== Queues ==="]
    for queue in stats.queue_summaries(state.jobs):
        lines.append(
            f"{queue.name}: pending {queue.pending}, running {queue.running}, failed {queue.failed}"
        )
    return lines


def render_jobs(state: ViewState, status: Optional[JobStatus] = None, limit: Optional[int] = None) -> List[str]:
    jobs = [job for job in state.jobs if status is None or job.status == status]
    if limit is not None:
        jobs = jobs[:limit]
    if not jobs:
        return ["No jobs found"]
    lines = [f"=== Jobs ({len(jobs)} found) ==="]
    for job in jobs:
        lines.append(
            f"{job.id}: queue {job.queue} [{job.status.value}] "
            f"(attempts: {len(job.attempts)}, max retries: {job.max_retries})"
        )
    return lines


def render_job(job: Job) -> List[str]:
    """Inspector view of a single job"""
    lines = [
        f"=== Job {job.id} [{job.status.value}] ===",
        f"Queue:       {job.queue}",
        f"Timeout:     {_duration(job.timeout)}",
        f"Max Retries: {job.max_retries}",
        f"Retry:       initial {_duration(job.retry_policy.initial_interval)}, "
        f"max {_duration(job.retry_policy.max_interval)}, "
        f"attempts {job.retry_policy.max_attempts}",
    ]
    if job.cron_expr:
        lines.append(f"Cron:        {job.cron_expr}")
    if job.run_at:
        lines.append(f"Run At:      {_when(job.run_at)}")
    if job.dependencies:
        lines.append(f"Depends On:  {', '.join(job.dependencies)}")
    if job.dependents:
        lines.append(f"Dependents:  {', '.join(job.dependents)}")
    lines.append("Payload:")
    lines.extend("  " + line for line in json.dumps(job.payload, indent=2).splitlines())
    if job.attempts:
        lines.append("Attempts:")
        for number, attempt in enumerate(job.attempts, start=1):
            finished = f" -> {_when(attempt.finished_at)}" if attempt.finished_at else ""
            lines.append(f"  #{number} [{attempt.status}] {_when(attempt.started_at)}{finished}")
            if attempt.error:
                lines.append(f"     error: {attempt.error}")
    return lines


def render_workers(state: ViewState, now: datetime) -> List[str]:
    if not state.workers:
        return ["No active workers found in network registry."]
    lines = [f"=== Workers ({len(state.workers)}) ==="]
    for worker, state_label in stats.worker_states(state.workers, now):
        current = f" (executing {worker.current_job_id})" if worker.current_job_id else ""
        lines.append(
            f"{worker.id}: {state_label.value}{current}, "
            f"{worker.jobs_completed:,} processed, last heartbeat {_when(worker.last_heartbeat)}"
        )
    return lines


def render_scheduler(state: ViewState) -> List[str]:
    lines = [
        "=== Scheduler ===",
        f"Leader Election: {stats.election_label(state.is_leader)} Node",
        "",
        "--- Cron Jobs ---",
    ]
    cron = stats.cron_jobs(state.jobs)
    if cron:
        lines.extend(f"{job.id}: {job.cron_expr} (queue {job.queue})" for job in cron)
    else:
        lines.append("No cron jobs scheduled")

    lines.extend(["", "--- Dependencies ---"])
    dag = stats.dag_jobs(state.jobs)
    if dag:
        lines.extend(f"{job.id} <- {', '.join(deps)}" for job, deps in dag)
    else:
        lines.append("No jobs with dependencies")
    return lines


def render_dlq(state: ViewState, limit: Optional[int] = None) -> List[str]:
    dead = list(state.dlq[:limit] if limit is not None else state.dlq)
    if not dead:
        return ["No jobs in Dead Letter Queue"]
    lines = [f"=== Dead Letter Queue ({len(dead)} jobs) ==="]
    for job in dead:
        lines.append(f"{job.id}: queue {job.queue}")
        lines.append(f"  Failed after {len(job.attempts)} attempts at {_when(job.failed_at)}")
        lines.append(f"  Reason: {job.reason}")
    return lines


def render_view(view: str, state: ViewState, now: datetime) -> List[str]:
    if view == "dashboard":
        return render_dashboard(state, now)
    if view == "queues":
        return render_queues(state)
    if view == "jobs":
        return render_jobs(state)
    if view == "workers":
        return render_workers(state, now)
    if view == "scheduler":
        return render_scheduler(state)
    if view == "dlq":
        return render_dlq(state)
    raise ValueError(f"Unknown view '{view}'")
