"""Dashboard aggregates derived from view-state snapshots.

Everything here is a pure function of its arguments and is recomputed on
each render; nothing is cached between snapshots.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Sequence, Tuple

from .config import HEARTBEAT_TIMEOUT
from .models import (
    Job, JobStatus, WorkerStats, WorkerState, DLQJob, GlobalStats, QueueSummary,
)

HISTOGRAM_BUCKETS = (
    ("Pending", JobStatus.PENDING),
    ("Running", JobStatus.RUNNING),
    ("Success", JobStatus.SUCCESS),
    ("Failed", JobStatus.FAILED),
)


def _count(jobs: Iterable[Job], status: JobStatus) -> int:
    return sum(1 for job in jobs if job.status == status)


def global_stats(jobs: Sequence[Job], dlq: Sequence[DLQJob]) -> GlobalStats:
    """KPI counters. Dead jobs come from the DLQ only."""
    return GlobalStats(
        total_jobs=len(jobs),
        running_jobs=_count(jobs, JobStatus.RUNNING),
        failed_jobs=_count(jobs, JobStatus.FAILED),
        dead_jobs=len(dlq),
    )


def status_histogram(jobs: Sequence[Job], dlq: Sequence[DLQJob]) -> List[Tuple[str, int]]:
    """Status distribution with empty buckets left out"""
    buckets = [(name, _count(jobs, status)) for name, status in HISTOGRAM_BUCKETS]
    buckets.append(("Dead", len(dlq)))
    return [(name, count) for name, count in buckets if count > 0]


def queue_backlog(jobs: Sequence[Job]) -> List[Tuple[str, int]]:
    """Pending jobs per queue, in order of first appearance"""
    backlog = {}
    for job in jobs:
        if job.status == JobStatus.PENDING:
            backlog[job.queue] = backlog.get(job.queue, 0) + 1
    return list(backlog.items())


def queue_summaries(jobs: Sequence[Job]) -> List[QueueSummary]:
    counts = {}
    for job in jobs:
        pending, running, failed = counts.get(job.queue, (0, 0, 0))
        counts[job.queue] = (
            pending + (job.status == JobStatus.PENDING),
            running + (job.status == JobStatus.RUNNING),
            failed + (job.status == JobStatus.FAILED),
        )
    if not counts:
        return [QueueSummary(name="default")]
    return [QueueSummary(name, *values) for name, values in counts.items()]


def cron_jobs(jobs: Sequence[Job]) -> List[Job]:
    return [job for job in jobs if job.cron_expr]


def dag_jobs(jobs: Sequence[Job]) -> List[Tuple[Job, Tuple[str, ...]]]:
    """Jobs that declare dependencies, paired with their dependency ids.

    This is a flat membership view; the graph is not walked.
    """
    return [(job, tuple(job.dependencies)) for job in jobs if job.dependencies]


def is_alive(worker: WorkerStats, now: datetime) -> bool:
    if worker.last_heartbeat is None:
        return False
    return now - worker.last_heartbeat < timedelta(seconds=HEARTBEAT_TIMEOUT)


def worker_state(worker: WorkerStats, now: datetime) -> WorkerState:
    if not is_alive(worker, now):
        return WorkerState.OFFLINE
    if worker.status == "running":
        return WorkerState.BUSY
    return WorkerState.IDLE


def worker_states(workers: Sequence[WorkerStats], now: datetime) -> List[Tuple[WorkerStats, WorkerState]]:
    return [(worker, worker_state(worker, now)) for worker in workers]


def recent_jobs(jobs: Sequence[Job], limit: int = 5) -> List[Job]:
    return list(jobs[:limit])


def throughput_series(jobs: Sequence[Job]) -> List[dict]:
    # The backend has no history endpoint
    return []


def leader_label(is_leader: bool) -> str:
    return "Leader" if is_leader else "Standby"


def election_label(is_leader: bool) -> str:
    return "Master" if is_leader else "Follower"
