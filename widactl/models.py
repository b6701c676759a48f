"""Data models for widactl"""

from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from enum import Enum
import re


class JobStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    DEAD = "dead"


class WorkerState(Enum):
    OFFLINE = "offline"
    BUSY = "busy"
    IDLE = "idle"


_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp from the backend into an aware UTC datetime.

    The backend writes nanosecond fractions and a trailing ``Z``; an unset
    time is serialized as year 1, which is returned as None.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    if parsed.year <= 1:
        return None
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class RetryPolicy:
    initial_interval: int = 0
    max_interval: int = 0
    max_attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RetryPolicy':
        data = data or {}
        return cls(
            initial_interval=int(data.get('initial_interval') or 0),
            max_interval=int(data.get('max_interval') or 0),
            max_attempts=int(data.get('max_attempts') or 0),
        )


@dataclass(frozen=True)
class Attempt:
    started_at: Optional[datetime]
    status: str
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'started_at': format_timestamp(self.started_at),
            'status': self.status,
        }
        if self.finished_at:
            data['finished_at'] = format_timestamp(self.finished_at)
        if self.error:
            data['error'] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Attempt':
        return cls(
            started_at=parse_timestamp(data.get('started_at')),
            status=data.get('status') or "",
            finished_at=parse_timestamp(data.get('finished_at')),
            error=data.get('error') or None,
        )


def _attempts(raw) -> tuple:
    return tuple(Attempt.from_dict(a) for a in (raw or []))


@dataclass(frozen=True)
class Job:
    id: str
    queue: str
    status: JobStatus
    payload: Any = None
    max_retries: int = 0
    attempts: tuple = ()
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    timeout: int = 0
    dependencies: tuple = ()
    dependents: tuple = ()
    run_at: Optional[datetime] = None
    cron_expr: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary for JSON serialization"""
        data = {
            'id': self.id,
            'queue': self.queue,
            'payload': self.payload,
            'status': self.status.value,
            'max_retries': self.max_retries,
            'attempts': [a.to_dict() for a in self.attempts],
            'retry_policy': self.retry_policy.to_dict(),
            'timeout': self.timeout,
        }
        if self.dependencies:
            data['dependencies'] = list(self.dependencies)
        if self.dependents:
            data['dependents'] = list(self.dependents)
        if self.run_at:
            data['run_at'] = format_timestamp(self.run_at)
        if self.cron_expr:
            data['cron_expr'] = self.cron_expr
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Job':
        """Create job from the backend's JSON representation"""
        return cls(
            id=data['id'],
            queue=data.get('queue') or "",
            status=JobStatus(data['status']),
            payload=data.get('payload'),
            max_retries=int(data.get('max_retries') or 0),
            attempts=_attempts(data.get('attempts')),
            retry_policy=RetryPolicy.from_dict(data.get('retry_policy')),
            timeout=int(data.get('timeout') or 0),
            dependencies=tuple(data.get('dependencies') or ()),
            dependents=tuple(data.get('dependents') or ()),
            run_at=parse_timestamp(data.get('run_at')),
            cron_expr=data.get('cron_expr') or None,
        )


@dataclass(frozen=True)
class WorkerStats:
    id: str
    status: str
    last_heartbeat: Optional[datetime]
    current_job_id: Optional[str] = None
    jobs_completed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert worker stats to dictionary"""
        data = asdict(self)
        data['last_heartbeat'] = format_timestamp(self.last_heartbeat)
        if not self.current_job_id:
            del data['current_job_id']
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkerStats':
        return cls(
            id=data['id'],
            status=data.get('status') or "",
            last_heartbeat=parse_timestamp(data.get('last_heartbeat')),
            current_job_id=data.get('current_job_id') or None,
            jobs_completed=int(data.get('jobs_completed') or 0),
        )


@dataclass(frozen=True)
class DLQJob:
    id: str
    queue: str
    reason: str
    failed_at: Optional[datetime]
    payload: Any = None
    attempts: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'queue': self.queue,
            'payload': self.payload,
            'reason': self.reason,
            'attempts': [a.to_dict() for a in self.attempts],
            'failed_at': format_timestamp(self.failed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DLQJob':
        return cls(
            id=data['id'],
            queue=data.get('queue') or "",
            reason=data.get('reason') or "",
            failed_at=parse_timestamp(data.get('failed_at')),
            payload=data.get('payload'),
            attempts=_attempts(data.get('attempts')),
        )


@dataclass(frozen=True)
class GlobalStats:
    total_jobs: int
    running_jobs: int
    failed_jobs: int
    dead_jobs: int


@dataclass(frozen=True)
class QueueSummary:
    name: str
    pending: int = 0
    running: int = 0
    failed: int = 0


def decode_collection(model, items: Optional[List[Dict[str, Any]]]) -> tuple:
    """Decode a JSON array into a tuple of model instances"""
    return tuple(model.from_dict(item) for item in (items or []))
