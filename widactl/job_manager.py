"""Job submission: form validation and enqueue requests"""

import json
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

from loguru import logger

from .errors import ValidationError

NANOS_PER_MILLI = 1_000_000
DEFAULT_INITIAL_INTERVAL = 1_000_000_000  # 1s in ns
DEFAULT_MAX_INTERVAL = 10_000_000_000  # 10s in ns
DEFAULT_PAYLOAD = '{\n  "message": "Hello Wida from UI!"\n}'


def default_job_id() -> str:
    return f"job-ui-{int(time.time() * 1000)}"


@dataclass(frozen=True)
class EnqueueForm:
    id: str = field(default_factory=default_job_id)
    queue: str = "default"
    payload: str = DEFAULT_PAYLOAD
    cron_expr: str = ""
    timeout_ms: int = 30000
    max_retries: int = 3
    dependencies: str = ""


def parse_dependencies(text: Optional[str]) -> List[str]:
    """Split a comma-separated id list, dropping blanks"""
    return [part.strip() for part in (text or "").split(",") if part.strip()]


def _non_negative_int(name: str, value) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{name}' must be an integer, got {value!r}")
    if number < 0:
        raise ValidationError(f"'{name}' cannot be negative")
    return number


class JobManager:
    def __init__(self, client, coordinator=None):
        self.client = client
        self.coordinator = coordinator

    def build_request(self, form: EnqueueForm) -> Dict[str, Any]:
        """Validate the form and build the enqueue body. Nothing is sent."""
        if not form.id or not form.id.strip():
            raise ValidationError("Job ID is required")
        if not form.queue or not form.queue.strip():
            raise ValidationError("Queue name is required")
        try:
            payload = json.loads(form.payload)
        except (TypeError, ValueError):
            raise ValidationError("Invalid JSON in payload")

        timeout_ms = _non_negative_int("timeout", form.timeout_ms)
        max_retries = _non_negative_int("max_retries", form.max_retries)

        job = {
            'id': form.id.strip(),
            'queue': form.queue.strip(),
            'payload': payload,
            'status': 'pending',
            'max_retries': max_retries,
            'timeout': timeout_ms * NANOS_PER_MILLI,
            'retry_policy': {
                'initial_interval': DEFAULT_INITIAL_INTERVAL,
                'max_interval': DEFAULT_MAX_INTERVAL,
                'max_attempts': max_retries,
            },
        }
        if form.cron_expr and form.cron_expr.strip():
            job['cron_expr'] = form.cron_expr.strip()
        dependencies = parse_dependencies(form.dependencies)
        if dependencies:
            job['dependencies'] = dependencies
        return job

    async def enqueue_job(self, form: EnqueueForm) -> Dict[str, Any]:
        """Submit a job and refresh the view-state so it shows up at once.

        Raises ValidationError before any request, or SubmissionError if the
        backend rejects it; the form is left as it was either way.
        """
        job = self.build_request(form)
        await self.client.enqueue(job)
        if self.coordinator is not None:
            logger.debug(f"Refreshing after enqueue of {job['id']}")
            await self.coordinator.refresh()
        return job
