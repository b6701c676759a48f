"""HTTP client for the Wida backend API"""

from typing import Optional, Dict, Any, Tuple

import httpx
from loguru import logger

from .errors import FetchError, SubmissionError
from .models import Job, WorkerStats, DLQJob, decode_collection

JOBS_PATH = "/api/jobs"
WORKERS_PATH = "/api/workers"
DLQ_PATH = "/api/dlq"
SCHEDULER_PATH = "/api/scheduler"
ENQUEUE_PATH = "/api/jobs/enqueue"


def create_async_client(base_url: str, timeout: Optional[float] = None,
                        transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    # timeout=None disables httpx's default 5s limits
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(timeout),
        transport=transport,
        trust_env=False,
    )


class WidaClient:
    """Read and enqueue operations against the backend.

    Every read returns a freshly decoded collection or raises FetchError;
    callers decide what to do with the previous value.
    """

    def __init__(self, base_url: str, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url
        self._http = create_async_client(base_url, timeout, transport)

    async def aclose(self):
        await self._http.aclose()

    async def __aenter__(self) -> 'WidaClient':
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def _get(self, resource: str, path: str, key: str) -> Any:
        try:
            response = await self._http.get(path)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise FetchError(resource, str(e) or e.__class__.__name__) from e
        except ValueError as e:
            raise FetchError(resource, f"invalid JSON: {e}") from e
        if not isinstance(body, dict) or key not in body:
            raise FetchError(resource, f"response has no '{key}' field")
        logger.debug(f"Fetched {resource} from {path}")
        return body[key]

    async def _get_collection(self, resource: str, path: str, model) -> tuple:
        items = await self._get(resource, path, resource)
        if items is not None and not isinstance(items, list):
            raise FetchError(resource, f"'{resource}' is not a list")
        try:
            return decode_collection(model, items)
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(resource, f"undecodable record: {e!r}") from e

    async def list_jobs(self) -> Tuple[Job, ...]:
        return await self._get_collection("jobs", JOBS_PATH, Job)

    async def list_workers(self) -> Tuple[WorkerStats, ...]:
        return await self._get_collection("workers", WORKERS_PATH, WorkerStats)

    async def list_dlq(self) -> Tuple[DLQJob, ...]:
        return await self._get_collection("dlq", DLQ_PATH, DLQJob)

    async def scheduler_status(self) -> bool:
        is_leader = await self._get("is_leader", SCHEDULER_PATH, "is_leader")
        if not isinstance(is_leader, bool):
            raise FetchError("is_leader", "'is_leader' is not a boolean")
        return is_leader

    async def enqueue(self, job: Dict[str, Any]) -> httpx.Response:
        """POST a job request; any 2xx counts as accepted"""
        try:
            response = await self._http.post(ENQUEUE_PATH, json=job)
        except httpx.HTTPError as e:
            raise SubmissionError(f"Failed to enqueue job: {str(e) or e.__class__.__name__}") from e
        if response.is_error:
            detail = response.text.strip() or response.reason_phrase
            raise SubmissionError(
                f"Failed to enqueue job: server returned {response.status_code} ({detail})"
            )
        logger.info(f"Enqueued job {job.get('id')} on queue {job.get('queue')}")
        return response
