"""Poll coordinator: keeps the view-state in sync with the backend"""

import asyncio
from typing import Dict, List, Optional, Set

from loguru import logger

from .errors import FetchError
from .store import RESOURCES, ViewStore


class PollCoordinator:
    """Fetches all four resources on a fixed cadence and commits them.

    A cycle waits for every fetch it launched to settle, then commits each
    successful resource on its own; a failed resource keeps its previous
    snapshot. Timer ticks skip any resource whose last fetch is still
    outstanding, so a hung request only holds back that resource.

    Each fetch takes a per-resource ticket. A result is committed only if
    its ticket is newer than the last committed one and no stop() happened
    since it was launched.
    """

    def __init__(self, client, store: ViewStore, interval: float = 3.0):
        self.client = client
        self.store = store
        self.interval = interval
        self.running = False
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Future] = set()
        self._in_flight: Dict[str, int] = {r: 0 for r in RESOURCES}
        self._issued: Dict[str, int] = {r: 0 for r in RESOURCES}
        self._committed: Dict[str, int] = {r: 0 for r in RESOURCES}

    @property
    def is_polling(self) -> bool:
        return any(self._in_flight.values())

    def busy_resources(self) -> List[str]:
        return [r for r in RESOURCES if self._in_flight[r]]

    def _fetcher(self, resource: str):
        return {
            "jobs": self.client.list_jobs,
            "workers": self.client.list_workers,
            "dlq": self.client.list_dlq,
            "is_leader": self.client.scheduler_status,
        }[resource]

    def start(self):
        """Start polling; the first cycle runs on the next loop iteration"""
        if self.running:
            return
        self.running = True
        self._timer = asyncio.ensure_future(self._poll_loop())

    def stop(self):
        """Stop the timer. Outstanding fetches are left to settle and discarded."""
        self.running = False
        self._generation += 1
        if self._timer:
            self._timer.cancel()

    async def drain(self, timeout: Optional[float] = None):
        """Wait for the timer and outstanding cycles to finish.

        Cycles still running after ``timeout`` seconds are cancelled.
        """
        pending = set(self._cycles)
        if self._timer:
            pending.add(self._timer)
        if pending:
            _, unfinished = await asyncio.wait(pending, timeout=timeout)
            for task in unfinished:
                task.cancel()
            if unfinished:
                await asyncio.gather(*unfinished, return_exceptions=True)
        self._timer = None

    async def refresh(self) -> Dict[str, bool]:
        """Run one cycle now, fetching every resource even if busy"""
        return await self.poll_cycle(skip_busy=False)

    async def _poll_loop(self):
        while self.running:
            cycle = asyncio.ensure_future(self.poll_cycle(skip_busy=True))
            self._cycles.add(cycle)
            cycle.add_done_callback(self._cycles.discard)
            await asyncio.sleep(self.interval)

    async def poll_cycle(self, skip_busy: bool = True) -> Dict[str, bool]:
        """Fetch resources concurrently and commit the successful ones.

        Returns a mapping of resource name to whether it was committed.
        """
        resources = [r for r in RESOURCES if not (skip_busy and self._in_flight[r])]
        if not resources:
            logger.debug("Every resource still in flight, skipping tick")
            return {}
        skipped = [r for r in RESOURCES if r not in resources]
        if skipped:
            logger.debug(f"Skipping busy resources: {', '.join(skipped)}")

        generation = self._generation
        tickets = {}
        for resource in resources:
            self._issued[resource] += 1
            tickets[resource] = self._issued[resource]
        results = await asyncio.gather(
            *(self._tracked(r) for r in resources), return_exceptions=True
        )

        return {
            resource: self._commit(resource, tickets[resource], generation, result)
            for resource, result in zip(resources, results)
        }

    async def _tracked(self, resource: str):
        # Busy only while this one request is outstanding
        self._in_flight[resource] += 1
        try:
            return await self._fetcher(resource)()
        finally:
            self._in_flight[resource] -= 1

    def _commit(self, resource: str, ticket: int, generation: int, result) -> bool:
        if isinstance(result, FetchError):
            logger.warning(f"Failed to fetch {result}; keeping previous snapshot")
            return False
        if isinstance(result, asyncio.CancelledError):
            logger.debug(f"Fetch of {resource} was cancelled")
            return False
        if isinstance(result, BaseException):
            logger.opt(exception=result).error(f"Unexpected error fetching {resource}")
            return False
        if generation != self._generation:
            logger.debug(f"Discarding {resource} result launched before stop")
            return False
        if ticket <= self._committed[resource]:
            logger.debug(f"Discarding superseded {resource} result (ticket {ticket})")
            return False
        self._committed[resource] = ticket
        self.store.replace(resource, result)
        return True
