"""
Worker pool: a fixed number of asyncio tasks pulling jobs from the queue.

Each worker runs the state machine for one job at a time, acks on success and
hands failures back to the queue's retry policy. Workers share nothing about
an order beyond what they read from the store at the start of an attempt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from orderflow_core.errors import JobNotFoundError
from orderflow_core.execution.state_machine import OrderStateMachine
from orderflow_core.jobs import Job, JobState
from orderflow_core.queue import JobQueue

logger = logging.getLogger(__name__)


class JobObserver(Protocol):
    """Called after each attempt: error is None on completion, the exception on failure."""

    def __call__(self, job: Job, error: BaseException | None) -> None:
        ...


class OrderWorkerPool:
    """
    Fixed-size pool. start() spawns the workers on the running loop; stop()
    closes the queue and waits for in-flight attempts to finish (there is no
    mid-attempt cancellation).
    """

    def __init__(
        self,
        queue: JobQueue,
        state_machine: OrderStateMachine,
        *,
        concurrency: int = 10,
        observers: Sequence[JobObserver] = (),
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.queue = queue
        self.state_machine = state_machine
        self.concurrency = concurrency
        self.observers: list[JobObserver] = list(observers)
        self._tasks: list[asyncio.Task[None]] = []
        self._in_flight = 0
        self._completed = 0
        self._failed = 0

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"order-worker-{i}") for i in range(self.concurrency)
        ]
        logger.info("Order worker pool started with %d concurrent workers", self.concurrency)

    async def stop(self, *, drain: bool = False, timeout: float | None = None) -> None:
        """
        Stop the pool. With drain=True, first wait (up to timeout) until the
        queue holds no waiting, delayed or active jobs.
        """
        if drain:
            await self.queue.wait_until_drained(timeout)
        await self.queue.close()
        if self._tasks:
            await asyncio.gather(*self._tasks)
        self._tasks = []
        logger.info("Order worker pool stopped (%d completed, %d failed attempts)", self._completed, self._failed)

    async def _worker(self, index: int) -> None:
        while True:
            job = await self.queue.dequeue()
            if job is None:
                logger.debug("Worker %d exiting: queue closed", index)
                return
            await self.process(job)

    async def process(self, job: Job) -> JobState:
        """Run one delivered job to ack or fail. Returns the job's resulting state."""
        self._in_flight += 1
        try:
            try:
                outcome = await self.state_machine.run(job.payload, attempt=job.attempts_made)
            except Exception as exc:
                self._failed += 1
                logger.exception("Job %s failed with error: %s", job.id, exc)
                state = await self.queue.fail(job.id, exc)
                self._notify(self._snapshot(job), exc)
                return state
            except BaseException:
                # cancelled or interrupted mid-attempt: hand the job back for redelivery
                await self.queue.release(job.id)
                raise
            self._completed += 1
            done = await self.queue.ack(job.id, outcome.to_dict())
            logger.info("Job %s completed", job.id)
            self._notify(done, None)
            return done.state
        finally:
            self._in_flight -= 1

    def _snapshot(self, job: Job) -> Job:
        try:
            return self.queue.get_job(job.id)
        except JobNotFoundError:
            # already purged by retention
            return job

    def _notify(self, job: Job, error: BaseException | None) -> None:
        for obs in self.observers:
            try:
                obs(job, error)
            except Exception:
                logger.exception("Job observer %r raised for job %s", obs, job.id)

    def stats(self) -> dict[str, Any]:
        return {
            "workers": self.concurrency,
            "running": self.running,
            "inFlight": self._in_flight,
            "completed": self._completed,
            "failedAttempts": self._failed,
        }
