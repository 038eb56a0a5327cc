"""
Job queue: at-least-once delivery of order jobs to workers.

Jobs are keyed by order id, so enqueueing the same order twice is a no-op
while the first job is still known to the queue. Failed attempts are retried
with exponential backoff up to a fixed ceiling, then parked in a dead set.
Deliveries are capped by a rolling-window rate limit; excess deliveries wait.

Every job change is written through a JobStore. A queue built over a store
that already holds jobs picks them up again; jobs that were ACTIVE when the
previous process stopped go back to WAITING and are delivered again.

Job states:
    WAITING   -> ready for delivery
    DELAYED   -> waiting out a retry backoff
    ACTIVE    -> delivered to a worker, attempt in flight
    COMPLETED -> acked; retained for completed_age / completed_count
    DEAD      -> attempts exhausted; retained for dead_age for inspection
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import time
from collections import OrderedDict, deque
from collections.abc import Callable
from typing import Any

from orderflow_core.config import RateLimit, RetentionPolicy, RetryPolicy
from orderflow_core.errors import JobNotFoundError
from orderflow_core.jobs import InMemoryJobStore, Job, JobPayload, JobState, JobStore

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_NAME = "order-processing"

_PENDING_STATES = (JobState.WAITING, JobState.DELAYED, JobState.ACTIVE)


class RollingWindowLimiter:
    """
    Allows at most limit.max_deliveries events per rolling limit.window seconds.
    wait_time() says how long until the next event may happen; record() logs one.
    """

    def __init__(self, limit: RateLimit, *, clock: Callable[[], float] = time.time) -> None:
        self.limit = limit
        self._clock = clock
        self._events: deque[float] = deque()

    def _prune(self, now: float) -> None:
        cutoff = now - self.limit.window
        while self._events and self._events[0] <= cutoff:
            self._events.popleft()

    def wait_time(self) -> float:
        now = self._clock()
        self._prune(now)
        if len(self._events) < self.limit.max_deliveries:
            return 0.0
        return max(self._events[0] + self.limit.window - now, 0.0)

    def record(self) -> None:
        self._events.append(self._clock())

    def __len__(self) -> int:
        self._prune(self._clock())
        return len(self._events)


class JobQueue:
    """
    Durable-semantics job queue. Construct one per process and share it
    between intake and the worker pool.

    The clock defaults to wall time so that times written to a persistent
    backend stay meaningful after a restart.
    """

    def __init__(
        self,
        *,
        retry: RetryPolicy | None = None,
        retention: RetentionPolicy | None = None,
        rate_limit: RateLimit | None = None,
        backend: JobStore | None = None,
        clock: Callable[[], float] = time.time,
        name: str = DEFAULT_QUEUE_NAME,
    ) -> None:
        self.name = name
        self.retry = retry or RetryPolicy()
        self.retention = retention or RetentionPolicy()
        self.backend = backend if backend is not None else InMemoryJobStore()
        self._clock = clock
        self._limiter = RollingWindowLimiter(rate_limit or RateLimit(), clock=clock)
        self._jobs: dict[str, Job] = {}
        self._waiting: deque[str] = deque()
        self._delayed: list[tuple[float, int, str]] = []
        self._delayed_seq = 0
        self._completed: OrderedDict[str, None] = OrderedDict()
        self._dead: OrderedDict[str, None] = OrderedDict()
        self._cond = asyncio.Condition()
        self._closed = False
        self._restore()

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Producer side ---

    async def enqueue(self, order_id: str, payload: JobPayload) -> str:
        """
        Add a job keyed by order_id. If the queue already holds a job with that
        key (pending, in flight, or still retained), nothing happens and the
        existing id is returned. Expired finished jobs are purged first.
        """
        if payload.order_id != order_id:
            raise ValueError(f"Payload order id {payload.order_id} does not match job id {order_id}")
        async with self._cond:
            now = self._clock()
            self._purge(now)
            existing = self._jobs.get(order_id)
            if existing is not None:
                logger.info("Job %s already %s; enqueue ignored", order_id, existing.state.value)
                return existing.id
            job = Job(
                id=order_id,
                payload=payload,
                max_attempts=self.retry.attempts,
                created_at=now,
            )
            self.backend.save(job)
            self._jobs[job.id] = job
            self._waiting.append(job.id)
            self._cond.notify_all()
        logger.debug("Job %s enqueued on %s", order_id, self.name)
        return job.id

    # --- Consumer side ---

    async def dequeue(self) -> Job | None:
        """
        Wait for the next deliverable job and mark it ACTIVE. Blocks while the
        rate ceiling is reached. Returns None once the queue is closed.
        """
        async with self._cond:
            while True:
                if self._closed:
                    return None
                now = self._clock()
                self._promote_delayed(now)
                timeout: float | None = None
                if self._waiting:
                    wait = self._limiter.wait_time()
                    if wait <= 0:
                        return self._activate(self._waiting.popleft(), now)
                    logger.debug("Delivery deferred %.3fs by rate limit on %s", wait, self.name)
                    timeout = wait
                if self._delayed:
                    until_next = max(self._delayed[0][0] - now, 0.0)
                    timeout = until_next if timeout is None else min(timeout, until_next)
                try:
                    await asyncio.wait_for(self._cond.wait(), timeout)
                except asyncio.TimeoutError:
                    pass

    async def ack(self, job_id: str, result: Any = None) -> Job:
        """Mark an in-flight job completed."""
        async with self._cond:
            job = self._require_active(job_id)
            now = self._clock()
            job.state = JobState.COMPLETED
            job.finished_at = now
            job.result = result
            self.backend.save(job)
            self._completed[job.id] = None
            snapshot = job.snapshot()
            self._purge(now)
            self._cond.notify_all()
            return snapshot

    async def fail(self, job_id: str, error: BaseException | str) -> JobState:
        """
        Record a failed attempt. Reschedules with backoff while attempts remain,
        otherwise moves the job to the dead set. Returns the job's new state.
        """
        reason = str(error) or type(error).__name__
        async with self._cond:
            job = self._require_active(job_id)
            now = self._clock()
            job.failed_reason = reason
            job.error_history.append(reason)
            if job.attempts_made < job.max_attempts:
                delay = self.retry.delay_for(job.attempts_made - 1)
                logger.warning(
                    "Job %s attempt %d/%d failed: %s; retrying in %.2fs",
                    job.id, job.attempts_made, job.max_attempts, reason, delay,
                )
                self._schedule(job, now + delay)
            else:
                job.state = JobState.DEAD
                job.finished_at = now
                self._dead[job.id] = None
                logger.error(
                    "Job %s failed after %d attempts; moved to dead set: %s",
                    job.id, job.attempts_made, reason,
                )
            self.backend.save(job)
            state = job.state
            self._purge(now)
            self._cond.notify_all()
            return state

    async def release(self, job_id: str) -> Job:
        """
        Return an in-flight job to WAITING without recording a failure.
        For attempts that were interrupted (worker cancelled or shut down);
        the interrupted delivery does not count against the attempt budget.
        """
        async with self._cond:
            job = self._require_active(job_id)
            job.attempts_made = max(job.attempts_made - 1, 0)
            job.state = JobState.WAITING
            job.processed_at = None
            self.backend.save(job)
            self._waiting.appendleft(job.id)
            self._cond.notify_all()
            logger.warning("Job %s released back to waiting after an interrupted attempt", job_id)
            return job.snapshot()

    # --- Operator side ---

    async def requeue_dead(self, job_id: str) -> Job:
        """Give a dead job a fresh attempt budget and make it deliverable again."""
        async with self._cond:
            job = self._get(job_id)
            if job.state is not JobState.DEAD:
                raise ValueError(f"Job {job_id} is {job.state.value}, not dead")
            self._dead.pop(job.id, None)
            job.state = JobState.WAITING
            job.attempts_made = 0
            job.finished_at = None
            job.ready_at = None
            self.backend.save(job)
            self._waiting.append(job.id)
            self._cond.notify_all()
            logger.info("Dead job %s requeued by operator", job_id)
            return job.snapshot()

    async def clean(self) -> int:
        """Drop finished jobs past their retention window. Returns how many were removed."""
        async with self._cond:
            return self._purge(self._clock())

    async def close(self) -> None:
        """Stop delivering. Pending dequeue() calls return None."""
        async with self._cond:
            self._closed = True
            self._cond.notify_all()

    async def reopen(self) -> None:
        """Resume delivery after close()."""
        async with self._cond:
            self._closed = False
            self._cond.notify_all()

    async def wait_until_drained(self, timeout: float | None = None) -> None:
        """Wait until no job is waiting, delayed or active."""

        async def _wait() -> None:
            async with self._cond:
                await self._cond.wait_for(self._is_drained)

        await asyncio.wait_for(_wait(), timeout)

    def get_job(self, job_id: str) -> Job:
        return self._get(job_id).snapshot()

    def counts(self) -> dict[str, int]:
        out = {state.value: 0 for state in JobState}
        for job in self._jobs.values():
            out[job.state.value] += 1
        return out

    def dead_jobs(self) -> list[Job]:
        return [self._jobs[job_id].snapshot() for job_id in self._dead]

    def completed_jobs(self) -> list[Job]:
        return [self._jobs[job_id].snapshot() for job_id in self._completed]

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    # --- Internals (call with the condition held) ---

    def _restore(self) -> None:
        jobs = sorted(self.backend.load(), key=lambda j: (j.created_at, j.id))
        if not jobs:
            return
        for job in jobs:
            self._jobs[job.id] = job
            if job.state is JobState.ACTIVE:
                # in flight when the previous process stopped
                job.state = JobState.WAITING
                job.attempts_made = max(job.attempts_made - 1, 0)
                job.processed_at = None
                self.backend.save(job)
                self._waiting.append(job.id)
            elif job.state is JobState.WAITING:
                self._waiting.append(job.id)
            elif job.state is JobState.DELAYED:
                self._push_delayed(job.id, job.ready_at if job.ready_at is not None else job.created_at)
        finished = sorted(
            (j for j in jobs if j.state in (JobState.COMPLETED, JobState.DEAD)),
            key=lambda j: j.finished_at if j.finished_at is not None else j.created_at,
        )
        for job in finished:
            target = self._completed if job.state is JobState.COMPLETED else self._dead
            target[job.id] = None
        logger.info("Restored %d jobs on %s: %s", len(jobs), self.name, self.counts())

    def _get(self, job_id: str) -> Job:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFoundError(job_id) from None

    def _require_active(self, job_id: str) -> Job:
        job = self._get(job_id)
        if job.state is not JobState.ACTIVE:
            raise ValueError(f"Job {job_id} is {job.state.value}, not active")
        return job

    def _activate(self, job_id: str, now: float) -> Job:
        job = self._jobs[job_id]
        self._limiter.record()
        job.state = JobState.ACTIVE
        job.attempts_made += 1
        job.processed_at = now
        job.ready_at = None
        self.backend.save(job)
        return job.snapshot()

    def _schedule(self, job: Job, ready_at: float) -> None:
        if ready_at <= self._clock():
            job.state = JobState.WAITING
            job.ready_at = None
            self._waiting.append(job.id)
            return
        job.state = JobState.DELAYED
        job.ready_at = ready_at
        self._push_delayed(job.id, ready_at)

    def _push_delayed(self, job_id: str, ready_at: float) -> None:
        self._delayed_seq += 1
        heapq.heappush(self._delayed, (ready_at, self._delayed_seq, job_id))

    def _promote_delayed(self, now: float) -> None:
        while self._delayed and self._delayed[0][0] <= now:
            ready_at, _, job_id = heapq.heappop(self._delayed)
            job = self._jobs.get(job_id)
            if job is None or job.state is not JobState.DELAYED:
                continue
            if job.ready_at is not None and job.ready_at != ready_at:
                continue
            job.state = JobState.WAITING
            job.ready_at = None
            self.backend.save(job)
            self._waiting.append(job_id)

    def _age(self, job: Job, now: float) -> float:
        finished = job.finished_at if job.finished_at is not None else now
        return now - finished

    def _purge(self, now: float) -> int:
        removed = 0
        while self._completed:
            job_id = next(iter(self._completed))
            too_old = self._age(self._jobs[job_id], now) >= self.retention.completed_age
            if not too_old and len(self._completed) <= self.retention.completed_count:
                break
            self._completed.popitem(last=False)
            self._drop(job_id)
            removed += 1
        while self._dead:
            job_id = next(iter(self._dead))
            if self._age(self._jobs[job_id], now) < self.retention.dead_age:
                break
            self._dead.popitem(last=False)
            self._drop(job_id)
            removed += 1
        return removed

    def _drop(self, job_id: str) -> None:
        del self._jobs[job_id]
        self.backend.delete(job_id)

    def _is_drained(self) -> bool:
        return not any(job.state in _PENDING_STATES for job in self._jobs.values())
