"""
Job records and their backing store.

Job, JobState and JobPayload describe one queue entry. JobStore is the
persistence seam under JobQueue: the queue writes every job change through it
and reloads from it on construction, so WAITING, DELAYED, COMPLETED and DEAD
jobs survive a restart. InMemoryJobStore keeps jobs for the life of the
process; SqliteJobStore keeps them in a SQLite file.

Store calls are synchronous and short (one row per call).
"""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import closing
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Mapping

from orderflow_core.errors import PersistenceError
from orderflow_core.order import Direction, Order, TradingPair, validate_amount

logger = logging.getLogger(__name__)


class JobState(Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    DEAD = "dead"


@dataclass(frozen=True)
class JobPayload:
    """Everything a worker needs to process an order from scratch."""

    order_id: str
    pair: str
    amount: float
    direction: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "pair", str(TradingPair.parse(self.pair)))
        object.__setattr__(self, "amount", validate_amount(self.amount))
        object.__setattr__(self, "direction", Direction.parse(self.direction).value)

    @classmethod
    def from_order(cls, order: Order) -> JobPayload:
        return cls(
            order_id=order.id,
            pair=str(order.pair),
            amount=order.amount,
            direction=order.direction.value,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> JobPayload:
        """Parse the queue message shape {orderId, pair, amount, direction}."""
        return cls(
            order_id=str(data["orderId"]),
            pair=data["pair"],
            amount=data["amount"],
            direction=data["direction"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "pair": self.pair,
            "amount": self.amount,
            "direction": self.direction,
        }


@dataclass
class Job:
    """
    Queue entry. id equals the order id (dedup key).
    attempts_made counts deliveries, including the one in flight.
    Times are queue-clock seconds.
    """

    id: str
    payload: JobPayload
    max_attempts: int
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    created_at: float = 0.0
    ready_at: float | None = None
    processed_at: float | None = None
    finished_at: float | None = None
    failed_reason: str | None = None
    error_history: list[str] = field(default_factory=list)
    result: Any = None

    def snapshot(self) -> Job:
        return replace(self, error_history=list(self.error_history))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "payload": self.payload.to_dict(),
            "maxAttempts": self.max_attempts,
            "state": self.state.value,
            "attemptsMade": self.attempts_made,
            "createdAt": self.created_at,
            "readyAt": self.ready_at,
            "processedAt": self.processed_at,
            "finishedAt": self.finished_at,
            "failedReason": self.failed_reason,
            "errorHistory": list(self.error_history),
            "result": self.result,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Job:
        return cls(
            id=data["id"],
            payload=JobPayload.from_dict(data["payload"]),
            max_attempts=int(data["maxAttempts"]),
            state=JobState(data["state"]),
            attempts_made=int(data["attemptsMade"]),
            created_at=float(data["createdAt"]),
            ready_at=data.get("readyAt"),
            processed_at=data.get("processedAt"),
            finished_at=data.get("finishedAt"),
            failed_reason=data.get("failedReason"),
            error_history=list(data.get("errorHistory") or []),
            result=data.get("result"),
        )


class JobStore(ABC):
    """
    Abstract job store. save() upserts the full job by id; delete() is a
    no-op for unknown ids; load() returns every stored job.
    Implementations raise PersistenceError on failure.
    """

    @abstractmethod
    def save(self, job: Job) -> None:
        ...

    @abstractmethod
    def delete(self, job_id: str) -> None:
        ...

    @abstractmethod
    def load(self) -> list[Job]:
        ...


class InMemoryJobStore(JobStore):
    """Process-local job store. Can be shared by successive queues in one process."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    def save(self, job: Job) -> None:
        self._jobs[job.id] = job.snapshot()

    def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    def load(self) -> list[Job]:
        return [job.snapshot() for job in self._jobs.values()]

    def __len__(self) -> int:
        return len(self._jobs)


class SqliteJobStore(JobStore):
    """
    Job store backed by a SQLite file: one row per job, the job as JSON.

    Example:
        store = SqliteJobStore("data/jobs.db")
        queue = JobQueue(backend=store, clock=time.time)
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._lock = Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self) -> None:
        """Initialize SQLite schema."""
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS jobs (
                        id TEXT PRIMARY KEY,
                        state TEXT NOT NULL,
                        data TEXT NOT NULL
                    )
                """)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Job store init failed: {exc}") from exc
        logger.info("Job database initialized: %s", self.db_path)

    def save(self, job: Job) -> None:
        data = json.dumps(job.to_dict())
        with self._lock:
            try:
                with closing(self._connect()) as conn, conn:
                    conn.execute(
                        "INSERT OR REPLACE INTO jobs (id, state, data) VALUES (?, ?, ?)",
                        (job.id, job.state.value, data),
                    )
            except sqlite3.Error as exc:
                raise PersistenceError(f"Job store write failed for {job.id}: {exc}") from exc

    def delete(self, job_id: str) -> None:
        with self._lock:
            try:
                with closing(self._connect()) as conn, conn:
                    conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            except sqlite3.Error as exc:
                raise PersistenceError(f"Job store delete failed for {job_id}: {exc}") from exc

    def load(self) -> list[Job]:
        with self._lock:
            try:
                with closing(self._connect()) as conn:
                    rows = conn.execute("SELECT data FROM jobs").fetchall()
            except sqlite3.Error as exc:
                raise PersistenceError(f"Job store read failed: {exc}") from exc
        return [Job.from_dict(json.loads(row[0])) for row in rows]
