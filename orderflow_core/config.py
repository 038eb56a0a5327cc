"""
Pipeline configuration: retry policy, retention, delivery rate and pool size.

Defaults match the production deployment (3 attempts, 2s exponential
backoff, 100 deliveries per minute, 10 workers). from_env() lets a bootstrap
layer override them through ORDERFLOW_* environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

ENV_CONCURRENCY = "ORDERFLOW_CONCURRENCY"
ENV_ATTEMPTS = "ORDERFLOW_JOB_ATTEMPTS"
ENV_BACKOFF_BASE = "ORDERFLOW_BACKOFF_BASE_S"
ENV_RATE_MAX = "ORDERFLOW_RATE_MAX"
ENV_RATE_WINDOW = "ORDERFLOW_RATE_WINDOW_S"
ENV_COMPLETED_AGE = "ORDERFLOW_COMPLETED_RETENTION_S"
ENV_COMPLETED_COUNT = "ORDERFLOW_COMPLETED_RETENTION_COUNT"
ENV_DEAD_AGE = "ORDERFLOW_DEAD_RETENTION_S"
ENV_BUILD_DELAY = "ORDERFLOW_BUILD_DELAY_S"
# Unset means no timeout on provider calls.
ENV_PROVIDER_TIMEOUT = "ORDERFLOW_PROVIDER_TIMEOUT_S"
ENV_SUBSCRIBER_QUEUE = "ORDERFLOW_SUBSCRIBER_QUEUE_SIZE"
# Unset means jobs are kept in memory only.
ENV_JOB_DB_PATH = "ORDERFLOW_JOB_DB_PATH"


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt ceiling and exponential backoff (backoff_base * 2**attempt_index seconds)."""

    attempts: int = 3
    backoff_base: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.backoff_base < 0:
            raise ValueError("backoff_base must be >= 0")

    def delay_for(self, attempt_index: int) -> float:
        """Delay before the retry that follows failed attempt number attempt_index (0-based)."""
        return self.backoff_base * (2 ** attempt_index)


@dataclass(frozen=True)
class RetentionPolicy:
    """How long finished jobs stay inspectable. Completed: age or count, whichever binds first."""

    completed_age: float = 3600.0
    completed_count: int = 1000
    dead_age: float = 86400.0

    def __post_init__(self) -> None:
        if self.completed_age < 0 or self.dead_age < 0:
            raise ValueError("retention ages must be >= 0")
        if self.completed_count < 0:
            raise ValueError("completed_count must be >= 0")


@dataclass(frozen=True)
class RateLimit:
    """At most max_deliveries job deliveries per rolling window seconds."""

    max_deliveries: int = 100
    window: float = 60.0

    def __post_init__(self) -> None:
        if self.max_deliveries < 1:
            raise ValueError("max_deliveries must be >= 1")
        if self.window <= 0:
            raise ValueError("window must be > 0")


@dataclass(frozen=True)
class PipelineConfig:
    concurrency: int = 10
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    rate_limit: RateLimit = field(default_factory=RateLimit)
    build_delay: float = 0.5
    provider_timeout: float | None = None
    # 0 = unbounded per-subscriber buffer
    subscriber_queue_size: int = 0
    # SQLite file for queued jobs; None keeps them in memory
    job_db_path: str | None = None

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.build_delay < 0:
            raise ValueError("build_delay must be >= 0")
        if self.provider_timeout is not None and self.provider_timeout <= 0:
            raise ValueError("provider_timeout must be > 0 when set")
        if self.subscriber_queue_size < 0:
            raise ValueError("subscriber_queue_size must be >= 0")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> PipelineConfig:
        """Build config from ORDERFLOW_* variables; missing ones keep their defaults."""
        env = os.environ if environ is None else environ
        defaults = cls()
        timeout = _env_float(env, ENV_PROVIDER_TIMEOUT, None)
        return cls(
            concurrency=_env_int(env, ENV_CONCURRENCY, defaults.concurrency),
            retry=RetryPolicy(
                attempts=_env_int(env, ENV_ATTEMPTS, defaults.retry.attempts),
                backoff_base=_env_float(env, ENV_BACKOFF_BASE, defaults.retry.backoff_base),
            ),
            retention=RetentionPolicy(
                completed_age=_env_float(env, ENV_COMPLETED_AGE, defaults.retention.completed_age),
                completed_count=_env_int(env, ENV_COMPLETED_COUNT, defaults.retention.completed_count),
                dead_age=_env_float(env, ENV_DEAD_AGE, defaults.retention.dead_age),
            ),
            rate_limit=RateLimit(
                max_deliveries=_env_int(env, ENV_RATE_MAX, defaults.rate_limit.max_deliveries),
                window=_env_float(env, ENV_RATE_WINDOW, defaults.rate_limit.window),
            ),
            build_delay=_env_float(env, ENV_BUILD_DELAY, defaults.build_delay),
            provider_timeout=timeout,
            subscriber_queue_size=_env_int(env, ENV_SUBSCRIBER_QUEUE, defaults.subscriber_queue_size),
            job_db_path=env.get(ENV_JOB_DB_PATH, "").strip() or None,
        )


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(env: Mapping[str, str], name: str, default: float | None) -> float | None:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
