"""Process-wide per-provider call metrics."""

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, computed_field

from .constants import DEGRADED_AFTER_CONSECUTIVE_FAILURES, ErrorKind, ProviderIdentity


@dataclass(frozen=True)
class AttemptOutcome:
    success: bool
    elapsed: float
    error_kind: ErrorKind | None = None
    rate_limited: bool = False
    tokens_used: int | None = None
    error_message: str | None = None

    def __post_init__(self) -> None:
        if self.success and self.error_kind is not None:
            raise ValueError("a successful outcome cannot carry an error kind")
        if not self.success and self.error_kind is None:
            raise ValueError("a failed outcome requires an error kind")


class ProviderMetrics(BaseModel):
    """Point-in-time snapshot of one provider's counters."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderIdentity
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_response_time: float = 0.0
    last_used: datetime | None = None
    rate_limit_hits: int = 0
    errors_by_kind: dict[ErrorKind, int] = {}
    tokens_used: int = 0
    consecutive_failures: int = 0
    last_error: str | None = None
    last_error_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def average_response_time(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return self.total_response_time / self.total_calls

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        if self.total_calls == 0:
            return 1.0
        return self.successful_calls / self.total_calls

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> str:
        if self.consecutive_failures >= DEGRADED_AFTER_CONSECUTIVE_FAILURES:
            return "degraded"
        return "healthy"


@dataclass
class _MetricsRecord:
    provider: ProviderIdentity
    lock: threading.Lock = field(default_factory=threading.Lock)
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_response_time: float = 0.0
    last_used: datetime | None = None
    rate_limit_hits: int = 0
    errors_by_kind: dict[ErrorKind, int] = field(default_factory=dict)
    tokens_used: int = 0
    consecutive_failures: int = 0
    last_error: str | None = None
    last_error_at: datetime | None = None

    def apply(self, outcome: AttemptOutcome, now: datetime) -> None:
        self.total_calls += 1
        self.total_response_time += outcome.elapsed
        self.last_used = now
        if outcome.rate_limited:
            self.rate_limit_hits += 1
        if outcome.success:
            self.successful_calls += 1
            self.consecutive_failures = 0
            if outcome.tokens_used:
                self.tokens_used += outcome.tokens_used
            return
        kind = outcome.error_kind or ErrorKind.UNKNOWN
        self.failed_calls += 1
        self.consecutive_failures += 1
        self.errors_by_kind[kind] = self.errors_by_kind.get(kind, 0) + 1
        self.last_error = outcome.error_message or str(kind)
        self.last_error_at = now

    def clear(self) -> None:
        self.total_calls = self.successful_calls = self.failed_calls = 0
        self.total_response_time = 0.0
        self.last_used = None
        self.rate_limit_hits = 0
        self.errors_by_kind = {}
        self.tokens_used = 0
        self.consecutive_failures = 0
        self.last_error = None
        self.last_error_at = None

    def freeze(self) -> ProviderMetrics:
        return ProviderMetrics(
            provider=self.provider,
            total_calls=self.total_calls,
            successful_calls=self.successful_calls,
            failed_calls=self.failed_calls,
            total_response_time=self.total_response_time,
            last_used=self.last_used,
            rate_limit_hits=self.rate_limit_hits,
            errors_by_kind=dict(self.errors_by_kind),
            tokens_used=self.tokens_used,
            consecutive_failures=self.consecutive_failures,
            last_error=self.last_error,
            last_error_at=self.last_error_at,
        )


class MetricsRecorder:
    """Thread-safe counters keyed by provider.

    Records are created lazily on first use and never removed. Each record
    has its own lock, so updates for different providers do not contend.
    """

    def __init__(self) -> None:
        self._records: dict[ProviderIdentity, _MetricsRecord] = {}
        self._registry_lock = threading.Lock()

    def _record_for(self, provider: ProviderIdentity) -> _MetricsRecord:
        record = self._records.get(provider)
        if record is None:
            with self._registry_lock:
                record = self._records.setdefault(provider, _MetricsRecord(provider=provider))
        return record

    def record(self, provider: ProviderIdentity, outcome: AttemptOutcome) -> None:
        record = self._record_for(provider)
        with record.lock:
            record.apply(outcome, datetime.now(UTC))

    def snapshot(
        self, provider: ProviderIdentity | None = None
    ) -> ProviderMetrics | dict[ProviderIdentity, ProviderMetrics]:
        if provider is not None:
            record = self._record_for(provider)
            with record.lock:
                return record.freeze()
        with self._registry_lock:
            records = list(self._records.values())
        snapshots: dict[ProviderIdentity, ProviderMetrics] = {}
        for record in records:
            with record.lock:
                snapshots[record.provider] = record.freeze()
        return snapshots

    def reset(self) -> None:
        """Zero every record in place; records themselves are never removed."""
        with self._registry_lock:
            records = list(self._records.values())
        for record in records:
            with record.lock:
                record.clear()
