"""
Free-tier quota tracking and token budget recommendations.

Answers two questions from the usage ledger and each backend's declared
limits: can this backend serve another free request right now, and how
large a context should a request to it get.

Limit checks, all over sliding windows ending now:
1. Daily token cap - tokens in the last 24 hours
2. Monthly token cap - tokens in the last 30 days
3. Rate cap - requests (not tokens) in the last 60 seconds
"""

import math
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import structlog

from ai_relay.config.settings import SettingsStore
from ai_relay.storage.models import UsageRecord
from ai_relay.storage.repository import UsageLedger

from .errors import UsageRecordError
from .providers import ProviderRegistry

log = structlog.get_logger(__name__)

MINUTE_MILLIS = 60 * 1000
DAY_MILLIS = 24 * 60 * MINUTE_MILLIS
MONTH_MILLIS = 30 * DAY_MILLIS
RETENTION_MILLIS = MONTH_MILLIS

UNKNOWN_BACKEND_BUDGET = 4000
NO_FREE_TIER_BUDGET = 2000
CONTEXT_WINDOW_SHARE = 0.5

RECORD_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 0.05


def _now_millis() -> int:
    return int(time.time() * 1000)


@dataclass
class BackendUsage:
    """Aggregated usage of one backend over the retention window."""
    tokens_used: int = 0
    requests: int = 0
    estimated_cost: float = 0.0
    percent_used: float = 0.0


@dataclass
class UsageStats:
    """Usage summary for display."""
    by_backend: Dict[str, BackendUsage] = field(default_factory=dict)
    total_cost: float = 0.0
    total_tokens: int = 0
    tokens_today: int = 0
    free_tokens_available: int = 0
    days_active: int = 1
    avg_tokens_per_day: int = 0
    avg_tokens_per_30_days: int = 0


class QuotaTracker:
    """Tracks consumption per backend against its free-tier limits.

    Owns the usage ledger: all appends go through record_usage().
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        ledger: UsageLedger,
        settings: SettingsStore,
        clock: Optional[Callable[[], int]] = None,
    ):
        """Initialize the tracker and drop records past the retention horizon.

        Args:
            registry: Configured backends and their descriptors
            ledger: Durable usage ledger
            settings: Settings store, read on every budget recommendation
            clock: Returns the current time in epoch milliseconds
        """
        self._registry = registry
        self._ledger = ledger
        self._settings = settings
        self._clock = clock or _now_millis
        self.prune_expired()

    def prune_expired(self) -> int:
        """Remove ledger records older than 30 days."""
        removed = self._ledger.prune(self._clock() - RETENTION_MILLIS)
        if removed:
            log.info("quota.pruned_expired", removed=removed)
        return removed

    def can_use_free_tier(self, backend_name: str) -> bool:
        """Check whether a backend can currently serve a free request.

        Args:
            backend_name: Name of the backend

        Returns:
            False for unknown backends or ones without a free tier, otherwise
            True only if every declared limit still has headroom
        """
        descriptor = self._registry.descriptor(backend_name)
        if descriptor is None or descriptor.free_tier is None:
            return False

        limits = descriptor.free_tier
        now = self._clock()
        records = self._ledger.records_since(now - MONTH_MILLIS, backend_name)

        if limits.tokens_per_day is not None:
            used_today = _sum_tokens(records, now - DAY_MILLIS)
            if used_today >= limits.tokens_per_day:
                log.debug(
                    "quota.daily_cap_reached",
                    backend=backend_name,
                    used=used_today,
                    cap=limits.tokens_per_day,
                )
                return False

        if limits.tokens_per_month is not None:
            used_this_month = _sum_tokens(records, now - MONTH_MILLIS)
            if used_this_month >= limits.tokens_per_month:
                log.debug(
                    "quota.monthly_cap_reached",
                    backend=backend_name,
                    used=used_this_month,
                    cap=limits.tokens_per_month,
                )
                return False

        if limits.requests_per_minute is not None:
            cutoff = now - MINUTE_MILLIS
            requests_last_minute = sum(1 for r in records if r.timestamp_millis > cutoff)
            if requests_last_minute >= limits.requests_per_minute:
                log.debug(
                    "quota.rate_cap_reached",
                    backend=backend_name,
                    requests=requests_last_minute,
                    cap=limits.requests_per_minute,
                )
                return False

        return True

    def recommended_budget(self, backend_name: str) -> int:
        """Recommend a context token budget for a request to a backend.

        Never more than half the backend's context window, leaving room for
        the system prompt and the response. Shrinks to a conservative fixed
        budget once the backend's free allowance is used up.

        Args:
            backend_name: Name of the backend

        Returns:
            Token budget for the context payload
        """
        descriptor = self._registry.descriptor(backend_name)
        if descriptor is None:
            return UNKNOWN_BACKEND_BUDGET

        if not self.can_use_free_tier(backend_name):
            return NO_FREE_TIER_BUDGET

        max_tokens = self._settings.get_max_context_tokens()
        return int(min(max_tokens, descriptor.max_context_tokens * CONTEXT_WINDOW_SHARE))

    def record_usage(
        self,
        backend_name: str,
        tokens_in: int,
        tokens_out: int,
        cost: float,
    ) -> UsageRecord:
        """Append a usage record for a completed request.

        The record is committed before this returns. Transient SQLite errors
        (locked or busy database) are retried; anything that still fails is
        raised so the caller can report it.

        Args:
            backend_name: Backend that served the request
            tokens_in: Input tokens consumed
            tokens_out: Output tokens generated
            cost: Estimated cost in dollars

        Returns:
            The record as stored in the ledger

        Raises:
            ValueError: If token counts or cost are negative
            UsageRecordError: If the record could not be persisted
        """
        if not backend_name:
            raise ValueError("backend_name is required and cannot be empty")
        if tokens_in < 0 or tokens_out < 0:
            raise ValueError("token counts cannot be negative")
        if cost < 0:
            raise ValueError("cost cannot be negative")

        record = UsageRecord(
            backend_name=backend_name,
            tokens_input=tokens_in,
            tokens_output=tokens_out,
            timestamp_millis=self._clock(),
            cost_estimate=cost
        )

        last_error: Optional[sqlite3.Error] = None
        for attempt in range(1, RECORD_ATTEMPTS + 1):
            try:
                stored = self._ledger.append(record)
            except sqlite3.OperationalError as e:
                last_error = e
                log.warning(
                    "quota.record_retry",
                    backend=backend_name,
                    attempt=attempt,
                    error=str(e),
                )
                if attempt < RECORD_ATTEMPTS:
                    time.sleep(RETRY_BACKOFF_SECONDS * attempt)
                continue
            except sqlite3.Error as e:
                last_error = e
                break
            else:
                log.info(
                    "quota.usage_recorded",
                    backend=backend_name,
                    tokens=stored.tokens_used,
                    cost=stored.cost_estimate,
                )
                return stored

        log.error("quota.record_failed", backend=backend_name, error=str(last_error))
        raise UsageRecordError(
            f"Failed to record usage for {backend_name}: {last_error}",
            backend_name=backend_name,
            attempts=attempt
        ) from last_error

    def usage_stats(self) -> UsageStats:
        """Summarize the last 30 days of usage per backend."""
        now = self._clock()
        records = self._ledger.records_since(now - MONTH_MILLIS)
        stats = UsageStats()

        for descriptor in (b.get_config() for b in self._registry.snapshot()):
            if descriptor.free_tier and descriptor.free_tier.tokens_per_month:
                stats.free_tokens_available += descriptor.free_tier.tokens_per_month

        if not records:
            return stats

        day_cutoff = now - DAY_MILLIS
        for record in records:
            usage = stats.by_backend.setdefault(record.backend_name, BackendUsage())
            usage.tokens_used += record.tokens_used
            usage.requests += 1
            usage.estimated_cost += record.cost_estimate

            stats.total_tokens += record.tokens_used
            stats.total_cost += record.cost_estimate
            if record.timestamp_millis > day_cutoff:
                stats.tokens_today += record.tokens_used

        for name, usage in stats.by_backend.items():
            descriptor = self._registry.descriptor(name)
            if descriptor and descriptor.free_tier and descriptor.free_tier.tokens_per_month:
                usage.percent_used = usage.tokens_used / descriptor.free_tier.tokens_per_month * 100

        first_timestamp = min(r.timestamp_millis for r in records)
        stats.days_active = max(1, math.ceil((now - first_timestamp) / DAY_MILLIS))
        stats.avg_tokens_per_day = round(stats.total_tokens / stats.days_active)
        stats.avg_tokens_per_30_days = round(stats.total_tokens / stats.days_active * 30)
        return stats


def _sum_tokens(records: List[UsageRecord], cutoff_millis: int) -> int:
    return sum(r.tokens_used for r in records if r.timestamp_millis > cutoff_millis)
