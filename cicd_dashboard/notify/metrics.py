"""DeliveryMetrics — in-process tracking of notification delivery outcomes.

Fed by ``NotificationDispatcher`` after every channel attempt and
aggregates:
- Per-channel attempts, successes, failures and success rate
- Delivery latency samples (render → transport result)
- Alerts dispatched per alert type
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass


@dataclass(frozen=True)
class DeliveryRecord:
    """Immutable record of a single channel delivery attempt."""

    channel: str
    alert_type: str
    success: bool
    latency_secs: float
    timestamp: float
    error: str | None = None


@dataclass
class ChannelStats:
    """Aggregated statistics for a single channel."""

    channel: str
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    timeouts: int = 0
    last_error: str | None = None
    last_attempt_at: float | None = None

    @property
    def success_rate(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.successes / self.attempts


class DeliveryMetrics:
    """Collects delivery metrics from dispatcher callbacks.

    Usage::

        metrics = DeliveryMetrics()
        dispatcher = NotificationDispatcher(channels, metrics=metrics)

        # Query at any time:
        metrics.summary()
        metrics.channel_stats()
    """

    def __init__(self, max_records: int = 10_000) -> None:
        self._records: list[DeliveryRecord] = []
        self._max_records = max_records
        self._channel_stats: dict[str, ChannelStats] = {}
        self._alerts_by_type: dict[str, int] = defaultdict(int)
        self._alerts_dispatched = 0
        self._started_at = time.time()

    # ── Callback entry points ───────────────────────────────────

    def record_alert(self, alert_type: str) -> None:
        """Count one dispatched alert (independent of channel outcomes)."""
        self._alerts_dispatched += 1
        self._alerts_by_type[alert_type] += 1

    def record_delivery(
        self,
        channel: str,
        alert_type: str,
        *,
        success: bool,
        latency_secs: float,
        error: str | None = None,
        timed_out: bool = False,
    ) -> None:
        now = time.time()
        self._records.append(DeliveryRecord(
            channel=channel,
            alert_type=alert_type,
            success=success,
            latency_secs=latency_secs,
            timestamp=now,
            error=error,
        ))
        if len(self._records) > self._max_records:
            self._records = self._records[-self._max_records:]

        stats = self._channel_stats.get(channel)
        if stats is None:
            stats = self._channel_stats[channel] = ChannelStats(channel=channel)
        stats.attempts += 1
        stats.last_attempt_at = now
        if success:
            stats.successes += 1
        else:
            stats.failures += 1
            stats.last_error = error
        if timed_out:
            stats.timeouts += 1

    # ── Query methods ───────────────────────────────────────────

    @property
    def records(self) -> list[DeliveryRecord]:
        return list(self._records)

    def channel_stats(self) -> dict[str, ChannelStats]:
        """Return per-channel aggregate stats."""
        return dict(self._channel_stats)

    def latency_percentiles(self) -> dict[str, float]:
        """Return delivery latency percentiles (p50, p90, p99) in seconds."""
        if not self._records:
            return {"p50": 0.0, "p90": 0.0, "p99": 0.0, "min": 0.0, "max": 0.0}

        values = sorted(r.latency_secs for r in self._records)
        n = len(values)
        return {
            "p50": values[int(n * 0.50)],
            "p90": values[min(int(n * 0.90), n - 1)],
            "p99": values[min(int(n * 0.99), n - 1)],
            "min": values[0],
            "max": values[-1],
        }

    def latency_histogram(self, buckets: int = 10) -> list[tuple[float, float, int]]:
        """Return a histogram of delivery latency.

        Returns list of (bucket_low, bucket_high, count).
        """
        if not self._records:
            return []

        values = [r.latency_secs for r in self._records]
        lo, hi = min(values), max(values)
        if lo == hi:
            return [(lo, hi, len(values))]

        width = (hi - lo) / buckets
        result: list[tuple[float, float, int]] = []
        for i in range(buckets):
            b_lo = lo + i * width
            b_hi = lo + (i + 1) * width
            count = sum(1 for v in values if b_lo <= v < b_hi)
            if i == buckets - 1:
                count += sum(1 for v in values if v == b_hi)
            result.append((round(b_lo, 4), round(b_hi, 4), count))
        return result

    def summary(self) -> dict[str, object]:
        """Return a JSON-ready summary of all metrics."""
        attempts = len(self._records)
        successes = sum(1 for r in self._records if r.success)
        return {
            "uptime_secs": round(time.time() - self._started_at, 3),
            "alerts_dispatched": self._alerts_dispatched,
            "alerts_by_type": dict(self._alerts_by_type),
            "deliveries_attempted": attempts,
            "deliveries_succeeded": successes,
            "deliveries_failed": attempts - successes,
            "success_rate": round(successes / attempts, 4) if attempts else 0.0,
            "channels": {
                name: {
                    "attempts": s.attempts,
                    "successes": s.successes,
                    "failures": s.failures,
                    "timeouts": s.timeouts,
                    "success_rate": round(s.success_rate, 4),
                    "last_error": s.last_error,
                    "last_attempt_at": s.last_attempt_at,
                }
                for name, s in sorted(self._channel_stats.items())
            },
            "latency": self.latency_percentiles(),
            "histogram": [
                {"lo": lo, "hi": hi, "count": count}
                for lo, hi, count in self.latency_histogram()
            ],
        }
