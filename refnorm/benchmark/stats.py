"""Latency statistics for benchmark runs."""

from dataclasses import dataclass
from typing import Iterable

STATUS_OK = "ok"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"
STATUS_ERROR = "error"


@dataclass
class LatencyStats:
    """Aggregates over successful-sample latencies, in milliseconds."""
    avg: float = 0.0
    median: float = 0.0
    p95: float = 0.0
    min: float = 0.0
    max: float = 0.0


def median(sorted_values) -> float:
    n = len(sorted_values)
    if n == 0:
        return 0.0
    mid = n // 2
    if n % 2 == 0:
        return (sorted_values[mid - 1] + sorted_values[mid]) / 2
    return sorted_values[mid]


def percentile_95(sorted_values) -> float:
    n = len(sorted_values)
    if n == 0:
        return 0.0
    index = min(int(n * 0.95), n - 1)
    return sorted_values[index]


def latency_stats(latencies: Iterable[float]) -> LatencyStats:
    """Compute avg/median/p95/min/max; all zero for an empty set."""
    values = sorted(latencies)
    if not values:
        return LatencyStats()
    return LatencyStats(
        avg=sum(values) / len(values),
        median=median(values),
        p95=percentile_95(values),
        min=values[0],
        max=values[-1],
    )


def run_status(success_count: int, error_count: int) -> str:
    if success_count == 0 and error_count > 0:
        return STATUS_FAILED
    if error_count > 0:
        return STATUS_PARTIAL
    return STATUS_OK


def success_rate(success_count: int, total: int) -> float:
    """Success rate as a percentage."""
    if total <= 0:
        return 0.0
    return success_count / total * 100
