"""Model benchmarking and priority ranking."""

from .harness import (
    ModelBenchmarkHarness,
    BenchmarkReport,
    DEFAULT_SAMPLES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_CATEGORY_HINT,
)
from .priorities import ModelPriorityStore, BenchmarkHistory
from .stats import LatencyStats, latency_stats, run_status, success_rate

__all__ = [
    "ModelBenchmarkHarness",
    "BenchmarkReport",
    "DEFAULT_SAMPLES",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_RETRY_DELAY_MS",
    "DEFAULT_CATEGORY_HINT",
    "ModelPriorityStore",
    "BenchmarkHistory",
    "LatencyStats",
    "latency_stats",
    "run_status",
    "success_rate",
]
