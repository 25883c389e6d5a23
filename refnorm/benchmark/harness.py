"""
Model Benchmark Harness

Runs the hierarchical classifier against a battery of sample names once per
candidate model. Models and samples run concurrently (two nested levels of
fan-out); each model's in-flight requests are bounded by a semaphore, and
per-sample and per-model timeouts keep a hung backend from stalling the run.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import structlog

from ..classification import HierarchicalClassifier
from ..config import BenchmarkSettings
from ..models import BenchmarkRun, SampleOutcome
from .priorities import BenchmarkHistory, ModelPriorityStore
from .stats import STATUS_ERROR, latency_stats, run_status, success_rate

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_DELAY_MS = 200
DEFAULT_CATEGORY_HINT = "общее"

DEFAULT_SAMPLES = (
    "Болт М8х20",
    "Гайка М8",
    "Шайба плоская М8",
    "Винт саморез 4.2х16",
    "Гвоздь строительный 100мм",
    "Саморез по дереву 4.5х50",
    "Дюбель распорный 8х50",
    "Анкерный болт М10х100",
    "Шуруп по металлу 4.2х19",
    "Заклепка вытяжная 4х8",
    "Болт с гайкой М10",
    "Шпилька резьбовая М12",
    "Винт с потайной головкой",
    "Гайка самоконтрящаяся",
    "Шайба пружинная",
)

ClassifierFactory = Callable[
    [str], Union[HierarchicalClassifier, Awaitable[HierarchicalClassifier]]
]


class _ModelAccumulator:
    """Per-model results shared by that model's sample tasks."""

    def __init__(self, samples: Sequence[str]):
        self._lock = asyncio.Lock()
        self.samples = list(samples)
        self.outcomes: List[Optional[SampleOutcome]] = [None] * len(samples)
        self.attempts: List[int] = [0] * len(samples)
        self.success_count = 0
        self.error_count = 0
        self.total_success_ms = 0.0
        self.latencies: List[float] = []
        self.min_ms: Optional[float] = None
        self.max_ms: Optional[float] = None

    async def record(self, index: int, outcome: SampleOutcome) -> None:
        async with self._lock:
            self._record(index, outcome)

    def _record(self, index: int, outcome: SampleOutcome) -> None:
        if self.outcomes[index] is not None:
            return
        self.outcomes[index] = outcome
        if not outcome.success:
            self.error_count += 1
            return
        self.success_count += 1
        self.total_success_ms += outcome.latency_ms
        self.latencies.append(outcome.latency_ms)
        if self.min_ms is None or outcome.latency_ms < self.min_ms:
            self.min_ms = outcome.latency_ms
        if self.max_ms is None or outcome.latency_ms > self.max_ms:
            self.max_ms = outcome.latency_ms

    async def fail_unfinished(self, error: str, elapsed_ms: float) -> int:
        """Mark samples that never reported as failed; returns how many."""
        marked = 0
        async with self._lock:
            for index, outcome in enumerate(self.outcomes):
                if outcome is None:
                    self._record(index, SampleOutcome(
                        sample=self.samples[index],
                        success=False,
                        latency_ms=elapsed_ms,
                        attempts=self.attempts[index],
                        error=error,
                    ))
                    marked += 1
        return marked


@dataclass
class BenchmarkReport:
    """Benchmark runs plus what was done with them."""
    runs: List[BenchmarkRun]
    test_count: int
    priorities_updated: bool = False
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self, include_samples: bool = False) -> Dict[str, Any]:
        return {
            "models": [run.to_dict(include_samples=include_samples) for run in self.runs],
            "total": len(self.runs),
            "test_count": self.test_count,
            "timestamp": self.timestamp.isoformat(),
            "priorities_updated": self.priorities_updated,
        }


class ModelBenchmarkHarness:
    """Measures throughput, latency and reliability of candidate models."""

    def __init__(
        self,
        classifier_factory: ClassifierFactory,
        settings: Optional[BenchmarkSettings] = None,
        priority_store: Optional[ModelPriorityStore] = None,
        history: Optional[BenchmarkHistory] = None,
    ):
        """
        Args:
            classifier_factory: Builds a classifier bound to one model; may
                be sync or async and may raise on configuration failure
            settings: Concurrency, timeout and default settings
            priority_store: Where ``run(update_priorities=True)`` writes
            history: Where ``run`` appends results
        """
        self.classifier_factory = classifier_factory
        self.settings = settings or BenchmarkSettings()
        self.priority_store = priority_store
        self.history = history

    async def benchmark(
        self,
        models: Sequence[str],
        samples: Optional[Sequence[str]] = None,
        max_retries: int = 0,
        retry_delay_ms: int = 0,
    ) -> List[BenchmarkRun]:
        """
        Benchmark every model against every sample concurrently.

        Args:
            models: Model identifiers to compare
            samples: Item names to classify (default battery when empty)
            max_retries: Attempts per sample (5 when not positive)
            retry_delay_ms: Base backoff delay (200 ms when not positive)

        Returns:
            Runs sorted by descending speed then success rate, with 1-based priority
        """
        samples = list(samples or DEFAULT_SAMPLES)
        if max_retries <= 0:
            max_retries = DEFAULT_MAX_RETRIES
        if retry_delay_ms <= 0:
            retry_delay_ms = DEFAULT_RETRY_DELAY_MS

        logger.info(
            "benchmark_started",
            models=list(models),
            samples=len(samples),
            max_retries=max_retries,
            retry_delay_ms=retry_delay_ms,
        )

        results: List[BenchmarkRun] = []
        results_lock = asyncio.Lock()

        async def run_one(model: str) -> None:
            run = await self._benchmark_model(model, samples, max_retries, retry_delay_ms / 1000.0)
            async with results_lock:
                results.append(run)
            logger.info(
                "model_benchmark_completed",
                model=model,
                status=run.status,
                success_count=run.success_count,
                speed=round(run.speed, 3),
            )

        await asyncio.gather(*(run_one(model) for model in models))

        ranked = sorted(results, key=lambda r: (-r.speed, -r.success_rate))
        for i, run in enumerate(ranked):
            run.priority = i + 1

        logger.info("benchmark_completed", models=len(ranked))
        return ranked

    async def run(
        self,
        models: Optional[Sequence[str]] = None,
        samples: Optional[Sequence[str]] = None,
        max_retries: int = 0,
        retry_delay_ms: int = 0,
        update_priorities: bool = False,
    ) -> BenchmarkReport:
        """Benchmark, append to history and optionally update model priorities."""
        models = list(models or self.settings.models)
        samples = list(samples or DEFAULT_SAMPLES)
        runs = await self.benchmark(
            models,
            samples,
            max_retries or self.settings.max_retries,
            retry_delay_ms or self.settings.retry_delay_ms,
        )

        priorities_updated = False
        if update_priorities and self.priority_store is not None:
            priorities_updated = self.priority_store.apply_benchmark(runs)

        if self.history is not None:
            try:
                self.history.append(runs, len(samples))
            except OSError as e:
                logger.warning("benchmark_history_save_failed", error=str(e))

        return BenchmarkReport(runs=runs, test_count=len(samples), priorities_updated=priorities_updated)

    async def _build_classifier(self, model: str) -> HierarchicalClassifier:
        classifier = self.classifier_factory(model)
        if inspect.isawaitable(classifier):
            classifier = await classifier
        return classifier

    async def _benchmark_model(
        self,
        model: str,
        samples: List[str],
        max_retries: int,
        retry_delay: float,
    ) -> BenchmarkRun:
        log = logger.bind(model=model)

        try:
            classifier = await self._build_classifier(model)
        except Exception as e:
            log.error("classifier_construction_failed", error=str(e))
            # "error" rather than "failed": the model never ran, so no sample was attempted
            return BenchmarkRun(
                model=model,
                status=STATUS_ERROR,
                error_count=len(samples),
                total_requests=len(samples),
                samples=[SampleOutcome(sample, False, 0.0, 0, str(e)) for sample in samples],
                error=str(e),
            )

        accumulator = _ModelAccumulator(samples)
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)
        start = time.monotonic()

        tasks = [
            self._benchmark_sample(
                classifier, log, index, sample, max_retries, retry_delay, accumulator, semaphore
            )
            for index, sample in enumerate(samples)
        ]
        try:
            await asyncio.wait_for(asyncio.gather(*tasks), timeout=self.settings.model_timeout)
        except asyncio.TimeoutError:
            elapsed_ms = (time.monotonic() - start) * 1000
            marked = await accumulator.fail_unfinished("model timeout", elapsed_ms)
            log.warning("model_benchmark_timed_out", timeout=self.settings.model_timeout, unfinished=marked)

        wall_clock = time.monotonic() - start
        return self._build_run(model, accumulator, wall_clock)

    async def _benchmark_sample(
        self,
        classifier: HierarchicalClassifier,
        log,
        index: int,
        sample: str,
        max_retries: int,
        retry_delay: float,
        accumulator: _ModelAccumulator,
        semaphore: asyncio.Semaphore,
    ) -> None:
        first_attempt = None
        last_error = None

        for attempt in range(max_retries):
            accumulator.attempts[index] = attempt + 1
            try:
                async with semaphore:
                    # Latency starts once a slot is held, not while queued
                    if first_attempt is None:
                        first_attempt = time.monotonic()
                    await asyncio.wait_for(
                        classifier.try_classify(sample, self.settings.category_hint),
                        timeout=self.settings.sample_timeout,
                    )
            except asyncio.TimeoutError:
                last_error = f"sample timeout after {self.settings.sample_timeout}s"
            except Exception as e:
                last_error = str(e) or type(e).__name__
            else:
                latency_ms = (time.monotonic() - first_attempt) * 1000
                await accumulator.record(index, SampleOutcome(sample, True, latency_ms, attempt + 1))
                log.debug("sample_classified", sample=sample, attempts=attempt + 1, latency_ms=round(latency_ms, 1))
                return

            if attempt < max_retries - 1:
                delay = retry_delay * (2 ** attempt)
                log.debug("sample_retry", sample=sample, attempt=attempt + 1, delay=delay, error=last_error)
                await asyncio.sleep(delay)

        elapsed_ms = (time.monotonic() - first_attempt) * 1000 if first_attempt is not None else 0.0
        await accumulator.record(index, SampleOutcome(sample, False, elapsed_ms, max_retries, last_error))
        log.warning("sample_failed", sample=sample, attempts=max_retries, error=last_error)

    def _build_run(self, model: str, acc: _ModelAccumulator, wall_clock: float) -> BenchmarkRun:
        stats = latency_stats(acc.latencies)
        total = len(acc.samples)
        speed = acc.success_count / wall_clock if acc.success_count and wall_clock > 0 else 0.0
        avg = acc.total_success_ms / acc.success_count if acc.success_count else 0.0

        return BenchmarkRun(
            model=model,
            status=run_status(acc.success_count, acc.error_count),
            success_count=acc.success_count,
            error_count=acc.error_count,
            total_requests=total,
            success_rate=success_rate(acc.success_count, total),
            speed=speed,
            avg_response_time_ms=avg,
            median_response_time_ms=stats.median,
            p95_response_time_ms=stats.p95,
            min_response_time_ms=acc.min_ms or 0.0,
            max_response_time_ms=acc.max_ms or 0.0,
            total_time_ms=wall_clock * 1000,
            samples=[outcome for outcome in acc.outcomes if outcome is not None],
        )
