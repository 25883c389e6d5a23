"""Tests for the model benchmark harness."""

import asyncio
from collections import defaultdict

import pytest

from refnorm.benchmark import (
    DEFAULT_SAMPLES,
    BenchmarkHistory,
    ModelBenchmarkHarness,
    ModelPriorityStore,
)
from refnorm.config import BenchmarkSettings
from refnorm.errors import ClassificationError, ConfigurationError

SAMPLES = ["Болт М8х20", "Гайка М8", "Шайба плоская М8"]


class FakeClassifier:
    """Stands in for HierarchicalClassifier in the strict benchmark path."""

    def __init__(self, delay=0.0, failures=0, fail_samples=(), slow_samples=(), slow_delay=1.0):
        self.delay = delay
        self.failures = failures
        self.fail_samples = set(fail_samples)
        self.slow_samples = set(slow_samples)
        self.slow_delay = slow_delay
        self.calls = defaultdict(int)
        self.hints = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def try_classify(self, item_name, category_hint=""):
        self.calls[item_name] += 1
        self.hints.append(category_hint)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.slow_delay if item_name in self.slow_samples else self.delay)
            if item_name in self.fail_samples or self.calls[item_name] <= self.failures:
                raise ClassificationError(f"could not classify {item_name}")
            return item_name
        finally:
            self.in_flight -= 1


def make_harness(classifiers, settings=None, **kwargs):
    def factory(model):
        classifier = classifiers[model]
        if isinstance(classifier, Exception):
            raise classifier
        return classifier

    return ModelBenchmarkHarness(factory, settings=settings or BenchmarkSettings(), **kwargs)


class TestRunInvariants:
    """Per-run accounting."""

    async def test_all_successful(self):
        """Test counts, rate, status and latency ordering for a clean run."""
        harness = make_harness({"a": FakeClassifier(delay=0.01)})

        [run] = await harness.benchmark(["a"], SAMPLES, max_retries=1, retry_delay_ms=1)

        assert run.status == "ok"
        assert run.success_count == 3
        assert run.error_count == 0
        assert run.total_requests == 3
        assert run.success_count + run.error_count == run.total_requests
        assert run.success_rate == pytest.approx(100.0)
        assert run.speed > 0
        assert (
            run.min_response_time_ms
            <= run.median_response_time_ms
            <= run.p95_response_time_ms
            <= run.max_response_time_ms
        )
        assert run.priority == 1
        assert [outcome.sample for outcome in run.samples] == SAMPLES

    async def test_category_hint_is_passed(self):
        """Test that the configured category hint reaches the classifier."""
        classifier = FakeClassifier()
        harness = make_harness({"a": classifier}, BenchmarkSettings(category_hint="крепеж"))

        await harness.benchmark(["a"], SAMPLES, max_retries=1, retry_delay_ms=1)

        assert set(classifier.hints) == {"крепеж"}

    async def test_partial_run(self):
        """Test that a run with some failures is partial."""
        harness = make_harness({"a": FakeClassifier(fail_samples=["Гайка М8"])})

        [run] = await harness.benchmark(["a"], SAMPLES, max_retries=2, retry_delay_ms=1)

        assert run.status == "partial"
        assert run.success_count == 2
        assert run.error_count == 1
        assert run.success_rate == pytest.approx(200 / 3)
        failed = [outcome for outcome in run.samples if not outcome.success]
        assert failed[0].sample == "Гайка М8"
        assert failed[0].attempts == 2
        assert "could not classify" in failed[0].error

    async def test_failed_run(self):
        """Test that a run with no successes is failed with zeroed latency stats."""
        harness = make_harness({"a": FakeClassifier(fail_samples=SAMPLES)})

        [run] = await harness.benchmark(["a"], SAMPLES, max_retries=1, retry_delay_ms=1)

        assert run.status == "failed"
        assert run.speed == 0.0
        assert run.avg_response_time_ms == 0.0
        assert run.max_response_time_ms == 0.0

    async def test_retries_until_success(self):
        """Test that a sample is retried with latency measured from its first attempt."""
        classifier = FakeClassifier(failures=2)
        harness = make_harness({"a": classifier})

        [run] = await harness.benchmark(["a"], ["Болт М8х20"], max_retries=3, retry_delay_ms=10)

        outcome = run.samples[0]
        assert outcome.success
        assert outcome.attempts == 3
        # Backoff of 10 ms then 20 ms precedes the successful attempt
        assert outcome.latency_ms >= 25
        assert classifier.calls["Болт М8х20"] == 3

    async def test_concurrency_is_bounded(self):
        """Test the per-model semaphore."""
        classifier = FakeClassifier(delay=0.01)
        harness = make_harness({"a": classifier}, BenchmarkSettings(max_concurrency=2))

        [run] = await harness.benchmark(["a"], [f"Болт {i}" for i in range(10)], max_retries=1, retry_delay_ms=1)

        assert run.success_count == 10
        assert classifier.max_in_flight <= 2


class TestLatencyAccounting:
    """Latency and speed figures for a run."""

    async def test_two_sample_run(self):
        """Test avg and speed for samples answered in 100 ms and 150 ms."""
        classifier = FakeClassifier(delay=0.10, slow_samples=["Гайка М8"], slow_delay=0.15)
        harness = make_harness({"a": classifier}, settings=BenchmarkSettings(max_concurrency=2))

        [run] = await harness.benchmark(["a"], ["Болт М8х20", "Гайка М8"], max_retries=1, retry_delay_ms=1)

        assert run.success_count == 2
        assert run.avg_response_time_ms == pytest.approx(125, abs=20)
        assert run.speed == pytest.approx(2 / 0.15, rel=0.2)
        assert run.min_response_time_ms <= run.max_response_time_ms

    async def test_queue_wait_not_counted(self):
        """Test that time spent waiting for a concurrency slot is not latency."""
        harness = make_harness({"a": FakeClassifier(delay=0.10)}, settings=BenchmarkSettings(max_concurrency=1))

        [run] = await harness.benchmark(["a"], ["Болт М8х20", "Гайка М8"], max_retries=1, retry_delay_ms=1)

        latencies = [sample.latency_ms for sample in run.samples]
        assert len(latencies) == 2
        assert all(latency < 150 for latency in latencies)
        assert run.avg_response_time_ms == pytest.approx(100, abs=25)
        assert run.total_time_ms >= 190


class TestRanking:
    """Sorting and priority assignment."""

    async def test_faster_model_ranks_first(self):
        """Test that a 100 ms model outranks a 150 ms model."""
        harness = make_harness({
            "slow": FakeClassifier(delay=0.15),
            "fast": FakeClassifier(delay=0.10),
        })

        runs = await harness.benchmark(["slow", "fast"], SAMPLES, max_retries=1, retry_delay_ms=1)

        assert [run.model for run in runs] == ["fast", "slow"]
        assert [run.priority for run in runs] == [1, 2]
        assert runs[0].speed > runs[1].speed
        assert runs[0].avg_response_time_ms < runs[1].avg_response_time_ms

    async def test_models_run_concurrently(self):
        """Test that two models overlap rather than run back to back."""
        harness = make_harness({"a": FakeClassifier(delay=0.2), "b": FakeClassifier(delay=0.2)})

        loop = asyncio.get_running_loop()
        start = loop.time()
        await harness.benchmark(["a", "b"], SAMPLES, max_retries=1, retry_delay_ms=1)

        assert loop.time() - start < 0.35


class TestIsolation:
    """Failures confined to one model."""

    async def test_construction_failure(self):
        """Test that a model whose classifier cannot be built yields an error run."""
        harness = make_harness({
            "broken": ConfigurationError("no API key"),
            "good": FakeClassifier(),
        })

        runs = await harness.benchmark(["broken", "good"], SAMPLES, max_retries=1, retry_delay_ms=1)

        by_model = {run.model: run for run in runs}
        broken = by_model["broken"]
        assert broken.status == "error"
        assert broken.error == "no API key"
        assert broken.error_count == len(SAMPLES)
        assert broken.success_count == 0
        assert all(not outcome.success for outcome in broken.samples)
        assert by_model["good"].status == "ok"
        assert runs[0].model == "good"
        assert broken.priority == 2

    async def test_async_factory(self):
        """Test that an async classifier factory is awaited."""
        classifier = FakeClassifier()

        async def factory(model):
            return classifier

        harness = ModelBenchmarkHarness(factory)
        [run] = await harness.benchmark(["a"], SAMPLES, max_retries=1, retry_delay_ms=1)

        assert run.success_count == 3

    async def test_sample_timeout(self):
        """Test that a hung sample fails without failing the others."""
        classifier = FakeClassifier(slow_samples=["Гайка М8"], slow_delay=1.0)
        harness = make_harness({"a": classifier}, BenchmarkSettings(sample_timeout=0.05))

        [run] = await harness.benchmark(["a"], SAMPLES, max_retries=1, retry_delay_ms=1)

        assert run.success_count == 2
        assert run.error_count == 1
        failed = [outcome for outcome in run.samples if not outcome.success][0]
        assert "sample timeout" in failed.error

    async def test_model_timeout(self):
        """Test that unfinished samples are failed when the model budget runs out."""
        classifier = FakeClassifier(delay=1.0)
        harness = make_harness({"a": classifier}, BenchmarkSettings(model_timeout=0.1))

        [run] = await harness.benchmark(["a"], SAMPLES, max_retries=1, retry_delay_ms=1)

        assert run.status == "failed"
        assert run.error_count == len(SAMPLES)
        assert run.success_count + run.error_count == run.total_requests
        assert all(outcome.error == "model timeout" for outcome in run.samples)


class TestDefaults:
    """Defaults applied for unset arguments."""

    async def test_default_samples(self):
        """Test that the built-in battery is used when no samples are given."""
        harness = make_harness({"a": FakeClassifier()})

        [run] = await harness.benchmark(["a"], max_retries=1, retry_delay_ms=1)

        assert run.total_requests == len(DEFAULT_SAMPLES) == 15

    async def test_default_retries(self):
        """Test that a non-positive retry count means five attempts."""
        classifier = FakeClassifier(failures=4)
        harness = make_harness({"a": classifier})

        [run] = await harness.benchmark(["a"], ["Болт М8х20"], max_retries=0, retry_delay_ms=1)

        assert run.samples[0].success
        assert run.samples[0].attempts == 5


class TestRun:
    """Full run with persistence."""

    async def test_run_updates_priorities_and_history(self, tmp_path):
        """Test that run() stores priorities and appends history."""
        store = ModelPriorityStore(tmp_path / "priorities.json")
        history = BenchmarkHistory(tmp_path / "history.jsonl")
        harness = make_harness(
            {"slow": FakeClassifier(delay=0.05), "fast": FakeClassifier(delay=0.01)},
            priority_store=store,
            history=history,
        )

        report = await harness.run(["slow", "fast"], SAMPLES, max_retries=1, retry_delay_ms=1, update_priorities=True)

        assert report.priorities_updated is True
        assert report.test_count == 3
        assert store.ordered(["slow", "fast"]) == ["fast", "slow"]
        entries = history.recent()
        assert len(entries) == 2
        assert {entry["model"] for entry in entries} == {"slow", "fast"}
        assert all(entry["test_count"] == 3 for entry in entries)

        data = report.to_dict()
        assert data["total"] == 2
        assert data["models"][0]["model"] == "fast"
        assert "samples" not in data["models"][0]

    async def test_run_without_priority_update(self, tmp_path):
        """Test that priorities are untouched unless requested."""
        store = ModelPriorityStore(tmp_path / "priorities.json")
        harness = make_harness({"a": FakeClassifier()}, priority_store=store)

        report = await harness.run(["a"], SAMPLES, max_retries=1, retry_delay_ms=1)

        assert report.priorities_updated is False
        assert store.priority("a") is None
        assert not (tmp_path / "priorities.json").exists()

    async def test_run_uses_configured_models(self):
        """Test that run() falls back to the configured model list."""
        harness = make_harness(
            {"m1": FakeClassifier(), "m2": FakeClassifier()},
            BenchmarkSettings(models=["m1", "m2"]),
        )

        report = await harness.run(samples=SAMPLES, max_retries=1, retry_delay_ms=1)

        assert {run.model for run in report.runs} == {"m1", "m2"}
