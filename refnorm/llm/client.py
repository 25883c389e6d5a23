"""LLM client implementation with rate limiting and request metrics."""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Any, Dict, Optional

from ..config import LLMSettings
from .interfaces import ILLMProvider

logger = logging.getLogger(__name__)


class _Bucket:
    """Per-minute allowance refilled continuously up to its capacity."""

    def __init__(self, per_minute: int):
        self.capacity = float(per_minute)
        self.level = float(per_minute)

    def refill(self, seconds: float) -> None:
        self.level = min(self.capacity, self.level + self.capacity * seconds / 60.0)

    def seconds_until(self, amount: float) -> float:
        missing = amount - self.level
        if missing <= 0:
            return 0.0
        return missing * 60.0 / self.capacity


class RateLimiter:
    """Token bucket rate limiter over requests and tokens per minute."""

    def __init__(
        self,
        requests_per_minute: int = 60,
        tokens_per_minute: int = 60000
    ):
        self.requests_per_minute = requests_per_minute
        self.tokens_per_minute = tokens_per_minute
        self._requests = _Bucket(requests_per_minute)
        self._tokens = _Bucket(tokens_per_minute)
        self._checked_at = time.monotonic()
        self._lock = asyncio.Lock()

    def _advance(self, seconds: float) -> None:
        self._requests.refill(seconds)
        self._tokens.refill(seconds)

    async def wait_if_needed(self, tokens: int) -> float:
        """Wait if rate limit would be exceeded; returns seconds waited."""
        # Cap at bucket size, otherwise an oversized request never fits
        tokens = min(tokens, self.tokens_per_minute)

        async with self._lock:
            now = time.monotonic()
            self._advance(max(now - self._checked_at, 0.0))
            self._checked_at = now

            delay = max(self._requests.seconds_until(1), self._tokens.seconds_until(tokens))
            if delay > 0:
                logger.debug(f"Rate limit reached, sleeping {delay:.2f}s")
                await asyncio.sleep(delay)
                self._advance(delay)
                self._checked_at = time.monotonic()

            self._requests.level -= 1
            self._tokens.level -= tokens
            return delay


class LLMClient:
    """Unified LLM client with rate limiting and metrics."""

    def __init__(
        self,
        provider: ILLMProvider,
        settings: Optional[LLMSettings] = None
    ):
        self.provider = provider
        self.settings = settings or LLMSettings()

        # Rate limiters per model
        self.rate_limiters = defaultdict(lambda: RateLimiter(
            requests_per_minute=self.settings.requests_per_minute,
            tokens_per_minute=self.settings.tokens_per_minute
        ))

        self.metrics = {
            "total_requests": 0,
            "total_tokens": 0,
            "total_duration_ms": 0.0,
            "rate_limit_wait_ms": 0.0,
            "errors": 0
        }

    @property
    def model(self) -> str:
        return getattr(self.provider, "model", "default")

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict[str, Any]] = None
    ) -> str:
        """Get a completion, waiting on the model's rate limiter first."""
        start_time = time.monotonic()
        self.metrics["total_requests"] += 1

        tokens = self.provider.estimate_tokens(prompt)
        if system_prompt:
            tokens += self.provider.estimate_tokens(system_prompt)

        rate_limiter = self.rate_limiters[self.model]
        waited = await rate_limiter.wait_if_needed(tokens)
        self.metrics["rate_limit_wait_ms"] += waited * 1000

        try:
            response = await self.provider.complete(
                prompt=prompt,
                system_prompt=system_prompt,
                temperature=self.settings.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.settings.max_tokens,
                response_format=response_format
            )

            self.metrics["total_tokens"] += tokens
            return response

        except Exception as e:
            self.metrics["errors"] += 1
            logger.error(f"LLM completion error ({self.model}): {e}")
            raise
        finally:
            duration_ms = (time.monotonic() - start_time) * 1000
            self.metrics["total_duration_ms"] += duration_ms

    def get_metrics(self) -> Dict[str, Any]:
        """Get client metrics."""
        metrics = self.metrics.copy()

        if metrics["total_requests"] > 0:
            metrics["avg_duration_ms"] = metrics["total_duration_ms"] / metrics["total_requests"]
            metrics["avg_tokens_per_request"] = metrics["total_tokens"] / metrics["total_requests"]
            metrics["error_rate"] = metrics["errors"] / metrics["total_requests"]

        return metrics
