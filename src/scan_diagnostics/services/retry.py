"""Bounded retry with exponential backoff around batch analysis."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from scan_diagnostics.domain.batches import BatchFailure, BatchOutcome, BatchSuccess
from scan_diagnostics.domain.images import RasterImage
from scan_diagnostics.domain.sessions import BatchRecord
from scan_diagnostics.errors import ConfigurationError

_logger = logging.getLogger(__name__)

AnalyzeBatch = Callable[[list[RasterImage], int, int], Awaitable[str]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff settings for one batch."""

    max_retries: int = 3
    base_delay_seconds: float = 2.0
    request_timeout_seconds: float = 300.0

    def validate(self) -> None:
        """Raise ConfigurationError when the policy cannot be applied."""
        if self.max_retries < 1:
            raise ConfigurationError(
                f"max_retries must be at least 1, got {self.max_retries}"
            )
        if self.base_delay_seconds < 0:
            raise ConfigurationError(
                f"base_delay_seconds must not be negative, got {self.base_delay_seconds}"
            )
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError(
                "request_timeout_seconds must be positive, "
                f"got {self.request_timeout_seconds}"
            )

    def delay_after(self, attempt: int) -> float:
        """Return the wait after the 0-based ``attempt`` fails."""
        return self.base_delay_seconds * 2**attempt

    def worst_case_seconds(self) -> float:
        """Return the longest a batch can take: every attempt timing out."""
        backoff = sum(
            self.delay_after(attempt) for attempt in range(self.max_retries - 1)
        )
        return self.max_retries * self.request_timeout_seconds + backoff


@dataclass
class BatchExecutor:
    """Runs one batch through the analysis call with retries."""

    analyze: AnalyzeBatch
    policy: RetryPolicy = field(default_factory=RetryPolicy)
    sleep: Sleep = asyncio.sleep
    clock: Callable[[], float] = time.monotonic

    async def execute(
        self, batch: BatchRecord, images: list[RasterImage], total_batches: int
    ) -> BatchOutcome:
        """Analyse a batch, returning a success or the last recorded failure."""
        self.policy.validate()
        started = self.clock()
        last_error = "Analysis was not attempted"
        for attempt in range(self.policy.max_retries):
            try:
                analysis = await asyncio.wait_for(
                    self.analyze(images, batch.index, total_batches),
                    timeout=self.policy.request_timeout_seconds,
                )
            except TimeoutError:
                last_error = (
                    "Analysis timed out after "
                    f"{self.policy.request_timeout_seconds:g} seconds"
                )
            except Exception as exc:  # noqa: BLE001
                last_error = str(exc) or type(exc).__name__
            else:
                return BatchSuccess(
                    batch_index=batch.index,
                    image_count=batch.image_count,
                    analysis_text=analysis,
                    duration_seconds=self.clock() - started,
                    attempts=attempt + 1,
                )

            _logger.warning(
                "Batch %s attempt %s/%s failed: %s",
                batch.index,
                attempt + 1,
                self.policy.max_retries,
                last_error,
            )
            if attempt < self.policy.max_retries - 1:
                await self.sleep(self.policy.delay_after(attempt))

        _logger.error(
            "Batch %s failed after %s attempts", batch.index, self.policy.max_retries
        )
        return BatchFailure(
            batch_index=batch.index,
            image_count=batch.image_count,
            error_message=last_error,
            attempts=self.policy.max_retries,
            duration_seconds=self.clock() - started,
        )
