"""Tests for the retrying batch executor."""

import asyncio

import pytest

from scan_diagnostics.domain.batches import BatchFailure, BatchSuccess
from scan_diagnostics.domain.images import RasterImage
from scan_diagnostics.domain.sessions import BatchRecord
from scan_diagnostics.errors import AnalysisTransientError, ConfigurationError
from scan_diagnostics.services.retry import BatchExecutor, RetryPolicy
from tests.conftest import FakeClock, RecordingSleep, make_raster


def _batch(index: int = 1, size: int = 2) -> BatchRecord:
    return BatchRecord(index=index, image_ids=[f"img-{i}" for i in range(size)])


class ScriptedAnalyzer:
    def __init__(self, results: list[str | Exception]) -> None:
        self.results = list(results)
        self.calls: list[tuple[int, int, int]] = []

    async def __call__(
        self, images: list[RasterImage], batch_index: int, total_batches: int
    ) -> str:
        self.calls.append((len(images), batch_index, total_batches))
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def test_retry_policy_delays_double() -> None:
    policy = RetryPolicy(base_delay_seconds=2.0)

    assert [policy.delay_after(attempt) for attempt in range(3)] == [2.0, 4.0, 8.0]


def test_retry_policy_worst_case_counts_every_timeout_and_wait() -> None:
    policy = RetryPolicy(
        max_retries=3, base_delay_seconds=2.0, request_timeout_seconds=300.0
    )

    assert policy.worst_case_seconds() == 906.0


@pytest.mark.parametrize(
    "policy",
    [
        RetryPolicy(max_retries=0),
        RetryPolicy(base_delay_seconds=-1.0),
        RetryPolicy(request_timeout_seconds=0),
    ],
)
def test_retry_policy_validate_rejects_unusable_values(policy: RetryPolicy) -> None:
    with pytest.raises(ConfigurationError):
        policy.validate()


def test_execute_succeeds_first_attempt() -> None:
    analyzer = ScriptedAnalyzer(["Findings:\n- clear"])
    sleep = RecordingSleep()
    executor = BatchExecutor(analyze=analyzer, sleep=sleep, clock=FakeClock(step=2.0))

    outcome = asyncio.run(executor.execute(_batch(), [make_raster()], total_batches=3))

    assert isinstance(outcome, BatchSuccess)
    assert outcome.attempts == 1
    assert outcome.analysis_text == "Findings:\n- clear"
    assert outcome.duration_seconds == 2.0
    assert analyzer.calls == [(1, 1, 3)]
    assert sleep.delays == []


def test_execute_retries_with_backoff_then_succeeds() -> None:
    analyzer = ScriptedAnalyzer(
        [AnalysisTransientError("busy", status_code=503), "ok"]
    )
    sleep = RecordingSleep()
    executor = BatchExecutor(analyze=analyzer, sleep=sleep)

    outcome = asyncio.run(executor.execute(_batch(), [make_raster()], total_batches=3))

    assert isinstance(outcome, BatchSuccess)
    assert outcome.attempts == 2
    assert sleep.delays == [2.0]


def test_execute_fails_after_max_attempts_with_last_error() -> None:
    analyzer = ScriptedAnalyzer(
        [
            AnalysisTransientError("first"),
            AnalysisTransientError("second"),
            AnalysisTransientError("rate limited", status_code=429),
        ]
    )
    sleep = RecordingSleep()
    executor = BatchExecutor(
        analyze=analyzer, policy=RetryPolicy(max_retries=3), sleep=sleep
    )

    outcome = asyncio.run(executor.execute(_batch(size=5), [make_raster()], 3))

    assert isinstance(outcome, BatchFailure)
    assert outcome.attempts == 3
    assert outcome.image_count == 5
    assert outcome.error_message == "429: rate limited"
    assert len(analyzer.calls) == 3
    assert sleep.delays == [2.0, 4.0]


def test_execute_single_attempt_never_sleeps() -> None:
    analyzer = ScriptedAnalyzer([RuntimeError("boom")])
    sleep = RecordingSleep()
    executor = BatchExecutor(
        analyze=analyzer, policy=RetryPolicy(max_retries=1), sleep=sleep
    )

    outcome = asyncio.run(executor.execute(_batch(), [make_raster()], 1))

    assert isinstance(outcome, BatchFailure)
    assert outcome.attempts == 1
    assert outcome.error_message == "boom"
    assert sleep.delays == []


def test_execute_counts_timeouts_as_failed_attempts() -> None:
    async def never_finishes(
        images: list[RasterImage], batch_index: int, total_batches: int
    ) -> str:
        await asyncio.sleep(10)
        return "late"

    sleep = RecordingSleep()
    executor = BatchExecutor(
        analyze=never_finishes,
        policy=RetryPolicy(
            max_retries=2, base_delay_seconds=1.0, request_timeout_seconds=0.01
        ),
        sleep=sleep,
    )

    outcome = asyncio.run(executor.execute(_batch(), [make_raster()], 1))

    assert isinstance(outcome, BatchFailure)
    assert outcome.attempts == 2
    assert outcome.error_message == "Analysis timed out after 0.01 seconds"
    assert sleep.delays == [1.0]


def test_execute_validates_policy_before_calling() -> None:
    analyzer = ScriptedAnalyzer(["unused"])
    executor = BatchExecutor(analyze=analyzer, policy=RetryPolicy(max_retries=0))

    with pytest.raises(ConfigurationError):
        asyncio.run(executor.execute(_batch(), [make_raster()], 1))

    assert analyzer.calls == []
