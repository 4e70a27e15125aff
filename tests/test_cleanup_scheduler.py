"""Tests for the periodic rate limit cleanup scheduler."""

from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.core.config import RateLimitSettings
from app.core.errors import RateLimitBackendError
from app.services.cleanup_scheduler import RateLimitCleanupScheduler


def _store(backend_name: str = "memory") -> Mock:
    store = Mock(spec=InMemoryRateLimitStore)
    store.backend_name = backend_name
    store.sweep.return_value = 0
    return store


def test_run_once_sweeps_expired_entries() -> None:
    store = InMemoryRateLimitStore()
    store.increment("old", window_ms=1000, now_ms=0)
    store.increment("fresh", window_ms=10_000_000, now_ms=0)
    clock = Mock(return_value=5.0)
    scheduler = RateLimitCleanupScheduler(store, interval_seconds=60, clock=clock)

    deleted = asyncio.run(scheduler.run_once())

    assert deleted == 1
    assert store.get("old") is None
    assert store.get("fresh") is not None


def test_run_once_passes_time_and_batch_size() -> None:
    store = _store("redis")
    store.sweep.return_value = 7
    scheduler = RateLimitCleanupScheduler(
        store, interval_seconds=60, batch_size=100, clock=Mock(return_value=12.5)
    )

    assert asyncio.run(scheduler.run_once()) == 7
    store.sweep.assert_called_once_with(12_500, limit=100)


def test_run_once_logs_and_survives_backend_errors(caplog: pytest.LogCaptureFixture) -> None:
    store = _store("redis")
    store.sweep.side_effect = RateLimitBackendError(
        code="rate_limit_backend_error", message="redis down"
    )
    scheduler = RateLimitCleanupScheduler(store, interval_seconds=60)

    with caplog.at_level("ERROR"):
        assert asyncio.run(scheduler.run_once()) == 0

    assert any(record.getMessage() == "rate_limit.cleanup_failed" for record in caplog.records)


def test_from_settings_picks_interval_per_backend() -> None:
    cfg = RateLimitSettings()

    memory = RateLimitCleanupScheduler.from_settings(_store("memory"), cfg)
    redis = RateLimitCleanupScheduler.from_settings(_store("redis"), cfg)

    assert memory._interval == 300
    assert memory._batch_size is None
    assert redis._interval == 3600
    assert redis._batch_size == 100


def test_start_runs_periodically_until_stopped() -> None:
    store = _store()
    scheduler = RateLimitCleanupScheduler(store, interval_seconds=0.01)

    async def scenario() -> None:
        scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0.1)
        await scheduler.stop()

    asyncio.run(scenario())

    assert scheduler.running is False
    assert store.sweep.call_count >= 2


def test_invalid_interval() -> None:
    with pytest.raises(ValueError):
        RateLimitCleanupScheduler(_store(), interval_seconds=0)


def test_app_lifespan_starts_and_stops_scheduler(app) -> None:
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        scheduler = app.state.cleanup_scheduler
        assert scheduler.running is True

    assert scheduler.running is False


def test_loop_keeps_running_after_unexpected_sweep_error(caplog: pytest.LogCaptureFixture) -> None:
    store = _store()
    store.sweep.side_effect = [RuntimeError("boom"), 3] + [0] * 100
    scheduler = RateLimitCleanupScheduler(store, interval_seconds=0.01)

    async def scenario() -> bool:
        scheduler.start()
        await asyncio.sleep(0.1)
        still_running = scheduler.running
        await scheduler.stop()
        return still_running

    with caplog.at_level("ERROR"):
        assert asyncio.run(scenario()) is True

    assert store.sweep.call_count >= 2
    failures = [r for r in caplog.records if r.getMessage() == "rate_limit.cleanup_failed"]
    assert failures[0].error_type == "RuntimeError"
    assert failures[0].exc_info is not None
