"""Tests for the database fixed-window rate limiter."""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select, update

from webhook_pipeline.core.database import AsyncSessionLocal
from webhook_pipeline.models.database.rate_limits import RateLimitWindow
from webhook_pipeline.services.rate_limiter import RateLimiter

NOW = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)


async def _check(identifier="1.2.3.4:conn", max_requests=3, now=NOW):
    async with AsyncSessionLocal() as session:
        return await RateLimiter.check(session, "webhook-ingest", identifier, max_requests, window_minutes=1, now=now)


class TestRateLimiter:

    async def test_admits_up_to_limit(self, database):
        results = [await _check() for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.current_count for r in results[:3]] == [1, 2, 3]
        assert results[3].current_count == 3
        assert results[0].reset_at == NOW + timedelta(minutes=1)

    async def test_new_window_after_expiry(self, database):
        for _ in range(3):
            await _check()
        assert not (await _check()).allowed

        later = NOW + timedelta(minutes=1, seconds=1)
        result = await _check(now=later)

        assert result.allowed
        assert result.current_count == 1
        assert result.reset_at == later + timedelta(minutes=1)

    async def test_identifiers_are_independent(self, database):
        for _ in range(3):
            await _check(identifier="a")
        assert (await _check(identifier="b")).allowed

    async def test_zero_limit_denies(self, database):
        assert not (await _check(max_requests=0)).allowed

    async def test_concurrent_burst_never_exceeds_limit(self, database):
        results = await asyncio.gather(*(_check(max_requests=5) for _ in range(20)))

        assert sum(1 for r in results if r.allowed) == 5

        async with AsyncSessionLocal() as session:
            count = await session.scalar(select(RateLimitWindow.request_count))
            rows = await session.scalar(select(func.count()).select_from(RateLimitWindow))
        assert count == 5
        assert rows == 1

    async def test_window_reset_by_concurrent_request_is_admitted(self, database, monkeypatch):
        earlier = NOW - timedelta(minutes=2)
        for _ in range(5):
            await _check(max_requests=5, now=earlier)

        async with AsyncSessionLocal() as session:
            execute = session.execute
            calls = []

            async def racing_execute(statement, *args, **kwargs):
                result = await execute(statement, *args, **kwargs)
                calls.append(statement)
                if len(calls) == 1:
                    # Another request starts the new window right after our first update
                    await execute(update(RateLimitWindow).values(window_start=NOW, request_count=1))
                return result

            monkeypatch.setattr(session, "execute", racing_execute)
            result = await RateLimiter.check(
                session, "webhook-ingest", "1.2.3.4:conn", 5, window_minutes=1, now=NOW
            )

        assert result.allowed
        assert result.current_count == 2
        assert result.reset_at == NOW + timedelta(minutes=1)

    async def test_sweep_removes_old_windows(self, database):
        await _check(identifier="old", now=NOW - timedelta(hours=1))
        await _check(identifier="fresh", now=NOW)

        async with AsyncSessionLocal() as session:
            deleted = await RateLimiter.sweep(session, now=NOW)
            remaining = (await session.execute(select(RateLimitWindow.identifier))).scalars().all()

        assert deleted == 1
        assert remaining == ["fresh"]
