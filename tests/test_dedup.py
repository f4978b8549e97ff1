"""Tests for the in-flight request deduplicator."""

from __future__ import annotations

import asyncio

import pytest

from pacer.scheduler.dedup import Deduplicator


class TestDeduplicatorLookup:
    @pytest.mark.asyncio
    async def test_hit_within_window(self):
        loop = asyncio.get_running_loop()
        dedup = Deduplicator(window=0.1)
        future = loop.create_future()
        dedup.register("k", future, now=10.0)
        assert dedup.lookup("k", now=10.05) is future

    @pytest.mark.asyncio
    async def test_miss_after_window(self):
        loop = asyncio.get_running_loop()
        dedup = Deduplicator(window=0.1)
        dedup.register("k", loop.create_future(), now=10.0)
        assert dedup.lookup("k", now=10.1) is None

    @pytest.mark.asyncio
    async def test_unknown_key(self):
        assert Deduplicator(window=0.1).lookup("nope", now=0.0) is None

    @pytest.mark.asyncio
    async def test_zero_window_never_hits(self):
        loop = asyncio.get_running_loop()
        dedup = Deduplicator(window=0.0)
        dedup.register("k", loop.create_future(), now=1.0)
        assert dedup.lookup("k", now=1.0) is None


class TestDeduplicatorCleanup:
    @pytest.mark.asyncio
    async def test_entry_swept_after_twice_the_window(self):
        loop = asyncio.get_running_loop()
        dedup = Deduplicator(window=0.02)
        dedup.register("k", loop.create_future(), now=loop.time())
        assert "k" in dedup
        await asyncio.sleep(0.08)
        assert "k" not in dedup
        assert len(dedup) == 0

    @pytest.mark.asyncio
    async def test_reregistered_entry_survives_old_sweep(self):
        loop = asyncio.get_running_loop()
        dedup = Deduplicator(window=0.1)
        dedup.register("k", loop.create_future(), now=loop.time())
        await asyncio.sleep(0.12)
        fresh = loop.create_future()
        registered_at = loop.time()
        dedup.register("k", fresh, now=registered_at)
        # The first registration's sweep was due at ~0.20s.
        await asyncio.sleep(0.1)
        assert "k" in dedup
        assert dedup.lookup("k", now=registered_at) is fresh

    @pytest.mark.asyncio
    async def test_clear_forgets_everything(self):
        loop = asyncio.get_running_loop()
        dedup = Deduplicator(window=10.0)
        dedup.register("a", loop.create_future(), now=loop.time())
        dedup.register("b", loop.create_future(), now=loop.time())
        dedup.clear()
        assert len(dedup) == 0
        assert dedup.lookup("a", now=loop.time()) is None
