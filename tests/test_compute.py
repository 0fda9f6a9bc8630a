"""Tests for the bounded matcher worker pool."""

from __future__ import annotations

import asyncio
import threading

import pytest

from kumbhid.biometrics.compute import ComputePool


class TestComputePool:
    async def test_runs_function_on_worker_thread(self) -> None:
        pool = ComputePool(1)
        try:
            name = await pool.run(lambda: threading.current_thread().name)
        finally:
            pool.shutdown()
        assert name.startswith("match-worker")

    async def test_passes_arguments(self) -> None:
        pool = ComputePool(2)
        try:
            assert await pool.run(pow, 2, 10) == 1024
        finally:
            pool.shutdown()

    async def test_saturated_pool_times_out(self) -> None:
        pool = ComputePool(1, acquire_timeout=0.05)
        release = threading.Event()
        try:
            blocker = asyncio.create_task(pool.run(release.wait, 5))
            await asyncio.sleep(0.02)
            assert pool.active_count == 1

            with pytest.raises(TimeoutError):
                await pool.run(lambda: None)
            assert pool.queue_depth == 0

            release.set()
            assert await blocker is True
        finally:
            release.set()
            pool.shutdown()
        assert pool.active_count == 0

    async def test_exceptions_release_slot(self) -> None:
        pool = ComputePool(1, acquire_timeout=0.5)

        def boom() -> None:
            raise ValueError("scan failed")

        try:
            with pytest.raises(ValueError, match="scan failed"):
                await pool.run(boom)
            assert pool.active_count == 0
            assert await pool.run(lambda: 7) == 7
        finally:
            pool.shutdown()
