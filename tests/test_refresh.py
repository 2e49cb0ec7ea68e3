from __future__ import annotations

import asyncio
import unittest

from fakes import quiet_logger
from reportwatch.refresh import DebouncedRefreshCoordinator


class DebouncedRefreshTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.backgrounds: list[bool] = []
        self.gate: asyncio.Event | None = None

        async def fetch(background: bool) -> None:
            self.backgrounds.append(background)
            if self.gate is not None:
                await self.gate.wait()

        self.refresher = DebouncedRefreshCoordinator(fetch, delay_seconds=0.05, logger=quiet_logger())

    async def asyncTearDown(self) -> None:
        self.refresher.close()

    async def test_burst_coalesces_into_one_fetch(self) -> None:
        for _ in range(5):
            self.refresher.schedule_refresh()
            await asyncio.sleep(0.01)
        self.assertTrue(self.refresher.pending)
        self.assertEqual(self.backgrounds, [])

        await asyncio.sleep(0.15)
        self.assertEqual(self.backgrounds, [True])
        self.assertEqual(self.refresher.refetch_count, 1)
        self.assertFalse(self.refresher.pending)

    async def test_spaced_calls_each_fetch(self) -> None:
        for _ in range(3):
            self.refresher.schedule_refresh()
            await asyncio.sleep(0.12)
        self.assertEqual(self.backgrounds, [True, True, True])

    async def test_refresh_now_ignores_calls_while_in_flight(self) -> None:
        self.gate = asyncio.Event()
        first = asyncio.create_task(self.refresher.refresh_now())
        await asyncio.sleep(0)
        self.assertTrue(self.refresher.in_flight)

        self.assertFalse(await self.refresher.refresh_now())
        self.gate.set()
        self.assertTrue(await first)
        self.assertEqual(self.backgrounds, [False])
        self.assertFalse(self.refresher.in_flight)

    async def test_timer_firing_mid_fetch_is_deferred(self) -> None:
        self.gate = asyncio.Event()
        first = asyncio.create_task(self.refresher.refresh_now())
        await asyncio.sleep(0)
        self.refresher.schedule_refresh()
        await asyncio.sleep(0.08)
        self.assertEqual(self.backgrounds, [False])
        self.assertTrue(self.refresher.pending)

        self.gate.set()
        await first
        await asyncio.sleep(0.1)
        self.assertEqual(self.backgrounds, [False, True])
        self.assertEqual(self.refresher.refetch_count, 2)

    async def test_refresh_now_supersedes_pending_timer(self) -> None:
        self.refresher.schedule_refresh()
        await self.refresher.refresh_now()
        await asyncio.sleep(0.1)
        self.assertEqual(self.backgrounds, [False])

    async def test_failed_fetch_clears_in_flight(self) -> None:
        async def broken(background: bool) -> None:
            raise RuntimeError("boom")

        refresher = DebouncedRefreshCoordinator(broken, delay_seconds=0.01, logger=quiet_logger())
        with self.assertRaises(RuntimeError):
            await refresher.refresh_now()
        self.assertFalse(refresher.in_flight)

        refresher.schedule_refresh()
        await asyncio.sleep(0.05)
        self.assertEqual(refresher.refetch_count, 0)
        refresher.close()

    async def test_close_cancels_pending_timer(self) -> None:
        self.refresher.schedule_refresh()
        self.refresher.close()
        await asyncio.sleep(0.1)
        self.assertEqual(self.backgrounds, [])


if __name__ == "__main__":
    unittest.main()
