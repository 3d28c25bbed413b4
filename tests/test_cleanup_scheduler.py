"""
Tests for the background cache cleanup scheduler.
"""

import asyncio
import os
import sys
import unittest
from unittest.mock import Mock

sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from vorbis_core.cache.cleanup_scheduler import CleanupScheduler


class TestCleanupScheduler(unittest.IsolatedAsyncioTestCase):

    async def test_runs_periodically_until_stopped(self):
        cleanup = Mock(return_value=0)
        scheduler = CleanupScheduler(cleanup, interval_seconds=0.01)

        scheduler.start()
        self.assertTrue(scheduler.running)
        await asyncio.sleep(0.05)
        await scheduler.stop()

        self.assertFalse(scheduler.running)
        self.assertGreaterEqual(cleanup.call_count, 1)
        calls = cleanup.call_count
        await asyncio.sleep(0.03)
        self.assertEqual(cleanup.call_count, calls)

    async def test_start_twice_keeps_one_task(self):
        scheduler = CleanupScheduler(Mock(return_value=0), interval_seconds=60)
        scheduler.start()
        task = scheduler._task
        scheduler.start()
        self.assertIs(scheduler._task, task)
        await scheduler.stop()

    async def test_stop_without_start(self):
        await CleanupScheduler(Mock(), interval_seconds=1).stop()


class TestCleanupSchedulerSync(unittest.TestCase):

    def test_run_once_returns_removed_count(self):
        scheduler = CleanupScheduler(Mock(return_value=3), interval_seconds=1)
        self.assertEqual(scheduler.run_once(), 3)
        self.assertEqual(scheduler.runs, 1)

    def test_failing_cleanup_is_logged(self):
        scheduler = CleanupScheduler(Mock(side_effect=RuntimeError("disk full")), interval_seconds=1)
        with self.assertLogs('vorbis_core.cache.cleanup_scheduler', level='ERROR'):
            self.assertEqual(scheduler.run_once(), 0)
        self.assertEqual(scheduler.runs, 0)

    def test_start_requires_running_loop(self):
        with self.assertRaises(RuntimeError):
            CleanupScheduler(Mock(), interval_seconds=1).start()

    def test_invalid_interval(self):
        with self.assertRaises(ValueError):
            CleanupScheduler(Mock(), interval_seconds=0)


if __name__ == '__main__':
    unittest.main()
