import asyncio
import os
import sys
import threading
import unittest
from datetime import datetime, timedelta, timezone

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from mindcare.backend.app.fusion_engine import FusionEngine, ModalityInput
from mindcare.backend.app.history_cache import ReportHistoryCache
from mindcare.backend.app.report_payload import build_sync_payload

BASE_TIME = datetime(2026, 1, 10, 9, 0, tzinfo=timezone.utc)


def compute_report(scale, offset_minutes):
    return FusionEngine().compute(
        [
            ModalityInput(kind="scale", raw_value=scale),
            ModalityInput(kind="voice", raw_value=40),
            ModalityInput(kind="expression", raw_value=30),
        ],
        created_at=BASE_TIME + timedelta(minutes=offset_minutes),
    )


def stored_record(report, user_id="user-1"):
    payload = build_sync_payload(report, report.weights, user_id)
    details = dict(payload["report_details"])
    details["weights"] = payload["weights"]
    return {
        "id": f"assessment-{report.report_id[:6]}",
        "user_id": user_id,
        "score": payload["score"],
        "risk_level": payload["risk_level"],
        "report": details,
        "created_at": report.created_at.isoformat(),
    }


class FakeHistoryClient:
    def __init__(self, records):
        self.records = records
        self.calls = []

    def get_historical_reports(self, user_id, limit):
        self.calls.append((user_id, limit))
        return [record for record in self.records if record["user_id"] == user_id][:limit]


class BlockingHistoryClient(FakeHistoryClient):
    def __init__(self, records):
        super().__init__(records)
        self.started = threading.Event()
        self.release = threading.Event()

    def get_historical_reports(self, user_id, limit):
        snapshot = super().get_historical_reports(user_id, limit)
        self.started.set()
        self.release.wait(timeout=5)
        return snapshot


class ReportHistoryCacheTests(unittest.IsolatedAsyncioTestCase):
    async def test_fetch_orders_newest_first(self):
        reports = [compute_report(scale, offset) for scale, offset in [(3, 0), (12, 20), (18, 10)]]
        client = FakeHistoryClient([stored_record(report) for report in reports])
        cache = ReportHistoryCache(client)

        fetched = await cache.fetch_recent("user-1")

        self.assertEqual([item.scale_raw for item in fetched], [12.0, 18.0, 3.0])
        self.assertEqual(fetched[0].fused_score, reports[1].fused_score)
        self.assertEqual(fetched[0].risk_level, reports[1].risk_level)
        self.assertEqual(fetched[0].normalized_scores, reports[1].normalized_scores)
        self.assertEqual(fetched[0].created_at, reports[1].created_at)
        self.assertEqual(client.calls, [("user-1", 5)])

    async def test_second_fetch_served_from_memory(self):
        client = FakeHistoryClient([stored_record(compute_report(10, 0))])
        cache = ReportHistoryCache(client)
        await cache.fetch_recent("user-1")
        await cache.fetch_recent("user-1")
        self.assertEqual(len(client.calls), 1)

    async def test_successful_sync_triggers_refetch(self):
        client = FakeHistoryClient([stored_record(compute_report(10, 0))])
        cache = ReportHistoryCache(client)
        await cache.fetch_recent("user-1")

        newer = compute_report(15, 30)
        cache.record("user-1", newer)
        self.assertEqual(cache.peek()[0].report_id, newer.report_id)
        client.records.insert(0, stored_record(newer))

        fetched = await cache.fetch_recent("user-1")
        self.assertEqual(len(client.calls), 2)
        self.assertEqual(fetched[0].report_id, newer.report_id)

    async def test_invalidate_forces_refetch(self):
        client = FakeHistoryClient([])
        cache = ReportHistoryCache(client)
        await cache.fetch_recent("user-1")
        cache.invalidate("user-2")
        await cache.fetch_recent("user-1")
        self.assertEqual(len(client.calls), 1)
        cache.invalidate("user-1")
        await cache.fetch_recent("user-1")
        self.assertEqual(len(client.calls), 2)

    async def test_limit_and_capacity(self):
        reports = [compute_report(scale, scale) for scale in range(8)]
        client = FakeHistoryClient([stored_record(report) for report in reports])
        cache = ReportHistoryCache(client)

        fetched = await cache.fetch_recent("user-1", limit=3)
        self.assertEqual(len(fetched), 3)
        self.assertEqual(len(cache.peek()), 5)

        for scale in range(8, 12):
            cache.record("user-1", compute_report(scale, 100 + scale))
        self.assertEqual(len(cache.peek()), 5)
        self.assertEqual(cache.peek()[0].scale_raw, 11.0)

    async def test_switching_user_and_logout(self):
        client = FakeHistoryClient([
            stored_record(compute_report(4, 0), user_id="user-1"),
            stored_record(compute_report(22, 5), user_id="user-2"),
        ])
        cache = ReportHistoryCache(client)
        await cache.fetch_recent("user-1")

        other = await cache.fetch_recent("user-2")
        self.assertEqual([item.scale_raw for item in other], [22.0])
        self.assertEqual(cache.user_id, "user-2")

        cache.clear()
        self.assertEqual(cache.peek(), [])
        self.assertIsNone(cache.user_id)

    async def test_malformed_records_skipped(self):
        good = stored_record(compute_report(9, 0))
        bad = {"id": "broken", "user_id": "user-1", "score": "n/a", "report": {}}
        cache = ReportHistoryCache(FakeHistoryClient([bad, good]))
        with self.assertLogs("mindcare.backend.app.history_cache", level="WARNING"):
            fetched = await cache.fetch_recent("user-1")
        self.assertEqual(len(fetched), 1)

    async def test_non_dict_records_skipped(self):
        class ListHistoryClient:
            def get_historical_reports(self, user_id, limit):
                return ["garbage", None, stored_record(compute_report(9, 0))]

        cache = ReportHistoryCache(ListHistoryClient())
        with self.assertLogs("mindcare.backend.app.history_cache", level="WARNING"):
            fetched = await cache.fetch_recent("user-1")
        self.assertEqual([item.scale_raw for item in fetched], [9.0])

    async def test_zero_limit_returns_nothing(self):
        cache = ReportHistoryCache(FakeHistoryClient([stored_record(compute_report(9, 0))]))
        self.assertEqual(await cache.fetch_recent("user-1", limit=0), [])
        self.assertEqual(len(cache.peek()), 1)

    async def test_record_during_fetch_is_kept_and_refetched(self):
        client = BlockingHistoryClient([stored_record(compute_report(4, 0))])
        cache = ReportHistoryCache(client)

        task = asyncio.create_task(cache.fetch_recent("user-1"))
        for _ in range(200):
            if client.started.is_set():
                break
            await asyncio.sleep(0.01)
        synced = compute_report(16, 30)
        cache.record("user-1", synced)
        client.release.set()
        fetched = await task

        self.assertEqual(fetched[0].report_id, synced.report_id)
        self.assertTrue(cache.is_stale)
        self.assertIn(synced.report_id, [item.report_id for item in cache.peek()])

        client.records.insert(0, stored_record(synced))
        again = await cache.fetch_recent("user-1")
        self.assertEqual(len(client.calls), 2)
        self.assertEqual([item.scale_raw for item in again], [16.0, 4.0])
        self.assertFalse(cache.is_stale)

    async def test_logout_during_fetch_is_not_overwritten(self):
        client = BlockingHistoryClient([stored_record(compute_report(4, 0))])
        cache = ReportHistoryCache(client)

        task = asyncio.create_task(cache.fetch_recent("user-1"))
        for _ in range(200):
            if client.started.is_set():
                break
            await asyncio.sleep(0.01)
        cache.clear()
        client.release.set()
        await task

        self.assertIsNone(cache.user_id)
        self.assertEqual(cache.peek(), [])


if __name__ == "__main__":
    unittest.main()
