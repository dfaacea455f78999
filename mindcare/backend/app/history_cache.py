from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .fusion_engine import FusionError, FusionReport
from .report_payload import report_from_record

logger = logging.getLogger(__name__)

HISTORY_CAPACITY = 5


class ReportHistoryCache:
    """Most recent reports for the signed-in user, newest first.

    The list is only a cache of the remote store: it is refetched after a
    successful sync marks it stale, and dropped entirely on logout.
    """

    def __init__(self, client, capacity: int = HISTORY_CAPACITY):
        self.client = client
        self.capacity = capacity
        self._user_id: Optional[str] = None
        self._reports: List[FusionReport] = []
        self._stale = True
        # bumped on every local change so an in-flight fetch cannot overwrite it
        self._generation = 0

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def is_stale(self) -> bool:
        return self._stale

    def peek(self) -> List[FusionReport]:
        return list(self._reports)

    def clear(self) -> None:
        self._user_id = None
        self._reports = []
        self._stale = True
        self._generation += 1

    def invalidate(self, user_id: str) -> None:
        if user_id == self._user_id:
            self._stale = True
            self._generation += 1

    def record(self, user_id: str, report: FusionReport) -> None:
        if user_id != self._user_id:
            self.clear()
            self._user_id = user_id
        reports = [item for item in self._reports if item.report_id != report.report_id]
        reports.insert(0, report)
        reports.sort(key=lambda item: item.created_at, reverse=True)
        self._reports = reports[: self.capacity]
        self._stale = True
        self._generation += 1

    async def fetch_recent(self, user_id: str, limit: Optional[int] = None) -> List[FusionReport]:
        limit = self.capacity if limit is None else min(max(limit, 0), self.capacity)
        if user_id == self._user_id and not self._stale:
            return self._reports[:limit]

        generation = self._generation
        records = await asyncio.to_thread(self.client.get_historical_reports, user_id, self.capacity)
        reports: List[FusionReport] = []
        for record in records:
            if not isinstance(record, dict):
                logger.warning("Skipping assessment record of type %s", type(record).__name__)
                continue
            try:
                reports.append(report_from_record(record))
            except (FusionError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed assessment record %s: %s", record.get("id"), exc)

        if generation != self._generation:
            # the cache changed while the store was being read; keep it stale
            if user_id == self._user_id:
                known = {item.report_id for item in reports}
                reports.extend(item for item in self._reports if item.report_id not in known)
                reports.sort(key=lambda item: item.created_at, reverse=True)
                self._reports = reports[: self.capacity]
                return self._reports[:limit]
            reports.sort(key=lambda item: item.created_at, reverse=True)
            return reports[:limit]

        reports.sort(key=lambda item: item.created_at, reverse=True)
        if user_id != self._user_id:
            self.clear()
        self._user_id = user_id
        self._reports = reports[: self.capacity]
        self._stale = False
        return self._reports[:limit]
