from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set

from .fusion_engine import FusionReport, WeightSet
from .report_payload import build_sync_payload

logger = logging.getLogger(__name__)

SYNC_IDLE = "idle"
SYNC_SYNCING = "syncing"
SYNC_SUCCESS = "success"
SYNC_ERROR = "error"

MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 1.0


@dataclass
class SyncState:
    report_id: str
    status: str = SYNC_IDLE
    retry_count: int = 0
    assessment_id: Optional[str] = None
    last_error: Optional[str] = None


class LoggingNotifier:
    """Default user notifier; UIs pass their own with the same two methods."""

    def warning(self, message: str) -> None:
        logger.warning(message)

    def error(self, message: str) -> None:
        logger.error(message)


class SyncCoordinator:
    def __init__(
        self,
        client,
        history_cache=None,
        notifier=None,
        retry_delay: float = RETRY_DELAY_SECONDS,
        max_retries: int = MAX_RETRIES,
    ):
        self.client = client
        self.history_cache = history_cache
        self.notifier = notifier or LoggingNotifier()
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self._states: Dict[str, SyncState] = {}
        self._closed = False
        self._timers: Set[asyncio.Future] = set()

    def state_for(self, report: FusionReport) -> SyncState:
        return self._states.setdefault(report.report_id, SyncState(report_id=report.report_id))

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop pending retries; called when the owning view is torn down."""
        self._closed = True
        for timer in list(self._timers):
            timer.cancel()

    async def sync(self, report: FusionReport, weights: WeightSet, user_id: str) -> SyncState:
        state = self.state_for(report)
        if state.status == SYNC_SYNCING:
            logger.debug("Sync already in flight for report %s", report.report_id)
            return state
        if state.status == SYNC_SUCCESS:
            return state
        if state.status == SYNC_ERROR:
            # automatic retries are over; only an explicit retry() restarts
            return state
        if self.closed:
            return state
        state.status = SYNC_SYNCING
        payload = build_sync_payload(report, weights, user_id)
        return await self._run(state, report, payload, user_id)

    async def retry(self, report: FusionReport, weights: WeightSet, user_id: str) -> SyncState:
        state = self.state_for(report)
        if state.status != SYNC_ERROR or self.closed:
            return state
        state.status = SYNC_SYNCING
        state.retry_count = 0
        state.last_error = None
        payload = build_sync_payload(report, weights, user_id)
        return await self._run(state, report, payload, user_id)

    async def _run(self, state: SyncState, report: FusionReport, payload: dict, user_id: str) -> SyncState:
        try:
            return await self._submit(state, report, payload, user_id)
        except BaseException as exc:
            # an interrupted cycle must not leave the report stuck in syncing
            if not self._closed and state.status == SYNC_SYNCING:
                state.status = SYNC_ERROR
                state.last_error = str(exc) or type(exc).__name__
                logger.warning("Sync of report %s interrupted: %s", report.report_id, state.last_error)
            raise

    async def _submit(self, state: SyncState, report: FusionReport, payload: dict, user_id: str) -> SyncState:
        try:
            assessment_id = await asyncio.to_thread(self.client.submit_report, payload)
        except Exception as exc:
            return await self._handle_failure(state, report, payload, user_id, exc)

        if self.closed:
            return state
        state.status = SYNC_SUCCESS
        state.assessment_id = assessment_id
        state.last_error = None
        logger.info("Report %s synced as assessment %s", report.report_id, assessment_id)
        if self.history_cache is not None:
            self.history_cache.record(user_id, report)
        return state

    async def _handle_failure(
        self,
        state: SyncState,
        report: FusionReport,
        payload: dict,
        user_id: str,
        exc: Exception,
    ) -> SyncState:
        if self.closed:
            return state
        state.last_error = str(exc)
        if state.retry_count < self.max_retries:
            state.retry_count += 1
            self.notifier.warning(
                f"Saving your report failed, retrying ({state.retry_count}/{self.max_retries})..."
            )
            logger.warning(
                "Sync of report %s failed (%s); retry %d/%d in %.1fs",
                report.report_id,
                exc,
                state.retry_count,
                self.max_retries,
                self.retry_delay,
            )
            if not await self._wait_before_retry():
                logger.info("Sync of report %s cancelled before retry", report.report_id)
                return state
            return await self._submit(state, report, payload, user_id)

        state.status = SYNC_ERROR
        logger.error("Sync of report %s failed after %d retries: %s", report.report_id, state.retry_count, exc)
        self.notifier.error("Your report could not be saved. Check your connection and retry manually.")
        return state

    async def _wait_before_retry(self) -> bool:
        if self._closed:
            return False
        timer = asyncio.ensure_future(asyncio.sleep(self.retry_delay))
        self._timers.add(timer)
        try:
            await timer
        except asyncio.CancelledError:
            if not (self._closed and timer.cancelled()):
                raise
            return False
        finally:
            self._timers.discard(timer)
        return not self._closed
