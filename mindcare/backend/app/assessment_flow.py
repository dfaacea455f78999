from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from .advice_engine import attach_advice
from .escalation_monitor import EscalationMonitor
from .fusion_engine import FusionEngine, FusionReport, ModalityInput, WeightSet
from .sync_coordinator import SyncCoordinator, SyncState

logger = logging.getLogger(__name__)


@dataclass
class AssessmentOutcome:
    report: FusionReport
    alert_id: Optional[str]
    sync_state: SyncState


async def run_assessment(
    user_id: str,
    inputs: List[ModalityInput],
    monitor: EscalationMonitor,
    coordinator: SyncCoordinator,
    weights: Optional[WeightSet] = None,
) -> AssessmentOutcome:
    # computation errors propagate here, before any side effect
    engine = FusionEngine(weights)
    report = engine.compute(inputs)
    report = await attach_advice(report)
    logger.info(
        "Report %s computed for user %s: score=%d level=%s",
        report.report_id,
        user_id,
        report.fused_score,
        report.risk_level,
    )

    alert_id, sync_state = await asyncio.gather(
        monitor.escalate(report, user_id),
        coordinator.sync(report, engine.weights, user_id),
    )
    return AssessmentOutcome(report=report, alert_id=alert_id, sync_state=sync_state)
