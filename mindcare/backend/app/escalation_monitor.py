from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import List, Optional

from .fusion_engine import EXPRESSION, SCALE, VOICE, FusionReport, phq9_severity

logger = logging.getLogger(__name__)

FUSED_SCORE_TRIGGER = 80
SCALE_RAW_TRIGGER = 20
CORROBORATION_TRIGGER = 80

ALERT_TYPE = "fusion_risk_high"
DATA_SOURCE = "fusion_report"

EVALUATED_CAPACITY = 500


def trigger_reasons(fused_score: int, scale_raw: float, voice_n: int, expression_n: int) -> List[str]:
    reasons: List[str] = []
    if fused_score >= FUSED_SCORE_TRIGGER:
        reasons.append(f"fused score {fused_score} >= {FUSED_SCORE_TRIGGER}")
    if scale_raw >= SCALE_RAW_TRIGGER:
        reasons.append(f"PHQ-9 total {scale_raw:g} >= {SCALE_RAW_TRIGGER}")
    if voice_n >= CORROBORATION_TRIGGER and expression_n >= CORROBORATION_TRIGGER:
        reasons.append(f"voice {voice_n} and expression {expression_n} both >= {CORROBORATION_TRIGGER}")
    return reasons


def evaluate(fused_score: int, scale_raw: float, voice_n: int, expression_n: int) -> bool:
    return bool(trigger_reasons(fused_score, scale_raw, voice_n, expression_n))


def describe_report(report: FusionReport, reasons: List[str]) -> str:
    normalized = report.normalized_scores
    voice_raw = report.inputs[VOICE].raw_value
    expression_raw = report.inputs[EXPRESSION].raw_value
    return (
        f"Fusion score {report.fused_score} ({report.risk_level}). "
        f"PHQ-9 {report.scale_raw:g}/27 ({phq9_severity(report.scale_raw)}) -> {normalized[SCALE]}; "
        f"voice {voice_raw:g} -> {normalized[VOICE]}; "
        f"expression {expression_raw:g} -> {normalized[EXPRESSION]}. "
        f"Triggered: {'; '.join(reasons)}."
    )


def build_alert_payload(report: FusionReport, patient_id: str, reasons: List[str]) -> dict:
    return {
        "patient_id": patient_id,
        "alert_type": ALERT_TYPE,
        "risk_level": report.fused_score,
        "description": describe_report(report, reasons),
        "is_handled": False,
        "data_source": DATA_SOURCE,
        "source_id": report.report_id,
    }


class EscalationMonitor:
    """Evaluates each completed report once and files a clinician alert.

    Alert submission is best effort: failures are logged and never raised,
    so the report can still be shown and synced.
    """

    def __init__(self, client, capacity: int = EVALUATED_CAPACITY):
        self.client = client
        self.capacity = capacity
        self._evaluated: OrderedDict[str, None] = OrderedDict()

    def has_evaluated(self, report: FusionReport) -> bool:
        return report.report_id in self._evaluated

    async def escalate(self, report: FusionReport, patient_id: str) -> Optional[str]:
        if report.report_id in self._evaluated:
            logger.debug("Report %s already evaluated for escalation", report.report_id)
            return None
        self._evaluated[report.report_id] = None
        while len(self._evaluated) > self.capacity:
            self._evaluated.popitem(last=False)

        reasons = trigger_reasons(
            report.fused_score,
            report.scale_raw,
            report.normalized_scores[VOICE],
            report.normalized_scores[EXPRESSION],
        )
        if not reasons:
            return None

        payload = build_alert_payload(report, patient_id, reasons)
        try:
            alert_id = await asyncio.to_thread(self.client.submit_risk_alert, payload)
        except Exception as exc:
            logger.error("Risk alert submission failed for report %s: %s", report.report_id, exc)
            return None
        logger.info("Risk alert %s created for report %s (%s)", alert_id, report.report_id, "; ".join(reasons))
        return alert_id
