from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

from .fusion_engine import (
    DEFAULT_WEIGHTS,
    EXPRESSION,
    MODALITY_KINDS,
    SCALE,
    VOICE,
    FusionReport,
    ModalityInput,
    WeightSet,
    classify,
)

DETAIL_KEYS = {
    SCALE: "scaleData",
    VOICE: "voiceData",
    EXPRESSION: "expressionData",
}


def modality_data(item: ModalityInput) -> dict:
    data = dict(item.detail)
    data["rawValue"] = item.raw_value
    return data


def build_report_details(report: FusionReport) -> dict:
    details = {
        "reportId": report.report_id,
        "scaleRaw": report.scale_raw,
        "normalizedScores": dict(report.normalized_scores),
        "advice": report.advice_text,
        "generatedAt": report.created_at.isoformat(),
    }
    for kind in MODALITY_KINDS:
        details[DETAIL_KEYS[kind]] = modality_data(report.inputs[kind])
    return details


def build_sync_payload(report: FusionReport, weights: WeightSet, user_id: str) -> dict:
    return {
        "user_id": user_id,
        "score": report.fused_score,
        "risk_level": report.risk_level,
        "report_details": build_report_details(report),
        "weights": weights.as_dict(),
    }


def parse_datetime_safe(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _input_from_data(kind: str, data: Optional[dict], normalized: int) -> ModalityInput:
    data = dict(data or {})
    raw_value = data.pop("rawValue", None)
    if raw_value is None:
        raw_value = normalized
    return ModalityInput(kind=kind, raw_value=float(raw_value), detail=data)


def report_from_record(record: Dict[str, object]) -> FusionReport:
    """Rebuild a FusionReport from a stored assessment record.

    Stored scores are trusted as-is; the report is not recomputed so the
    history shows exactly what was persisted.
    """
    details = record.get("report") or record.get("report_details") or {}
    normalized = {kind: int(value) for kind, value in (details.get("normalizedScores") or {}).items()}
    for kind in MODALITY_KINDS:
        normalized.setdefault(kind, 0)
    weights_raw = details.get("weights") or record.get("weights")
    weights = WeightSet.from_dict(weights_raw) if weights_raw else DEFAULT_WEIGHTS
    score = int(record.get("score") or 0)
    risk_level = record.get("risk_level")
    if not isinstance(risk_level, str):
        risk_level = classify(score)
    inputs = {
        kind: _input_from_data(kind, details.get(DETAIL_KEYS[kind]), normalized[kind])
        for kind in MODALITY_KINDS
    }
    created_at = (
        parse_datetime_safe(details.get("generatedAt"))
        or parse_datetime_safe(record.get("created_at"))
        or datetime.now(timezone.utc)
    )
    scale_raw = details.get("scaleRaw")
    return FusionReport(
        report_id=str(details.get("reportId") or record.get("id") or ""),
        scale_raw=float(scale_raw if scale_raw is not None else inputs[SCALE].raw_value),
        normalized_scores=normalized,
        fused_score=score,
        risk_level=risk_level,
        weights=weights,
        inputs=inputs,
        created_at=created_at,
        advice_text=details.get("advice"),
    )
