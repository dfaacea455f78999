from __future__ import annotations

from typing import Dict, List, Optional

from .fusion_engine import EXPRESSION, SCALE, VOICE, ModalityInput

SCORE_KEYS = {
    SCALE: ["phq9_score", "score"],
    VOICE: ["emotion_score", "score"],
    EXPRESSION: ["depression_risk_score", "score"],
}

NEUTRAL_PLACEHOLDERS = {
    SCALE: 0,
    VOICE: 50,
    EXPRESSION: 50,
}


def parse_score(value: object) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def extract_raw_value(kind: str, payload: Optional[Dict[str, object]]) -> Optional[float]:
    if not payload:
        return None
    for key in SCORE_KEYS.get(kind, []):
        if key in payload:
            value = parse_score(payload.get(key))
            if value is not None:
                return value
    return None


def build_input(
    kind: str,
    payload: Optional[Dict[str, object]],
    placeholders: Dict[str, float],
) -> ModalityInput:
    detail = dict(payload or {})
    raw_value = extract_raw_value(kind, payload)
    if raw_value is None:
        if kind not in placeholders:
            raise KeyError(f"No placeholder configured for missing modality '{kind}'")
        raw_value = float(placeholders[kind])
        detail["placeholder"] = True
    return ModalityInput(kind=kind, raw_value=raw_value, detail=detail)


def resolve_inputs(
    scale: Optional[Dict[str, object]] = None,
    voice: Optional[Dict[str, object]] = None,
    expression: Optional[Dict[str, object]] = None,
    placeholders: Optional[Dict[str, float]] = None,
) -> List[ModalityInput]:
    placeholders = placeholders if placeholders is not None else NEUTRAL_PLACEHOLDERS
    return [
        build_input(SCALE, scale, placeholders),
        build_input(VOICE, voice, placeholders),
        build_input(EXPRESSION, expression, placeholders),
    ]


def placeholder_kinds(inputs: List[ModalityInput]) -> List[str]:
    return [item.kind for item in inputs if item.detail.get("placeholder")]
