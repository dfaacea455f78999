from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

SCALE = "scale"
VOICE = "voice"
EXPRESSION = "expression"
MODALITY_KINDS = [SCALE, VOICE, EXPRESSION]

MODALITY_MAX = {
    SCALE: 27.0,
    VOICE: 100.0,
    EXPRESSION: 100.0,
}

WEIGHT_TOLERANCE = 1e-6

RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"
RISK_EXTREME = "extreme"

# (inclusive lower bound, level), highest first
RISK_THRESHOLDS = [
    (80, RISK_EXTREME),
    (60, RISK_HIGH),
    (40, RISK_MEDIUM),
    (0, RISK_LOW),
]

# (band start, band end exclusive, base score, slope)
PHQ9_BANDS = [
    (0.0, 5.0, 0.0, 5.0),
    (5.0, 10.0, 20.0, 4.0),
    (10.0, 15.0, 40.0, 4.0),
    (15.0, 20.0, 60.0, 4.0),
    (20.0, 27.0, 80.0, 2.5),
]

PHQ9_SEVERITY = [
    (20, "severe"),
    (15, "moderately severe"),
    (10, "moderate"),
    (5, "mild"),
    (0, "minimal"),
]


class FusionError(Exception):
    """Base class for fusion engine errors."""


class InvalidModalityRange(FusionError):
    def __init__(self, kind: str, raw_value: object):
        self.kind = kind
        self.raw_value = raw_value
        upper = MODALITY_MAX.get(kind)
        if upper is None:
            message = f"Unknown modality '{kind}'"
        else:
            message = f"{kind} value {raw_value!r} is outside [0, {upper:g}]"
        super().__init__(message)


class WeightSumError(FusionError):
    pass


@dataclass(frozen=True)
class ModalityInput:
    kind: str
    raw_value: float
    detail: Dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class WeightSet:
    scale: float = 0.5
    voice: float = 0.2
    expression: float = 0.3

    def total(self) -> float:
        return self.scale + self.voice + self.expression

    def validate(self) -> "WeightSet":
        for kind, weight in self.as_dict().items():
            if not isinstance(weight, (int, float)) or math.isnan(weight) or weight < 0 or weight > 1:
                raise WeightSumError(f"Weight for {kind} must be within [0, 1], got {weight!r}")
        total = self.total()
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise WeightSumError(f"Fusion weights must sum to 1.0, got {total:.6f}")
        return self

    def as_dict(self) -> Dict[str, float]:
        return {SCALE: self.scale, VOICE: self.voice, EXPRESSION: self.expression}

    @classmethod
    def from_dict(cls, values: Dict[str, float]) -> "WeightSet":
        return cls(
            scale=float(values[SCALE]),
            voice=float(values[VOICE]),
            expression=float(values[EXPRESSION]),
        )


DEFAULT_WEIGHTS = WeightSet()


@dataclass(frozen=True)
class FusionReport:
    report_id: str
    scale_raw: float
    normalized_scores: Dict[str, int]
    fused_score: int
    risk_level: str
    weights: WeightSet
    inputs: Dict[str, ModalityInput]
    created_at: datetime
    advice_text: Optional[str] = None

    def with_advice(self, advice_text: str) -> "FusionReport":
        return replace(self, advice_text=advice_text)


def validate_range(kind: str, raw_value: float) -> float:
    if kind not in MODALITY_MAX:
        raise InvalidModalityRange(kind, raw_value)
    if isinstance(raw_value, bool) or not isinstance(raw_value, (int, float)):
        raise InvalidModalityRange(kind, raw_value)
    if math.isnan(raw_value) or raw_value < 0 or raw_value > MODALITY_MAX[kind]:
        raise InvalidModalityRange(kind, raw_value)
    return float(raw_value)


def normalize_phq9(raw_value: float) -> int:
    value = validate_range(SCALE, raw_value)
    for start, end, base, slope in PHQ9_BANDS:
        if start <= value < end or (end == MODALITY_MAX[SCALE] and value == end):
            scaled = base + (value - start) * slope
            break
    # round half up so 27 -> 97.5 -> 98
    normalized = int(math.floor(scaled + 0.5))
    if normalized > 100:
        normalized = 100
    return normalized


def normalize(kind: str, raw_value: float) -> int:
    if kind == SCALE:
        return normalize_phq9(raw_value)
    value = validate_range(kind, raw_value)
    return int(math.floor(value + 0.5))


def phq9_severity(raw_value: float) -> str:
    value = validate_range(SCALE, raw_value)
    for lower, label in PHQ9_SEVERITY:
        if value >= lower:
            return label
    return "minimal"


def fuse(normalized_scores: Dict[str, int], weights: WeightSet = DEFAULT_WEIGHTS) -> int:
    weights.validate()
    total = 0.0
    for kind, weight in weights.as_dict().items():
        if kind not in normalized_scores:
            raise FusionError(f"Missing normalized score for {kind}")
        score = normalized_scores[kind]
        if score < 0 or score > 100:
            raise FusionError(f"Normalized {kind} score {score!r} is outside [0, 100]")
        total += score * weight
    return int(math.floor(total + 0.5))


def classify(fused_score: int) -> str:
    if fused_score < 0 or fused_score > 100:
        raise FusionError(f"Fused score {fused_score!r} is outside [0, 100]")
    for lower, level in RISK_THRESHOLDS:
        if fused_score >= lower:
            return level
    return RISK_LOW


class FusionEngine:
    """Pure fusion pipeline: normalize every modality, fuse, classify.

    The engine holds only its weight set; computing a report has no side
    effects, so the same inputs always yield the same score and level.
    """

    def __init__(self, weights: Optional[WeightSet] = None):
        self.weights = (weights or DEFAULT_WEIGHTS).validate()

    def normalize_all(self, inputs: List[ModalityInput]) -> Dict[str, int]:
        by_kind = index_inputs(inputs)
        return {kind: normalize(kind, by_kind[kind].raw_value) for kind in MODALITY_KINDS}

    def compute(self, inputs: List[ModalityInput], created_at: Optional[datetime] = None) -> FusionReport:
        by_kind = index_inputs(inputs)
        normalized = self.normalize_all(inputs)
        fused_score = fuse(normalized, self.weights)
        return FusionReport(
            report_id=uuid.uuid4().hex,
            scale_raw=float(by_kind[SCALE].raw_value),
            normalized_scores=normalized,
            fused_score=fused_score,
            risk_level=classify(fused_score),
            weights=self.weights,
            inputs=by_kind,
            created_at=created_at or datetime.now(timezone.utc),
        )


def index_inputs(inputs: List[ModalityInput]) -> Dict[str, ModalityInput]:
    by_kind: Dict[str, ModalityInput] = {}
    for item in inputs:
        if item.kind not in MODALITY_MAX:
            raise InvalidModalityRange(item.kind, item.raw_value)
        if item.kind in by_kind:
            raise FusionError(f"Duplicate input for modality '{item.kind}'")
        by_kind[item.kind] = item
    missing = [kind for kind in MODALITY_KINDS if kind not in by_kind]
    if missing:
        raise FusionError(f"Missing modality inputs: {', '.join(missing)}")
    return by_kind
