from __future__ import annotations

import asyncio
from typing import Dict, List

from .fusion_engine import (
    EXPRESSION,
    RISK_EXTREME,
    RISK_HIGH,
    RISK_LOW,
    RISK_MEDIUM,
    SCALE,
    VOICE,
    FusionReport,
    phq9_severity,
)

STATE_SUMMARY = {
    RISK_LOW: "Your overall emotional state looks stable across the questionnaire, voice and facial signals.",
    RISK_MEDIUM: "Some signals point to a moderate level of emotional distress worth keeping an eye on.",
    RISK_HIGH: "Several signals indicate a high level of emotional distress.",
    RISK_EXTREME: "The combined signals indicate a very high level of emotional distress.",
}

RECOMMENDATIONS = {
    RISK_LOW: [
        "Keep a regular sleep schedule and daily movement.",
        "Use the mood diary to notice changes early.",
    ],
    RISK_MEDIUM: [
        "Try a 5-minute breathing or grounding exercise each day.",
        "Talk with someone you trust about how you have been feeling.",
        "Repeat the assessment in about two weeks.",
    ],
    RISK_HIGH: [
        "Consider booking a session with a mental health professional soon.",
        "Let a trusted person know you are going through a difficult time.",
        "Reduce extra stressors where you can this week.",
    ],
    RISK_EXTREME: [
        "Please reach out to a mental health professional as soon as possible.",
        "If you feel unsafe, contact local emergency services or a crisis line right away.",
        "A clinician may contact you, so keep your phone reachable.",
    ],
}

MODALITY_LABELS = {
    SCALE: "Questionnaire (PHQ-9)",
    VOICE: "Voice emotion",
    EXPRESSION: "Facial expression",
}


def describe_modality(kind: str, report: FusionReport) -> str:
    item = report.inputs[kind]
    normalized = report.normalized_scores[kind]
    if item.detail.get("placeholder"):
        return f"{MODALITY_LABELS[kind]}: not captured, neutral value used ({normalized}/100)."
    if kind == SCALE:
        return (
            f"{MODALITY_LABELS[kind]}: total {item.raw_value:g}/27, "
            f"{phq9_severity(item.raw_value)} range ({normalized}/100)."
        )
    return f"{MODALITY_LABELS[kind]}: {normalized}/100."


def build_advice(report: FusionReport) -> str:
    lines: List[str] = [
        "## Emotional state analysis",
        STATE_SUMMARY[report.risk_level],
        f"Fused score {report.fused_score}/100 ({report.risk_level} risk).",
        "",
        "## Signals",
    ]
    for kind in (SCALE, VOICE, EXPRESSION):
        lines.append(f"- {describe_modality(kind, report)}")
    lines.extend(["", "## Recommendations"])
    for item in RECOMMENDATIONS[report.risk_level]:
        lines.append(f"- {item}")
    lines.extend(["", "This report is not a diagnosis."])
    return "\n".join(lines)


async def attach_advice(report: FusionReport) -> FusionReport:
    advice = await asyncio.to_thread(build_advice, report)
    return report.with_advice(advice)


def advice_sections(advice_text: str) -> Dict[str, List[str]]:
    sections: Dict[str, List[str]] = {}
    current = ""
    for line in advice_text.splitlines():
        if line.startswith("## "):
            current = line[3:].strip()
            sections[current] = []
        elif current and line.strip():
            sections[current].append(line.strip())
    return sections
