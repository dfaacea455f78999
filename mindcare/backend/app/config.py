from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .fusion_engine import WeightSet, WeightSumError

REPO_ROOT = Path(__file__).resolve().parents[3]
load_dotenv(REPO_ROOT / ".env")

DEFAULT_API_BASE = "http://127.0.0.1:8000"


def resolve_db_path() -> str:
    db_env = (os.getenv("MINDCARE_DB_PATH") or os.getenv("DB_PATH") or "").strip()
    db_path = Path(db_env) if db_env else (REPO_ROOT / "mindcare.db")
    if not db_path.is_absolute():
        db_path = REPO_ROOT / db_path
    return str(db_path)


def parse_weights(value: str) -> WeightSet:
    parts = [part.strip() for part in value.split(",") if part.strip()]
    if len(parts) != 3:
        raise WeightSumError(f"Expected three comma-separated weights, got {value!r}")
    try:
        scale, voice, expression = (float(part) for part in parts)
    except ValueError as exc:
        raise WeightSumError(f"Weights must be numeric, got {value!r}") from exc
    return WeightSet(scale=scale, voice=voice, expression=expression).validate()


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class EngineSettings:
    api_base: str = DEFAULT_API_BASE
    api_token: Optional[str] = None
    http_timeout: float = 10.0
    sync_retry_delay: float = 1.0
    sync_max_retries: int = 3
    history_limit: int = 5
    weights: WeightSet = field(default_factory=WeightSet)
    log_level: str = "INFO"
    log_file: Optional[str] = None


def load_settings() -> EngineSettings:
    weights_raw = (os.getenv("MINDCARE_FUSION_WEIGHTS") or "").strip()
    return EngineSettings(
        api_base=(os.getenv("MINDCARE_API_BASE_URL") or DEFAULT_API_BASE).rstrip("/"),
        api_token=(os.getenv("MINDCARE_API_TOKEN") or "").strip() or None,
        http_timeout=_env_float("MINDCARE_HTTP_TIMEOUT", 10.0),
        sync_retry_delay=_env_float("MINDCARE_SYNC_RETRY_DELAY", 1.0),
        sync_max_retries=_env_int("MINDCARE_SYNC_MAX_RETRIES", 3),
        history_limit=_env_int("MINDCARE_HISTORY_LIMIT", 5),
        weights=parse_weights(weights_raw) if weights_raw else WeightSet(),
        log_level=(os.getenv("MINDCARE_LOG_LEVEL") or "INFO").strip().upper(),
        log_file=(os.getenv("MINDCARE_LOG_FILE") or "").strip() or None,
    )
