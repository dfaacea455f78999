from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy import Boolean, Column, DateTime, Integer, String, create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import load_settings, resolve_db_path
from .logger_config import setup_logger

APP_VERSION = "1.0.0"

settings = load_settings()
logger = setup_logger("mindcare", level=settings.log_level, log_file=settings.log_file)

DB_PATH = resolve_db_path()
DATABASE_URL = f"sqlite:///{DB_PATH}"

engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class Assessment(Base):
    __tablename__ = "assessments"

    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    assessment_type = Column(String, nullable=False, default="multimodal")
    score = Column(Integer, nullable=False)
    risk_level = Column(String, nullable=False)
    report_json = Column(String, nullable=False, default="{}")
    weights_json = Column(String, nullable=False, default="{}")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class RiskAlert(Base):
    __tablename__ = "risk_alerts"

    id = Column(String, primary_key=True, index=True)
    patient_id = Column(String, index=True, nullable=False)
    alert_type = Column(String, nullable=False)
    risk_level = Column(Integer, nullable=False)
    description = Column(String, nullable=False)
    data_source = Column(String, nullable=True)
    source_id = Column(String, nullable=True)
    is_handled = Column(Boolean, default=False, nullable=False)
    handled_by = Column(String, nullable=True)
    handled_at = Column(DateTime, nullable=True)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class AssessmentCreate(BaseModel):
    user_id: str
    score: int = Field(ge=0, le=100)
    risk_level: str
    report_details: dict
    weights: dict


class RiskAlertCreate(BaseModel):
    patient_id: str
    alert_type: str
    risk_level: int = Field(ge=0, le=100)
    description: str
    is_handled: bool = False
    data_source: Optional[str] = None
    source_id: Optional[str] = None


class AlertHandleRequest(BaseModel):
    handled_by: Optional[str] = None
    notes: Optional[str] = None


app = FastAPI(title="MindCare Assessment Store")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.on_event("startup")
def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("Assessment store ready at %s", DB_PATH)


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def assessment_to_dict(row: Assessment) -> dict:
    report = json.loads(row.report_json or "{}")
    weights = json.loads(row.weights_json or "{}")
    report["weights"] = weights
    return {
        "id": row.id,
        "user_id": row.user_id,
        "assessment_type": row.assessment_type,
        "score": row.score,
        "risk_level": row.risk_level,
        "report": report,
        "weights": weights,
        "created_at": row.created_at.isoformat(),
    }


def alert_to_dict(row: RiskAlert) -> dict:
    return {
        "id": row.id,
        "patient_id": row.patient_id,
        "alert_type": row.alert_type,
        "risk_level": row.risk_level,
        "description": row.description,
        "data_source": row.data_source,
        "source_id": row.source_id,
        "is_handled": row.is_handled,
        "handled_by": row.handled_by,
        "handled_at": row.handled_at.isoformat() if row.handled_at else None,
        "notes": row.notes,
        "created_at": row.created_at.isoformat(),
    }


def create_assessment_record(payload: AssessmentCreate, db: Session) -> Assessment:
    row = Assessment(
        id=uuid.uuid4().hex,
        user_id=payload.user_id,
        score=payload.score,
        risk_level=payload.risk_level,
        report_json=json.dumps(payload.report_details),
        weights_json=json.dumps(payload.weights),
        created_at=datetime.utcnow(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_assessment_records(user_id: str, limit: int, db: Session) -> List[Assessment]:
    return (
        db.query(Assessment)
        .filter(Assessment.user_id == user_id)
        .order_by(Assessment.created_at.desc())
        .limit(limit)
        .all()
    )


def create_alert_record(payload: RiskAlertCreate, db: Session) -> RiskAlert:
    row = RiskAlert(
        id=uuid.uuid4().hex,
        patient_id=payload.patient_id,
        alert_type=payload.alert_type,
        risk_level=payload.risk_level,
        description=payload.description,
        data_source=payload.data_source,
        source_id=payload.source_id,
        is_handled=payload.is_handled,
        created_at=datetime.utcnow(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_alert_records(is_handled: Optional[bool], db: Session) -> List[RiskAlert]:
    query = db.query(RiskAlert)
    if is_handled is not None:
        query = query.filter(RiskAlert.is_handled.is_(is_handled))
    return query.order_by(RiskAlert.created_at.desc()).limit(100).all()


def handle_alert_record(alert_id: str, payload: AlertHandleRequest, db: Session) -> Optional[RiskAlert]:
    row = db.query(RiskAlert).filter(RiskAlert.id == alert_id).first()
    if row is None:
        return None
    row.is_handled = True
    row.handled_by = payload.handled_by
    row.handled_at = datetime.utcnow()
    row.notes = payload.notes
    db.commit()
    db.refresh(row)
    return row


@app.get("/health")
def health() -> dict:
    db_status = "ok"
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception:
        db_status = "error"
    return {"status": "ok", "version": APP_VERSION, "db": db_status}


@app.post("/assessments", status_code=201)
def create_assessment(payload: AssessmentCreate, db: Session = Depends(get_db)) -> dict:
    row = create_assessment_record(payload, db)
    logger.info("Stored assessment %s for user %s (score=%d)", row.id, row.user_id, row.score)
    return assessment_to_dict(row)


@app.get("/assessments")
def list_assessments(
    user_id: str = Query(..., alias="userId"),
    page_size: int = Query(5, ge=1, le=50, alias="pageSize"),
    db: Session = Depends(get_db),
) -> dict:
    rows = list_assessment_records(user_id, page_size, db)
    return {"items": [assessment_to_dict(row) for row in rows], "total": len(rows)}


@app.post("/doctor/alerts", status_code=201)
def create_alert(payload: RiskAlertCreate, db: Session = Depends(get_db)) -> dict:
    row = create_alert_record(payload, db)
    logger.warning("Risk alert %s raised for patient %s (risk %d)", row.id, row.patient_id, row.risk_level)
    return alert_to_dict(row)


@app.get("/doctor/alerts")
def list_alerts(
    is_handled: Optional[bool] = Query(None, alias="isHandled"),
    db: Session = Depends(get_db),
) -> List[dict]:
    return [alert_to_dict(row) for row in list_alert_records(is_handled, db)]


@app.put("/doctor/alerts/{alert_id}/handle")
def handle_alert(alert_id: str, payload: AlertHandleRequest, db: Session = Depends(get_db)) -> dict:
    row = handle_alert_record(alert_id, payload, db)
    if row is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert_to_dict(row)
