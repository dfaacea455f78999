import asyncio
import os
import sys

import altair as alt
import pandas as pd
import requests
import streamlit as st

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from mindcare.backend.app.advice_engine import advice_sections
from mindcare.backend.app.api_client import HistoryFetchFailure, StoreClient
from mindcare.backend.app.assessment_flow import run_assessment
from mindcare.backend.app.config import load_settings
from mindcare.backend.app.escalation_monitor import EscalationMonitor
from mindcare.backend.app.fusion_engine import FusionError
from mindcare.backend.app.history_cache import ReportHistoryCache
from mindcare.backend.app.logger_config import setup_logger
from mindcare.backend.app.modality_sources import placeholder_kinds, resolve_inputs
from mindcare.backend.app.sync_coordinator import SYNC_ERROR, SYNC_SUCCESS, SyncCoordinator

st.set_page_config(page_title="MindCare", page_icon="??", layout="centered")

settings = load_settings()
setup_logger("mindcare", level=settings.log_level, log_file=settings.log_file)

API_BASE = st.text_input("API base URL", value=settings.api_base)

RISK_LABELS = {
    "low": "Low risk",
    "medium": "Medium risk",
    "high": "High risk",
    "extreme": "Extreme risk",
}


class StreamlitNotifier:
    def warning(self, message: str) -> None:
        st.toast(message)

    def error(self, message: str) -> None:
        st.error(message)


def build_services() -> None:
    client = StoreClient(API_BASE, token=settings.api_token, timeout=settings.http_timeout)
    cache = ReportHistoryCache(client, capacity=settings.history_limit)
    st.session_state.client = client
    st.session_state.history = cache
    st.session_state.monitor = EscalationMonitor(client)
    st.session_state.coordinator = SyncCoordinator(
        client,
        history_cache=cache,
        notifier=StreamlitNotifier(),
        retry_delay=settings.sync_retry_delay,
        max_retries=settings.sync_max_retries,
    )


def sign_out() -> None:
    coordinator = st.session_state.get("coordinator")
    if coordinator is not None:
        coordinator.close()
    history = st.session_state.get("history")
    if history is not None:
        history.clear()
    st.session_state.user_id = None
    st.session_state.outcome = None


if "user_id" not in st.session_state:
    st.session_state.user_id = None
if "outcome" not in st.session_state:
    st.session_state.outcome = None
if "api_base" not in st.session_state or st.session_state.api_base != API_BASE:
    st.session_state.api_base = API_BASE
    build_services()


st.title("MindCare")
st.caption("Not a diagnosis. If you feel unsafe contact local emergency services.")

st.subheader("Backend connection check")
try:
    health_resp = requests.get(f"{API_BASE}/health", timeout=settings.http_timeout)
except requests.RequestException as exc:
    health_resp = None
    st.error(f"Backend check failed: {exc}")
if health_resp is not None:
    if health_resp.ok:
        st.success(f"Backend healthy ({health_resp.status_code}) | {API_BASE}/health")
    else:
        st.error(f"Backend unhealthy ({health_resp.status_code}) | {API_BASE}/health")
        st.error("Start backend with: uvicorn mindcare.backend.app.main:app --reload --port 8000")

account_tab, assessment_tab, history_tab = st.tabs(["Account", "Assessment", "History"])

with account_tab:
    if st.session_state.user_id:
        st.info(f"Signed in as {st.session_state.user_id}.")
        if st.button("Sign out"):
            sign_out()
            build_services()
            st.rerun()
    else:
        with st.form("user_form"):
            user_id = st.text_input("User id")
            if st.form_submit_button("Continue"):
                if not user_id.strip():
                    st.warning("Enter a user id.")
                else:
                    st.session_state.user_id = user_id.strip()
                    st.success("Signed in.")

with assessment_tab:
    if not st.session_state.user_id:
        st.warning("Sign in on the Account tab to continue.")
    else:
        with st.form("assessment_form"):
            st.caption("Leave a modality unchecked if it was not captured; a neutral value is used.")
            use_scale = st.checkbox("PHQ-9 questionnaire captured", value=True)
            scale_score = st.number_input("PHQ-9 total (0-27)", min_value=0, max_value=27, value=10)
            use_voice = st.checkbox("Voice analysis captured", value=True)
            voice_score = st.slider("Voice emotion score (0-100)", 0, 100, 50)
            use_expression = st.checkbox("Facial expression captured", value=True)
            expression_score = st.slider("Expression risk score (0-100)", 0, 100, 50)
            submitted = st.form_submit_button("Generate fusion report")

        if submitted:
            inputs = resolve_inputs(
                scale={"phq9_score": scale_score} if use_scale else None,
                voice={"emotion_score": voice_score} if use_voice else None,
                expression={"depression_risk_score": expression_score} if use_expression else None,
            )
            try:
                st.session_state.outcome = asyncio.run(run_assessment(
                    st.session_state.user_id,
                    inputs,
                    st.session_state.monitor,
                    st.session_state.coordinator,
                    weights=settings.weights,
                ))
            except FusionError as exc:
                st.session_state.outcome = None
                st.error(f"Could not compute the report: {exc}")
            missing = placeholder_kinds(inputs)
            if missing:
                st.info(f"Neutral values used for: {', '.join(missing)}")

        outcome = st.session_state.outcome
        if outcome is not None:
            report = outcome.report
            st.subheader("Fusion report")
            st.metric("Fused score", report.fused_score, RISK_LABELS[report.risk_level])
            st.dataframe(pd.DataFrame([
                {
                    "modality": kind,
                    "raw": report.inputs[kind].raw_value,
                    "normalized": report.normalized_scores[kind],
                    "weight": report.weights.as_dict()[kind],
                }
                for kind in report.normalized_scores
            ]))
            for title, lines in advice_sections(report.advice_text or "").items():
                st.markdown(f"**{title}**")
                st.markdown("\n".join(lines))
            if outcome.alert_id:
                st.warning("A clinician has been notified and may contact you.")

            state = outcome.sync_state
            if state.status == SYNC_SUCCESS:
                st.success(f"Report saved (assessment {state.assessment_id}).")
            elif state.status == SYNC_ERROR:
                st.error(f"Report not saved after {state.retry_count} retries: {state.last_error}")
                if st.button("Retry saving"):
                    asyncio.run(st.session_state.coordinator.retry(
                        report,
                        report.weights,
                        st.session_state.user_id,
                    ))
                    st.rerun()
            else:
                st.info(f"Sync status: {state.status}")

with history_tab:
    if not st.session_state.user_id:
        st.warning("Sign in on the Account tab to continue.")
    else:
        history = st.session_state.history
        try:
            reports = asyncio.run(history.fetch_recent(st.session_state.user_id))
        except HistoryFetchFailure as exc:
            st.error(f"Unable to load history: {exc}")
            reports = history.peek()
        if not reports:
            st.info("No saved reports yet.")
        else:
            df = pd.DataFrame([
                {
                    "created_at": report.created_at,
                    "score": report.fused_score,
                    "level": report.risk_level,
                }
                for report in reports
            ])
            chart = (
                alt.Chart(df)
                .mark_line(point=True)
                .encode(x="created_at:T", y=alt.Y("score:Q", scale=alt.Scale(domain=[0, 100])), tooltip=["level"])
            )
            st.altair_chart(chart, use_container_width=True)
            st.dataframe(df)
