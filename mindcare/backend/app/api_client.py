from __future__ import annotations

from typing import Dict, List, Optional

import requests

from .fusion_engine import FusionError


class CollaboratorError(FusionError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SyncFailure(CollaboratorError):
    pass


class AlertSubmissionFailure(CollaboratorError):
    pass


class HistoryFetchFailure(CollaboratorError):
    pass


def safe_json(resp: requests.Response):
    content_type = resp.headers.get("content-type", "")
    if "application/json" not in content_type:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


def describe_response(resp: requests.Response, url: str) -> str:
    payload = safe_json(resp)
    if payload and isinstance(payload, dict):
        detail = payload.get("detail") or payload.get("message") or "No detail."
        return f"{resp.status_code} | {url} | {detail}"
    text = (resp.text or "").strip()
    snippet = text[:500] if text else "No response body."
    return f"{resp.status_code} | {url} | {snippet}"


class StoreClient:
    """Blocking HTTP client for the assessments and doctor-alert endpoints.

    Callers on the event loop run these methods through ``asyncio.to_thread``.
    """

    def __init__(
        self,
        api_base: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def api_url(self, path: str) -> str:
        return f"{self.api_base}{path}"

    def api_headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _post(self, path: str, payload: dict, failure: type) -> dict:
        url = self.api_url(path)
        try:
            resp = self.session.post(url, headers=self.api_headers(), json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise failure(f"Request failed: {exc}") from exc
        if not resp.ok:
            raise failure(f"Request rejected ({describe_response(resp, url)})", status_code=resp.status_code)
        body = safe_json(resp)
        if not isinstance(body, dict):
            raise failure(f"Unexpected response body from {url}", status_code=resp.status_code)
        return body

    def submit_report(self, payload: dict) -> str:
        body = self._post("/assessments", payload, SyncFailure)
        assessment_id = body.get("id") or (body.get("data") or {}).get("id")
        if not assessment_id:
            raise SyncFailure("Store response did not include an assessment id")
        return str(assessment_id)

    def submit_risk_alert(self, payload: dict) -> str:
        body = self._post("/doctor/alerts", payload, AlertSubmissionFailure)
        alert_id = body.get("id") or (body.get("data") or {}).get("id")
        if not alert_id:
            raise AlertSubmissionFailure("Store response did not include an alert id")
        return str(alert_id)

    def get_historical_reports(self, user_id: str, limit: int = 5) -> List[Dict[str, object]]:
        url = self.api_url("/assessments")
        params = {"userId": user_id, "pageSize": limit}
        try:
            resp = self.session.get(url, headers=self.api_headers(), params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise HistoryFetchFailure(f"Request failed: {exc}") from exc
        if not resp.ok:
            raise HistoryFetchFailure(
                f"Request rejected ({describe_response(resp, url)})",
                status_code=resp.status_code,
            )
        body = safe_json(resp)
        if isinstance(body, dict):
            items = body.get("items")
        else:
            items = body
        return items if isinstance(items, list) else []
