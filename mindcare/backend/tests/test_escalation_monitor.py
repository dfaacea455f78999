import os
import sys
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from mindcare.backend.app import escalation_monitor
from mindcare.backend.app.api_client import AlertSubmissionFailure
from mindcare.backend.app.escalation_monitor import EscalationMonitor
from mindcare.backend.app.fusion_engine import FusionEngine, ModalityInput


def compute_report(scale, voice, expression):
    return FusionEngine().compute([
        ModalityInput(kind="scale", raw_value=scale),
        ModalityInput(kind="voice", raw_value=voice),
        ModalityInput(kind="expression", raw_value=expression),
    ])


class RecordingAlertClient:
    def __init__(self, fail=False):
        self.fail = fail
        self.alerts = []

    def submit_risk_alert(self, payload):
        self.alerts.append(payload)
        if self.fail:
            raise AlertSubmissionFailure("Request rejected (503)", status_code=503)
        return f"alert-{len(self.alerts)}"


class EvaluateTests(unittest.TestCase):
    def test_fused_score_trigger(self):
        self.assertTrue(escalation_monitor.evaluate(80, 0, 0, 0))

    def test_raw_scale_trigger_ignores_fusion(self):
        self.assertTrue(escalation_monitor.evaluate(45, 20, 10, 10))

    def test_corroborating_channels_trigger(self):
        self.assertTrue(escalation_monitor.evaluate(70, 5, 80, 80))
        self.assertFalse(escalation_monitor.evaluate(70, 5, 80, 79))

    def test_just_below_every_threshold(self):
        self.assertFalse(escalation_monitor.evaluate(79, 19, 79, 79))

    def test_reasons_list_every_rule(self):
        reasons = escalation_monitor.trigger_reasons(90, 25, 85, 95)
        self.assertEqual(len(reasons), 3)


class EscalationMonitorTests(unittest.IsolatedAsyncioTestCase):
    async def test_alert_submitted_for_severe_scale(self):
        client = RecordingAlertClient()
        monitor = EscalationMonitor(client)
        report = compute_report(20, 10, 10)
        self.assertLess(report.fused_score, 80)

        alert_id = await monitor.escalate(report, "patient-1")

        self.assertEqual(alert_id, "alert-1")
        payload = client.alerts[0]
        self.assertEqual(payload["patient_id"], "patient-1")
        self.assertEqual(payload["alert_type"], "fusion_risk_high")
        self.assertEqual(payload["risk_level"], report.fused_score)
        self.assertFalse(payload["is_handled"])
        self.assertEqual(payload["data_source"], "fusion_report")
        self.assertIn("PHQ-9 20/27", payload["description"])

    async def test_no_alert_below_thresholds(self):
        client = RecordingAlertClient()
        monitor = EscalationMonitor(client)
        alert_id = await monitor.escalate(compute_report(12, 65, 58), "patient-1")
        self.assertIsNone(alert_id)
        self.assertEqual(client.alerts, [])

    async def test_failure_is_logged_not_raised(self):
        client = RecordingAlertClient(fail=True)
        monitor = EscalationMonitor(client)
        with self.assertLogs("mindcare.backend.app.escalation_monitor", level="ERROR") as logs:
            alert_id = await monitor.escalate(compute_report(25, 90, 90), "patient-1")
        self.assertIsNone(alert_id)
        self.assertEqual(len(client.alerts), 1)
        self.assertTrue(any("submission failed" in line for line in logs.output))

    async def test_runs_once_per_report(self):
        client = RecordingAlertClient()
        monitor = EscalationMonitor(client)
        report = compute_report(25, 90, 90)
        await monitor.escalate(report, "patient-1")
        await monitor.escalate(report, "patient-1")
        await monitor.escalate(report.with_advice("advice"), "patient-1")
        self.assertEqual(len(client.alerts), 1)
        self.assertTrue(monitor.has_evaluated(report))

    async def test_evaluated_ids_are_bounded(self):
        monitor = EscalationMonitor(RecordingAlertClient(), capacity=3)
        reports = [compute_report(scale, 10, 10) for scale in range(5)]
        for report in reports:
            await monitor.escalate(report, "patient-1")
        self.assertEqual(escalation_monitor.EVALUATED_CAPACITY, 500)
        self.assertFalse(monitor.has_evaluated(reports[0]))
        self.assertFalse(monitor.has_evaluated(reports[1]))
        self.assertTrue(all(monitor.has_evaluated(report) for report in reports[2:]))


if __name__ == "__main__":
    unittest.main()
