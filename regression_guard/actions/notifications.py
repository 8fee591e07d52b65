"""Notifiers used to announce automatic rollbacks."""

from datetime import datetime, timezone
from typing import Dict, Any, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from .base import Notifier, ActionResult
from ..core.models import RegressionAlert
from ..monitoring.logging import audit_logger

logger = structlog.get_logger(__name__)


SEVERITY_EMOJI = {
    "emergency": ":red_circle:",
    "critical": ":orange_circle:",
    "warning": ":yellow_circle:",
}

SEVERITY_COLOR = {
    "emergency": "#ff0000",  # Red
    "critical": "#ff8800",   # Orange
    "warning": "#ffaa00",    # Yellow
}


def build_rollback_message(alert: RegressionAlert, username: str = "Regression Guard") -> Dict[str, Any]:
    """Slack-compatible payload describing a rollback."""
    severity = alert.severity.value
    outcome = "FAILED" if alert.rollback_failed else "triggered"

    return {
        "username": username,
        "text": (
            f"{SEVERITY_EMOJI.get(severity, ':white_circle:')} *Auto-rollback {outcome}*: "
            f"{alert.metric} degraded {alert.degradation_percentage:.1f}%"
        ),
        "attachments": [
            {
                "color": SEVERITY_COLOR.get(severity, "#808080"),
                "fields": [
                    {"title": "Metric", "value": alert.metric, "short": True},
                    {"title": "Severity", "value": severity.upper(), "short": True},
                    {"title": "Current", "value": f"{alert.current_value:.2f}", "short": True},
                    {"title": "Baseline", "value": f"{alert.baseline_value:.2f}", "short": True},
                    {"title": "Confidence", "value": f"{alert.confidence:.0%}", "short": True},
                    {"title": "Alert ID", "value": alert.id, "short": True},
                ],
                "footer": "Performance Regression Guard",
                "ts": int(datetime.now(timezone.utc).timestamp())
            }
        ],
        "alert": alert.to_dict(),
    }


class LoggingNotifier(Notifier):
    """Writes the notification to the audit log only."""

    async def notify(self, endpoint: str, alert: RegressionAlert) -> ActionResult:
        if not self.is_enabled():
            return self.skipped_result(endpoint)
        message = build_rollback_message(alert)["text"]
        audit_logger.log_notification(alert.id, endpoint, True, message)
        return self.create_result(True, f"Logged notification for {endpoint}", {"endpoint": endpoint})


class WebhookNotifier(Notifier):
    """POSTs the rollback message as JSON to each HTTP(S) endpoint."""

    def __init__(self, config: Dict[str, Any] = None, client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self.max_attempts = self.config.get("max_attempts", 3)
        self.username = self.config.get("username", "Regression Guard")
        self._client = client

    async def notify(self, endpoint: str, alert: RegressionAlert) -> ActionResult:
        if not self.is_enabled():
            return self.skipped_result(endpoint)
        if not endpoint.startswith(("http://", "https://")):
            return self.create_result(False, f"Unsupported endpoint: {endpoint}")

        payload = build_rollback_message(alert, self.username)
        if self.is_dry_run():
            logger.info("Dry run, webhook not sent", endpoint=endpoint, alert_id=alert.id)
            return self.create_result(True, "Dry run", {"payload": payload})

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=0.5, max=5),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=False,
            ):
                with attempt:
                    response = await self._post(endpoint, payload)
        except RetryError as e:
            return self.create_result(False, f"Webhook unreachable after {self.max_attempts} attempts: {e}")

        if response.status_code >= 400:
            return self.create_result(
                False,
                f"Webhook returned {response.status_code}",
                {"status_code": response.status_code}
            )

        audit_logger.log_notification(alert.id, endpoint, True)
        return self.create_result(True, f"Webhook delivered to {endpoint}", {"status_code": response.status_code})

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(endpoint, json=payload, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(endpoint, json=payload)
