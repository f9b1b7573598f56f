"""
AlertManager: Multi-channel alerting for the control system.

Supports:
- Slack notifications (incoming webhook)
- PagerDuty critical alerts (Events API v2)
- Audit logging of all alerts
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger("dbautopilot.alerting")

PAGERDUTY_EVENTS_URL = "https://events.pagerduty.com/v2/enqueue"


class AlertChannel(Enum):
    SLACK = "slack"
    PAGERDUTY = "pagerduty"
    LOG = "log"


class AlertSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class Alert:
    """Alert record for tracking and audit."""
    alert_id: str
    severity: AlertSeverity
    title: str
    message: str
    source: str
    cycle: str = ""
    issue_id: str = ""
    decision_id: str = ""
    channels_sent: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "alert_id": self.alert_id,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "source": self.source,
            "cycle": self.cycle,
            "issue_id": self.issue_id,
            "decision_id": self.decision_id,
            "channels_sent": self.channels_sent,
            "timestamp": self.timestamp.isoformat(),
        }


class AlertManager:
    """
    Multi-channel alert manager with routing based on severity.

    Routing rules:
    - INFO: Log only
    - WARNING: Slack + Log
    - CRITICAL: Slack + PagerDuty + Log

    Channel delivery failures are logged; they never interrupt a cycle.
    """

    def __init__(self, mock_mode: bool = True, max_history: int = 500):
        self.mock_mode = mock_mode
        self._alert_history: list[Alert] = []
        self._max_history = max_history
        self._counts = {sev: 0 for sev in AlertSeverity}
        self._channel_configs: dict[str, dict] = {}

    def configure_channel(self, channel: AlertChannel, config: dict) -> None:
        """Configure a notification channel."""
        self._channel_configs[channel.value] = config
        logger.info(f"Configured alert channel: {channel.value}")

    def send_alert(self, alert: Alert) -> Alert:
        """Route and send an alert based on severity."""
        for channel in self._get_channels_for_severity(alert.severity):
            try:
                self._send_to_channel(channel, alert)
            except Exception as e:
                logger.error(f"Alert delivery to {channel.value} failed for {alert.alert_id}: {e}")
                continue
            alert.channels_sent.append(channel.value)

        self._alert_history.append(alert)
        if len(self._alert_history) > self._max_history:
            del self._alert_history[: len(self._alert_history) - self._max_history]
        self._counts[alert.severity] += 1
        logger.info(
            f"[ALERT {alert.severity.value.upper()}] {alert.title} "
            f"-> {', '.join(alert.channels_sent)}"
        )
        return alert

    def raise_alert(self, severity: AlertSeverity, title: str, message: str,
                    source: str, cycle: str = "", issue_id: str = "",
                    decision_id: str = "") -> Alert:
        return self.send_alert(Alert(
            alert_id=f"alert_{uuid.uuid4().hex[:12]}",
            severity=severity,
            title=title,
            message=message,
            source=source,
            cycle=cycle,
            issue_id=issue_id,
            decision_id=decision_id,
        ))

    def _get_channels_for_severity(self, severity: AlertSeverity) -> list[AlertChannel]:
        """Determine which channels to use based on severity."""
        if severity == AlertSeverity.CRITICAL:
            return [AlertChannel.SLACK, AlertChannel.PAGERDUTY, AlertChannel.LOG]
        elif severity == AlertSeverity.WARNING:
            return [AlertChannel.SLACK, AlertChannel.LOG]
        else:
            return [AlertChannel.LOG]

    def _send_to_channel(self, channel: AlertChannel, alert: Alert) -> None:
        """Send alert to a specific channel."""
        if channel == AlertChannel.LOG:
            return
        if self.mock_mode:
            logger.info(f"  [MOCK {channel.value}] {alert.title}: {alert.message}")
            return

        if channel == AlertChannel.SLACK:
            self._send_slack(alert)
        elif channel == AlertChannel.PAGERDUTY:
            self._send_pagerduty(alert)

    def _send_slack(self, alert: Alert) -> None:
        """Send Slack notification."""
        webhook_url = self._channel_configs.get("slack", {}).get("webhook_url", "")
        if not webhook_url:
            logger.debug("Slack channel not configured, skipping")
            return
        import requests
        context = f"Source: `{alert.source}`"
        if alert.cycle:
            context += f" | Cycle: `{alert.cycle}`"
        if alert.decision_id:
            context += f" | Decision: `{alert.decision_id}`"
        message = {
            "text": f"*[{alert.severity.value.upper()}]* {alert.title}\n{alert.message}",
            "blocks": [
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"*{alert.title}*\n{alert.message}"},
                },
                {
                    "type": "context",
                    "elements": [{"type": "mrkdwn", "text": context}],
                },
            ],
        }
        resp = requests.post(webhook_url, json=message, timeout=10)
        resp.raise_for_status()
        logger.info(f"Slack alert sent: {alert.title}")

    def _send_pagerduty(self, alert: Alert) -> None:
        """Send PagerDuty incident."""
        routing_key = self._channel_configs.get("pagerduty", {}).get("routing_key", "")
        if not routing_key:
            logger.debug("PagerDuty channel not configured, skipping")
            return
        import requests
        body = {
            "routing_key": routing_key,
            "event_action": "trigger",
            "dedup_key": alert.alert_id,
            "payload": {
                "summary": alert.title,
                "source": alert.source,
                "severity": "critical",
                "custom_details": alert.to_dict(),
            },
        }
        resp = requests.post(PAGERDUTY_EVENTS_URL, json=body, timeout=10)
        resp.raise_for_status()
        logger.info(f"PagerDuty incident created: {alert.title}")

    def get_alert_history(self, severity: Optional[AlertSeverity] = None) -> list[Alert]:
        """Recent alerts (newest max_history), optionally filtered by severity."""
        if severity:
            return [a for a in self._alert_history if a.severity == severity]
        return list(self._alert_history)

    def get_alert_summary(self) -> dict:
        """Get summary of all alerts raised since startup."""
        by_severity = {sev.value: n for sev, n in self._counts.items()}
        return {
            "total_alerts": sum(self._counts.values()),
            "by_severity": by_severity,
        }
