"""
Monitoring Module
=================
Operator alerts for the trading engine.

Every engine event that needs a human maps to an AlertKind with a fixed
severity. Delivery is fire-and-forget: a failing channel is logged and
never reaches the engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Callable, Optional
from enum import Enum
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

logger = logging.getLogger(__name__)


class AlertSeverity(Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertKind(Enum):
    """Engine events reported to the operator. The value is the default title."""
    POSITION = "Position"  # throttled P&L of open exposure
    TRADE = "Trade"
    ORDER_FAILED = "Order Failed"
    STOP_FOR_DAY = "Stop for day"
    SQUARE_OFF_FAILED = "Square-off failed"  # windup retried on next tick
    PAUSED = "Paused"
    RESUMED = "Resumed"
    RESET = "Reset"

    @property
    def severity(self) -> AlertSeverity:
        return KIND_SEVERITY.get(self, AlertSeverity.INFO)


KIND_SEVERITY = {
    AlertKind.ORDER_FAILED: AlertSeverity.CRITICAL,
    AlertKind.SQUARE_OFF_FAILED: AlertSeverity.CRITICAL,
    AlertKind.STOP_FOR_DAY: AlertSeverity.WARNING,
    AlertKind.RESET: AlertSeverity.WARNING,
}


@dataclass
class Alert:
    """One operator notification."""
    kind: AlertKind
    title: str
    message: str
    source: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def severity(self) -> AlertSeverity:
        return self.kind.severity

    @property
    def subject(self) -> str:
        prefix = f"{self.source}: " if self.source else ""
        return f"[{self.severity.value.upper()}] {prefix}{self.title}"


class AlertManager:
    """Routes engine events to the configured channels and keeps a history."""

    def __init__(self, config=None, source: str = ""):
        from ..config import MonitoringConfig
        self.config = config or MonitoringConfig()
        self.source = source

        self.alerts: List[Alert] = []
        self.alert_handlers: List[Callable[[Alert], None]] = []

    def add_handler(self, handler: Callable[[Alert], None]):
        """Add custom alert handler."""
        self.alert_handlers.append(handler)

    def send(self, kind: AlertKind, body: str, title: Optional[str] = None) -> Optional[Alert]:
        """
        Record and dispatch an engine event. Never raises.

        Args:
            kind: Event type, fixes the severity
            body: Details for the operator
            title: Overrides the kind's default title (e.g. "Profit:120.00")
        """
        try:
            return self._dispatch(Alert(kind, title or kind.value, body, source=self.source))
        except Exception as e:
            logger.error(f"Alert '{title or kind.value}' could not be dispatched: {e}")
            return None

    def _dispatch(self, alert: Alert) -> Alert:
        self.alerts.append(alert)
        getattr(logger, alert.severity.value)(f"[ALERT] {alert.title}: {alert.message}")

        if not self.config.enable_alerts:
            return alert

        for channel in self.config.alert_channels:
            try:
                if channel == 'console':
                    self._console_alert(alert)
                elif channel == 'email':
                    self._email_alert(alert)
            except Exception as e:
                logger.error(f"Alert dispatch to {channel} failed: {e}")

        for handler in self.alert_handlers:
            try:
                handler(alert)
            except Exception as e:
                logger.error(f"Alert handler error: {e}")
        return alert

    def _console_alert(self, alert: Alert):
        colors = {
            AlertSeverity.INFO: '\033[94m',      # Blue
            AlertSeverity.WARNING: '\033[93m',   # Yellow
            AlertSeverity.CRITICAL: '\033[91m',  # Red
        }
        reset = '\033[0m'

        print(f"{colors.get(alert.severity, '')}{alert.subject}{reset}")
        for line in alert.message.splitlines():
            print(f"  {line}")

    def _email_alert(self, alert: Alert):
        """Mail the alert; the subject carries instrument and title."""
        if not self.config.email_recipients or not self.config.email_user:
            return

        try:
            msg = MIMEMultipart()
            msg['From'] = self.config.email_user
            msg['To'] = ', '.join(self.config.email_recipients)
            msg['Subject'] = alert.subject
            msg.attach(MIMEText(f"{alert.message}\n\nTime: {alert.timestamp:%Y-%m-%d %H:%M:%S}", 'plain'))

            server = smtplib.SMTP(self.config.smtp_server, self.config.smtp_port, timeout=10)
            server.starttls()
            server.login(self.config.email_user, self.config.email_password)
            server.send_message(msg)
            server.quit()

        except Exception as e:
            logger.error(f"Email send failed: {e}")
