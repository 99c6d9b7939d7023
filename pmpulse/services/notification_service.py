import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, List, Optional, Tuple

from pmpulse.core.config import Settings, settings as default_settings
from pmpulse.models.sync_failure_alert import SyncFailureAlert
from pmpulse.models.sync_run import SyncRun

logger = logging.getLogger(__name__)

RECENT_FAILURES_SHOWN = 3
# Never allowed in notification copy
EM_DASH = "\u2014"


def build_sync_failure_message(
    alert: SyncFailureAlert,
    sync_run: Optional[SyncRun],
    connection_name: str,
    dashboard_url: str,
) -> Tuple[str, str]:
    """Subject and plain-text body for a consecutive-failure alert"""
    failures = alert.consecutive_failures
    subject = f"PMPulse Alert: {failures} Consecutive Sync Failures"

    lines = [
        "Sync Failure Alert",
        "",
        f"Your {connection_name} sync has failed {failures} consecutive times.",
        "",
    ]

    if sync_run is not None:
        started = sync_run.started_at.strftime("%b %d, %Y %I:%M %p") if sync_run.started_at else "not started"
        lines += [
            "Last sync attempt:",
            f"Run: #{sync_run.id}",
            f"Mode: {sync_run.mode}",
            f"Started: {started}",
            "",
        ]
        if sync_run.error_summary:
            lines += ["Error summary:", sync_run.error_summary, ""]

    recent = (alert.failure_details or [])[-RECENT_FAILURES_SHOWN:]
    if recent:
        lines.append("Recent failures:")
        for failure in recent:
            timestamp = failure.get("timestamp", "Unknown time")
            error = failure.get("error") or "No details available"
            lines.append(f"- {timestamp}: {error}")
        lines.append("")

    lines += [
        "Please check your AppFolio connection settings and API credentials.",
        f"View the admin dashboard: {dashboard_url}",
        "You can acknowledge this alert in the admin dashboard to stop further notifications "
        "until the failures continue.",
        "",
        "Best regards, PMPulse",
    ]
    body = "\n".join(lines).replace(EM_DASH, "-")
    return subject.replace(EM_DASH, "-"), body


class NotificationService:
    """Email channel for operator alerts"""

    def __init__(self, settings: Settings = None):
        self.settings = settings or default_settings

    def send_sync_failure_alert(
        self,
        alert: SyncFailureAlert,
        sync_run: Optional[SyncRun],
        connection_name: str,
        recipients: Optional[List[str]] = None,
    ) -> Dict:
        recipients = recipients or self.settings.alert_recipients
        if not recipients:
            logger.warning("No recipients configured for sync failure alerts")
            return {"success": False, "error": "No recipients configured", "recipients": []}

        subject, body = build_sync_failure_message(
            alert, sync_run, connection_name, self.settings.DASHBOARD_URL
        )
        return self.send_email(recipients, subject, body)

    def send_email(self, recipients: List[str], subject: str, body: str) -> Dict:
        msg = MIMEMultipart()
        msg["From"] = self.settings.ALERT_FROM_ADDRESS
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        if not self.settings.SMTP_HOST:
            # Without SMTP the alert still reaches the operator logs
            logger.warning(f"SMTP not configured; alert not emailed: {subject}")
            logger.info(f"Recipients: {recipients}")
            return {"success": False, "error": "SMTP not configured", "recipients": recipients}

        try:
            with smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT, timeout=30) as server:
                if self.settings.SMTP_USE_TLS:
                    server.starttls()
                if self.settings.SMTP_USERNAME:
                    server.login(self.settings.SMTP_USERNAME, self.settings.SMTP_PASSWORD or "")
                server.sendmail(self.settings.ALERT_FROM_ADDRESS, recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error sending alert notification: {str(e)}", exc_info=True)
            return {"success": False, "error": str(e), "recipients": recipients}

        logger.info(f"Alert notification sent to {len(recipients)} recipient(s): {subject}")
        return {"success": True, "message": "Alert notification sent successfully", "recipients": recipients}
