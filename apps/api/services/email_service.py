"""
Email Service

Client and staff emails for intake and packet lifecycle events.
Uses SMTP; delivery itself is fire-and-forget from the caller's point of view.
"""

import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional
from core.config import settings
import logging

logger = logging.getLogger(__name__)

BRAND_NAME = "Afya Performance"


class EmailService:
    """Service for sending emails"""

    def __init__(self):
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.FROM_EMAIL
        self.from_name = settings.FROM_NAME
        self.enabled = settings.EMAIL_ENABLED
        self.web_app_base_url = settings.WEB_APP_BASE_URL.rstrip("/")
        self.timeout_s = settings.SMTP_TIMEOUT_S

    def _build_message(self, to_email: str, subject: str, html_content: str, text_content: Optional[str]) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        # Plain part first so clients prefer the HTML alternative
        if text_content:
            msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))
        return msg

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """
        Deliver one message. Returns False when email is disabled or the SMTP
        exchange fails; callers treat that as a skipped or failed side effect.
        """
        if not self.enabled:
            logger.info(f"Email disabled, skipping '{subject}'")
            return False

        if not (self.smtp_username and self.smtp_password):
            logger.info(f"SMTP credentials not configured, logging '{subject}' instead of sending")
            return True

        msg = self._build_message(to_email, subject, html_content, text_content)
        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout_s) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP delivery failed for '{subject}': {e}")
            return False
        return True

    def send_to_all(self, recipients: List[str], subject: str, html_content: str, text_content: Optional[str] = None) -> bool:
        """Send one message per recipient. True only if every send succeeded."""
        results = [self.send_email(r, subject, html_content, text_content) for r in recipients]
        return bool(results) and all(results)

    def dashboard_url(self) -> str:
        return f"{self.web_app_base_url}/dashboard"

    def send_packet_ready(self, to_email: str, client_name: str, packet_label: str) -> bool:
        subject = f"Your {packet_label} Plan is Ready!"
        url = self.dashboard_url()
        html = "\n".join([
            f"<h2>Hi {client_name or 'there'},</h2>",
            f"<p>Your personalized {packet_label.lower()} plan is ready.</p>",
            f'<p><a href="{url}">View My {packet_label} Plan</a></p>',
            "<p>You can view, download, and print it anytime from your dashboard.</p>",
            f"<p>{BRAND_NAME}</p>",
        ])
        text = (
            f"Hi {client_name or 'there'},\n\n"
            f"Your personalized {packet_label.lower()} plan is ready.\n"
            f"View it on your dashboard: {url}\n\n{BRAND_NAME}"
        )
        return self.send_email(to_email, subject, html, text)

    def send_packet_updated(self, to_email: str, client_name: str, packet_label: str) -> bool:
        subject = f"Your {packet_label} Plan Has Been Updated"
        url = self.dashboard_url()
        html = "\n".join([
            f"<h2>Hi {client_name or 'there'},</h2>",
            f"<p>Your coach has updated your {packet_label.lower()} plan.</p>",
            f'<p><a href="{url}">View Updated {packet_label} Plan</a></p>',
            f"<p>{BRAND_NAME}</p>",
        ])
        text = (
            f"Hi {client_name or 'there'},\n\n"
            f"Your coach has updated your {packet_label.lower()} plan.\n"
            f"See the changes on your dashboard: {url}\n\n{BRAND_NAME}"
        )
        return self.send_email(to_email, subject, html, text)

    def send_packet_delivered(self, to_email: str, client_name: str, packet_label: str, pdf_url: Optional[str] = None) -> bool:
        """Sent when staff mark a packet SENT."""
        subject = f"Your {packet_label} Plan is Ready!"
        url = self.dashboard_url()
        html_parts = [
            f"<h2>Hi {client_name or 'there'},</h2>",
            f"<p>Your {packet_label.lower()} plan has been reviewed by your coach and is ready to go.</p>",
            f'<p><a href="{url}">Open My Dashboard</a></p>',
        ]
        if pdf_url:
            html_parts.append(f'<p><a href="{pdf_url}">Download the PDF</a></p>')
        html_parts.append(f"<p>{BRAND_NAME}</p>")
        text = (
            f"Hi {client_name or 'there'},\n\n"
            f"Your {packet_label.lower()} plan has been reviewed by your coach and is ready to go.\n"
            f"Dashboard: {url}\n\n{BRAND_NAME}"
        )
        return self.send_email(to_email, subject, "\n".join(html_parts), text)

    def send_packet_failure_alert(
        self,
        recipients: List[str],
        packet_id: str,
        client_name: str,
        client_email: str,
        packet_label: str,
        error: str,
        retry_count: int,
    ) -> bool:
        subject = f"Packet Generation Failed - {packet_label} for {client_name}"
        admin_url = f"{self.web_app_base_url}/admin/packets/{packet_id}"
        html = "\n".join([
            "<h2>Packet generation failed</h2>",
            "<ul>",
            f"<li><strong>Client:</strong> {client_name} ({client_email})</li>",
            f"<li><strong>Packet:</strong> {packet_label} ({packet_id})</li>",
            f"<li><strong>Failures:</strong> {retry_count}</li>",
            f"<li><strong>Last error:</strong> {error}</li>",
            "</ul>",
            f'<p><a href="{admin_url}">Review in the admin panel</a></p>',
        ])
        text = (
            f"Packet generation failed\n\n"
            f"Client: {client_name} ({client_email})\n"
            f"Packet: {packet_label} ({packet_id})\n"
            f"Failures: {retry_count}\n"
            f"Last error: {error}\n\n"
            f"Review: {admin_url}"
        )
        return self.send_to_all(recipients, subject, html, text)

    def send_intake_complete_alert(
        self,
        recipients: List[str],
        client_name: str,
        client_email: str,
        client_type: str,
        packet_labels: List[str],
    ) -> bool:
        subject = f"New Intake Completed - {client_name or client_email}"
        packets = ", ".join(packet_labels) or "none"
        html = "\n".join([
            "<h2>New intake submitted</h2>",
            "<ul>",
            f"<li><strong>Client:</strong> {client_name} ({client_email})</li>",
            f"<li><strong>Program:</strong> {client_type}</li>",
            f"<li><strong>Packets queued:</strong> {packets}</li>",
            "</ul>",
        ])
        text = (
            f"New intake submitted\n\n"
            f"Client: {client_name} ({client_email})\n"
            f"Program: {client_type}\n"
            f"Packets queued: {packets}"
        )
        return self.send_to_all(recipients, subject, html, text)
