"""Email service for calendar provisioning notifications."""
import smtplib
import logging
import asyncio
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional
from app import config
from app.utils.logging_config import mask_email

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending emails via SMTP. All sends are best-effort and return a success flag."""

    def __init__(
        self,
        host: Optional[str] = None,
        admin_email: Optional[str] = None,
    ):
        self.host = host if host is not None else config.SMTP_HOST
        self.port = config.SMTP_PORT
        self.username = config.SMTP_USERNAME
        self.password = config.SMTP_PASSWORD
        self.from_email = config.SMTP_FROM_EMAIL
        self.from_name = config.SMTP_FROM_NAME
        self.use_tls = config.SMTP_USE_TLS
        self.admin_email = admin_email if admin_email is not None else config.ADMIN_NOTIFICATION_EMAIL
        self.support_email = config.SUPPORT_EMAIL

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    def send_email_sync(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """Send email via SMTP (synchronous, use via asyncio.to_thread)."""
        if not self.enabled:
            logger.info(f"SMTP not configured, skipping email to {mask_email(to_email)}: {subject}")
            return False

        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            if text_content:
                msg.attach(MIMEText(text_content, 'plain'))
            msg.attach(MIMEText(html_content, 'html'))

            with smtplib.SMTP(self.host, self.port) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)

            logger.info(f"Email sent to {mask_email(to_email)}")
            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {mask_email(to_email)}: {e}")
            return False

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """Send email via SMTP (async wrapper to avoid blocking event loop)."""
        return await asyncio.to_thread(
            self.send_email_sync,
            to_email,
            subject,
            html_content,
            text_content
        )

    async def send_calendar_welcome(self, to_email: str, practitioner_name: str) -> bool:
        """Tell a practitioner their practice calendar is ready and shared with them."""
        subject = "Your practice calendar is ready"

        html_content = f"""
        <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2>Hi {practitioner_name}, your calendar is ready</h2>
            <p>A dedicated practice calendar has been created for you and shared with this address.</p>
            <p>Appointments booked with you will appear there automatically. Events you add yourself
               will block that time for new bookings.</p>
            <p style="color: #666; font-size: 14px;">
                Questions? Contact us at {self.support_email}.
            </p>
        </body>
        </html>
        """

        text_content = f"""
        Hi {practitioner_name}, your calendar is ready

        A dedicated practice calendar has been created for you and shared with this address.
        Appointments booked with you will appear there automatically.

        Questions? Contact us at {self.support_email}.
        """

        return await self.send_email(to_email, subject, html_content, text_content)

    async def send_admin_alert(self, subject: str, body: str) -> bool:
        """Send a plain notification to the configured admin address."""
        if not self.admin_email:
            logger.info(f"No admin notification address configured, skipping: {subject}")
            return False

        html_content = f"""
        <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h3>{subject}</h3>
            <pre style="font-size: 13px;">{body}</pre>
        </body>
        </html>
        """
        return await self.send_email(self.admin_email, f"[Calendar] {subject}", html_content, body)
