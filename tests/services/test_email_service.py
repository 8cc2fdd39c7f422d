"""
Tests for provisioning e-mail notifications
"""

from unittest.mock import MagicMock, patch

from app.services.email_service import EmailService


class TestEmailService:

    async def test_disabled_without_smtp_host(self):
        service = EmailService(host="", admin_email="ops@practice.example")

        assert service.enabled is False
        assert await service.send_admin_alert("Calendar setup failed", "details") is False

    async def test_admin_alert_skipped_without_address(self):
        service = EmailService(host="smtp.practice.example", admin_email="")

        with patch("app.services.email_service.smtplib.SMTP") as smtp:
            assert await service.send_admin_alert("Batch calendar setup summary", "Failed: 1") is False

        smtp.assert_not_called()

    async def test_welcome_is_sent_over_smtp(self):
        service = EmailService(host="smtp.practice.example", admin_email="")
        server = MagicMock()

        with patch("app.services.email_service.smtplib.SMTP") as smtp:
            smtp.return_value.__enter__.return_value = server
            sent = await service.send_calendar_welcome("p1@practice.example", "Ana Lopez")

        assert sent is True
        message = server.send_message.call_args.args[0]
        assert message["To"] == "p1@practice.example"
        assert message["Subject"] == "Your practice calendar is ready"

    async def test_smtp_failure_returns_false(self):
        service = EmailService(host="smtp.practice.example", admin_email="")

        with patch("app.services.email_service.smtplib.SMTP", side_effect=OSError("refused")):
            assert await service.send_email("p1@practice.example", "Subject", "<p>hi</p>") is False
