"""Tests for SES email delivery."""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from services.email_service import EmailService


@pytest.fixture
def ses_client():
    client = MagicMock()
    client.send_raw_email.return_value = {"MessageId": "msg-42"}
    return client


class TestEmailService:
    def test_unconfigured_without_credentials(self, monkeypatch):
        monkeypatch.delenv("AWS_ACCESS_KEY_ID", raising=False)
        monkeypatch.delenv("AWS_SECRET_ACCESS_KEY", raising=False)

        assert EmailService().is_configured() is False

    @pytest.mark.asyncio
    async def test_send_without_client(self, monkeypatch):
        monkeypatch.delenv("AWS_ACCESS_KEY_ID", raising=False)

        result = await EmailService().send_email("to@example.com", "Subject", "Body")

        assert result == {"success": False, "error": "SES client not configured"}

    def test_build_message(self, ses_client):
        service = EmailService(ses_client=ses_client, default_sender="from@example.com")

        message = service.build_message(
            "to@example.com",
            "Loss Mit - 001 - DOE",
            "Body text",
            attachments=[{"filename": "HARDSHIP.pdf", "content": b"%PDF", "content_type": "application/pdf"}],
            cc=["cc@example.com"],
            headers={"X-Idempotency-Key": "abc"}
        )

        assert message["From"] == "from@example.com"
        assert message["Cc"] == "cc@example.com"
        assert message["X-Idempotency-Key"] == "abc"
        parts = message.get_payload()
        assert len(parts) == 2
        assert parts[1].get_filename() == "HARDSHIP.pdf"

    @pytest.mark.asyncio
    async def test_send_email(self, ses_client):
        service = EmailService(ses_client=ses_client)

        result = await service.send_email("to@example.com", "Subject", "Body", cc=["cc@example.com"], sender="me@example.com")

        assert result == {"success": True, "message_id": "msg-42"}
        kwargs = ses_client.send_raw_email.call_args.kwargs
        assert kwargs["Source"] == "me@example.com"
        assert kwargs["Destinations"] == ["to@example.com", "cc@example.com"]

    @pytest.mark.asyncio
    async def test_send_email_client_error(self, ses_client):
        ses_client.send_raw_email.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "Maximum sending rate exceeded"}},
            "SendRawEmail"
        )

        result = await EmailService(ses_client=ses_client).send_email("to@example.com", "Subject", "Body")

        assert result["success"] is False
        assert result["error"] == "SES send failed: Maximum sending rate exceeded"

    @pytest.mark.asyncio
    async def test_check_connection(self, ses_client):
        ses_client.get_send_quota.return_value = {"Max24HourSend": 200.0, "SentLast24Hours": 12.0}

        result = await EmailService(ses_client=ses_client).check_connection()

        assert result == {"success": True, "max_24_hour_send": 200.0, "sent_last_24_hours": 12.0}
