"""
Email Service
Sends servicer submissions as raw MIME email through AWS SES
"""

import os
import asyncio
import boto3
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Dict, Any, List
from botocore.exceptions import ClientError
from utils.logger import get_logger

logger = get_logger(__name__)


class EmailService:
    """Service for sending submission emails via SES"""

    def __init__(self, ses_client=None, default_sender: str = None):
        self.aws_access_key_id = os.getenv("AWS_ACCESS_KEY_ID")
        self.aws_secret_access_key = os.getenv("AWS_SECRET_ACCESS_KEY")
        self.aws_region = os.getenv("AWS_REGION", "us-east-1")
        self.default_sender = default_sender or os.getenv("SES_SENDER_EMAIL", "submissions@realign.com")

        self.ses_client = ses_client
        if self.ses_client is None:
            if all([self.aws_access_key_id, self.aws_secret_access_key]):
                try:
                    self.ses_client = boto3.client(
                        'ses',
                        aws_access_key_id=self.aws_access_key_id,
                        aws_secret_access_key=self.aws_secret_access_key,
                        region_name=self.aws_region
                    )
                    logger.info(f"SES client initialized in region: {self.aws_region}")
                except Exception as e:
                    logger.error(f"Failed to initialize SES client: {str(e)}")
            else:
                logger.warning("AWS credentials not configured. Email submissions will fail.")

    def is_configured(self) -> bool:
        return self.ses_client is not None

    def build_message(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: List[Dict[str, Any]] = None,
        cc: List[str] = None,
        headers: Dict[str, str] = None,
        sender: str = None
    ) -> MIMEMultipart:
        """
        Build a multipart message

        Args:
            attachments: Dicts with filename, content (bytes) and content_type
        """
        message = MIMEMultipart()
        message['Subject'] = subject
        message['From'] = sender or self.default_sender
        message['To'] = to
        if cc:
            message['Cc'] = ", ".join(cc)
        for name, value in (headers or {}).items():
            message[name] = value

        message.attach(MIMEText(body, 'plain', 'utf-8'))

        for attachment in attachments or []:
            content_type = attachment.get('content_type') or 'application/pdf'
            subtype = content_type.split('/', 1)[-1]
            part = MIMEApplication(attachment.get('content') or b"", _subtype=subtype)
            part.add_header('Content-Disposition', 'attachment', filename=attachment['filename'])
            message.attach(part)

        return message

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: List[Dict[str, Any]] = None,
        cc: List[str] = None,
        headers: Dict[str, str] = None,
        sender: str = None
    ) -> Dict[str, Any]:
        """
        Send a raw email with attachments

        Returns:
            Dict with success and the SES message id or an error
        """
        if not self.ses_client:
            return {
                "success": False,
                "error": "SES client not configured"
            }

        try:
            message = self.build_message(to, subject, body, attachments, cc, headers, sender)
            destinations = [to] + list(cc or [])

            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self.ses_client.send_raw_email(
                    Source=message['From'],
                    Destinations=destinations,
                    RawMessage={'Data': message.as_string()}
                )
            )

            message_id = response.get('MessageId')
            logger.info(f"Email sent to {to}: {message_id}")

            return {
                "success": True,
                "message_id": message_id
            }

        except ClientError as e:
            error_message = e.response.get('Error', {}).get('Message', str(e))
            logger.error(f"SES send error: {error_message}")
            return {
                "success": False,
                "error": f"SES send failed: {error_message}"
            }
        except Exception as e:
            logger.error(f"Email send error: {str(e)}")
            return {
                "success": False,
                "error": str(e)
            }

    async def check_connection(self) -> Dict[str, Any]:
        """Check that SES is reachable with the configured credentials"""
        if not self.ses_client:
            return {
                "success": False,
                "error": "SES client not configured"
            }

        try:
            loop = asyncio.get_running_loop()
            quota = await loop.run_in_executor(None, self.ses_client.get_send_quota)
            return {
                "success": True,
                "max_24_hour_send": quota.get('Max24HourSend'),
                "sent_last_24_hours": quota.get('SentLast24Hours')
            }
        except ClientError as e:
            logger.error(f"SES connection check error: {str(e)}")
            return {
                "success": False,
                "error": str(e)
            }
