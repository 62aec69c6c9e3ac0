"""
Email notification channel using the Resend API.

Delivers the daily stats report with:
- Resend API integration
- API key management via environment variables
- A test email for verifying the configuration
"""

import asyncio
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp
import structlog

from ...exceptions import NotificationError
from ...storage.interfaces import NotificationSink

logger = structlog.get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class EmailNotificationChannel(NotificationSink):
    """
    Email notification channel using the Resend API.

    Raises NotificationError when the API rejects a message or cannot be
    reached; callers decide whether that is fatal.
    """

    def __init__(self,
                 api_key: Optional[str] = None,
                 from_email: Optional[str] = None,
                 api_url: str = RESEND_API_URL,
                 timeout_seconds: float = 30.0):
        """
        Initialize email notification channel.

        Args:
            api_key: Resend API key (defaults to RESEND_API_KEY env var)
            from_email: Sender address (defaults to FROM_EMAIL env var)
            api_url: Resend endpoint for sending emails
            timeout_seconds: Total request timeout
        """
        self.api_key = api_key or os.getenv('RESEND_API_KEY')
        if not self.api_key:
            raise ValueError("RESEND_API_KEY environment variable is required")

        self.from_email = from_email or os.getenv('FROM_EMAIL', 'noreply@example.com')
        self.api_url = api_url
        self.timeout_seconds = timeout_seconds

        logger.info("Email notification channel initialized", from_email=self.from_email)

    async def send(self, subject: str, html: str, text: str, recipient: str) -> bool:
        """
        Send an email via Resend.

        Returns:
            True once the API has accepted the message.
        """
        email_data = {
            'from': self.from_email,
            'to': [recipient],
            'subject': subject,
            'html': html,
            'text': text,
        }
        await self._post(email_data)
        logger.info("Email sent successfully", recipient=recipient, subject=subject)
        return True

    async def _post(self, payload: Dict[str, Any]) -> None:
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json'
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.api_url,
                    headers=headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
                ) as response:
                    if response.status not in (200, 201):
                        error_text = await response.text()
                        logger.error("Failed to send email",
                                     status_code=response.status,
                                     error=error_text)
                        raise NotificationError(
                            f"Resend API returned {response.status}: {error_text}",
                            status_code=response.status,
                        )
        except asyncio.TimeoutError as e:
            logger.error("Email notification timeout", timeout_seconds=self.timeout_seconds)
            raise NotificationError("Timed out sending email") from e
        except aiohttp.ClientError as e:
            logger.error("Error sending email", error=str(e))
            raise NotificationError(f"Could not reach email API: {e}") from e

    async def send_test_email(self, recipient: str) -> bool:
        """
        Send a test email to verify configuration.

        Args:
            recipient: Email address to send test to

        Returns:
            True if successful, False otherwise
        """
        sent_at = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        html = f"""
        <html>
        <body style="font-family: Arial, sans-serif; padding: 20px;">
            <h2>✅ Webhook System Email Test</h2>
            <p>This is a test email to verify that the daily stats report can be delivered.</p>
            <p><strong>Time:</strong> {sent_at}</p>
        </body>
        </html>
        """
        text = (
            "Webhook System Email Test\n\n"
            "This is a test email to verify that the daily stats report can be delivered.\n\n"
            f"Time: {sent_at}\n"
        )

        try:
            return await self.send("Webhook System Email Test", html, text, recipient)
        except NotificationError as e:
            logger.error("Failed to send test email", recipient=recipient, error=str(e))
            return False
