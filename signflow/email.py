"""
Email module using Resend for sending transactional emails.

Includes reliable delivery with retry logic. Callers treat delivery as
best effort: a failed send is reported in the EmailResult, never raised.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import httpx

from signflow.config import Settings
from signflow.utils.logging import fingerprint

logger = logging.getLogger(__name__)


# Retry configuration
MAX_RETRY_ATTEMPTS = 3
RETRY_DELAYS_SECONDS = [0, 2, 4]  # immediate, 2s, 4s


class EmailDeliveryStatus(str, Enum):
    """Email delivery status for tracking."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"  # Email not configured


@dataclass
class EmailAttempt:
    """Record of a single email send attempt."""
    attempt_number: int
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


@dataclass
class EmailResult:
    """Result of email send operation with delivery tracking."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    delivery_status: EmailDeliveryStatus = EmailDeliveryStatus.PENDING
    attempts: List[EmailAttempt] = field(default_factory=list)
    total_attempts: int = 0

    @property
    def is_delivered(self) -> bool:
        return self.delivery_status == EmailDeliveryStatus.SENT


class EmailSender(ABC):

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
    ) -> EmailResult: ...

    def is_configured(self) -> bool:
        return True


class EmailService(EmailSender):
    """Email service using the Resend HTTP API."""

    RESEND_API_URL = "https://api.resend.com/emails"

    def __init__(self, settings: Settings):
        self.settings = settings

    def is_configured(self) -> bool:
        """Check if email service is properly configured."""
        return bool(self.settings.resend_api_key)

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
    ) -> EmailResult:
        """
        Send email via Resend HTTP API with retry logic.

        3 attempts with backoff (0s, 2s, 4s); every attempt is recorded
        in the returned EmailResult.
        """
        email_fp = fingerprint(to_email, "email_")

        if not self.is_configured():
            logger.warning(f"Resend API key not configured, skipping email to {email_fp}")
            return EmailResult(
                success=False,
                error="Email service not configured",
                delivery_status=EmailDeliveryStatus.SKIPPED,
            )

        payload = {
            "from": f"{self.settings.resend_from_name} <{self.settings.resend_from_email}>",
            "to": [to_email],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text

        headers = {
            "Authorization": f"Bearer {self.settings.resend_api_key}",
            "Content-Type": "application/json",
        }

        attempts: List[EmailAttempt] = []
        last_error: Optional[str] = None

        for attempt_num in range(1, MAX_RETRY_ATTEMPTS + 1):
            if attempt_num > 1:
                delay = RETRY_DELAYS_SECONDS[min(attempt_num - 1, len(RETRY_DELAYS_SECONDS) - 1)]
                logger.info(f"Email retry {attempt_num}/{MAX_RETRY_ATTEMPTS} to {email_fp}, waiting {delay}s")
                await asyncio.sleep(delay)

            try:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.RESEND_API_URL,
                        json=payload,
                        headers=headers,
                        timeout=30.0,
                    )

                if response.status_code in (200, 201):
                    message_id = response.json().get("id")
                    attempts.append(EmailAttempt(
                        attempt_number=attempt_num,
                        success=True,
                        message_id=message_id,
                    ))
                    logger.info(
                        f"Email sent to {email_fp} on attempt {attempt_num}, "
                        f"message_id: {message_id}"
                    )
                    return EmailResult(
                        success=True,
                        message_id=message_id,
                        delivery_status=EmailDeliveryStatus.SENT,
                        attempts=attempts,
                        total_attempts=attempt_num,
                    )

                last_error = f"API error {response.status_code}: {response.text[:200]}"
                attempts.append(EmailAttempt(
                    attempt_number=attempt_num,
                    success=False,
                    error=last_error,
                ))
                logger.warning(
                    f"Email attempt {attempt_num}/{MAX_RETRY_ATTEMPTS} to {email_fp} "
                    f"failed: {last_error}"
                )

            except httpx.TimeoutException as e:
                last_error = f"Timeout: {e}"
                attempts.append(EmailAttempt(
                    attempt_number=attempt_num,
                    success=False,
                    error=last_error,
                ))
                logger.warning(f"Email attempt {attempt_num}/{MAX_RETRY_ATTEMPTS} to {email_fp} timed out")

            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
                attempts.append(EmailAttempt(
                    attempt_number=attempt_num,
                    success=False,
                    error=last_error,
                ))
                logger.warning(
                    f"Email attempt {attempt_num}/{MAX_RETRY_ATTEMPTS} to {email_fp} "
                    f"failed: {last_error}"
                )

        logger.error(
            f"Email to {email_fp} failed after {MAX_RETRY_ATTEMPTS} attempts. "
            f"Last error: {last_error}"
        )

        return EmailResult(
            success=False,
            error=last_error,
            delivery_status=EmailDeliveryStatus.FAILED,
            attempts=attempts,
            total_attempts=MAX_RETRY_ATTEMPTS,
        )


__all__ = [
    "EmailService",
    "EmailSender",
    "EmailResult",
    "EmailAttempt",
    "EmailDeliveryStatus",
    "MAX_RETRY_ATTEMPTS",
    "RETRY_DELAYS_SECONDS",
]
