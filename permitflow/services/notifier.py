"""Out-of-band OTP dispatch.

The workflow only needs to know that a code was handed to a delivery channel;
SMS/e-mail transport lives behind these notifiers.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache

import httpx

from permitflow.core.settings import settings
from permitflow.services.errors import OtpDispatchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtpDispatch:
    application_id: str
    purpose: str
    reference: str
    code: str
    expires_at: datetime
    recipient: str | None = None


class OtpNotifier(ABC):
    @abstractmethod
    async def dispatch(self, message: OtpDispatch) -> None:
        pass


class LoggingOtpNotifier(OtpNotifier):
    """Records that a code was dispatched. The code itself is never logged."""

    async def dispatch(self, message: OtpDispatch) -> None:
        logger.info(
            "OTP dispatched reference=%s expires_at=%s",
            message.reference,
            message.expires_at.isoformat(),
            extra={"application_id": message.application_id, "purpose": message.purpose},
        )


class WebhookOtpNotifier(OtpNotifier):
    def __init__(self, url: str, *, timeout: float = 5.0) -> None:
        self.url = url
        self.timeout = timeout

    async def dispatch(self, message: OtpDispatch) -> None:
        payload = {
            "application_id": message.application_id,
            "purpose": message.purpose,
            "reference": message.reference,
            "code": message.code,
            "expires_at": message.expires_at.isoformat(),
            "recipient": message.recipient,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "OTP webhook dispatch failed reference=%s error=%s",
                message.reference,
                exc.__class__.__name__,
            )
            raise OtpDispatchError() from exc


@lru_cache(maxsize=1)
def get_notifier() -> OtpNotifier:
    if settings.otp_notifier == "webhook":
        if not settings.otp_webhook_url:
            raise ValueError("OTP_WEBHOOK_URL is not configured")
        return WebhookOtpNotifier(
            settings.otp_webhook_url,
            timeout=settings.otp_webhook_timeout_seconds,
        )
    return LoggingOtpNotifier()
