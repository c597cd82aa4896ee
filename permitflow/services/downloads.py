"""Public, OTP-verified access to an issued application's documents.

The broker knows applicants only by application number and e-mail. Every
refusal before a token exists is generic so callers cannot learn which of the
two fields was wrong, or whether the certificate has been issued yet.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.core.settings import settings
from permitflow.models.download_access_token import DownloadAccessToken
from permitflow.models.permit_application import PermitApplication
from permitflow.services import documents, otp
from permitflow.services.audit import record_audit_log
from permitflow.services.errors import (
    DocumentNotAvailable,
    DownloadAccessDenied,
    InvalidOrExpiredOtp,
    OtpRequestLimitExceeded,
    TokenExpired,
    TokenNotFound,
    ValidationError,
)
from permitflow.services.stages import DOWNLOAD_PURPOSE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessGrant:
    download_token: str
    applicant_name: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token() -> str:
    return secrets.token_urlsafe(32)


async def _find_application(
    db: AsyncSession, application_number: str, *, for_update: bool = False
) -> PermitApplication | None:
    number = (application_number or "").strip()
    if not number:
        return None
    stmt = select(PermitApplication).where(
        func.upper(PermitApplication.application_number) == number.upper()
    )
    if for_update:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalar_one_or_none()


def _email_matches(application: PermitApplication, email: str) -> bool:
    supplied = (email or "").strip().lower()
    return bool(supplied) and secrets.compare_digest(
        supplied.encode("utf-8"),
        (application.applicant_email or "").strip().lower().encode("utf-8"),
    )


async def request_access(
    db: AsyncSession,
    *,
    application_number: str,
    email: str,
    now: datetime | None = None,
    notifier=None,
) -> otp.IssuedChallenge:
    now = now or _utcnow()
    # serializes concurrent requests for one application: one live challenge, one daily count
    application = await _find_application(db, application_number, for_update=True)
    if (
        application is None
        or not _email_matches(application, email)
        or not application.is_certificate_issued
    ):
        await db.rollback()
        logger.info("Download access refused for unmatched or unissued application")
        raise DownloadAccessDenied()

    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    issued_today = await otp.count_issued_since(db, application.id, DOWNLOAD_PURPOSE, day_start)
    if issued_today >= settings.download_max_daily_otp_requests:
        await db.rollback()
        raise OtpRequestLimitExceeded()

    return await otp.issue(
        db,
        application_id=application.id,
        purpose=DOWNLOAD_PURPOSE,
        recipient=application.applicant_email,
        actor="applicant",
        ttl_minutes=settings.download_otp_ttl_minutes,
        notifier=notifier,
        now=now,
    )


async def verify_access(
    db: AsyncSession,
    *,
    application_number: str,
    otp_code: str,
    now: datetime | None = None,
) -> AccessGrant:
    code = otp.normalize_code(otp_code)
    now = now or _utcnow()
    application = await _find_application(db, application_number)
    if application is None or not application.is_certificate_issued:
        raise InvalidOrExpiredOtp()

    await otp.verify(db, application_id=application.id, purpose=DOWNLOAD_PURPOSE, code=code, now=now)

    raw_token = generate_token()
    token = DownloadAccessToken(
        application_id=application.id,
        token_hash=hash_token(raw_token),
        applicant_name=application.applicant_name,
        issued_at=now,
        expires_at=now + timedelta(hours=settings.download_token_ttl_hours),
    )
    db.add(token)
    record_audit_log(
        db,
        actor="applicant",
        action="download.token_issued",
        resource_type="permit_application",
        resource_id=str(application.id),
        new_value={"expires_at": token.expires_at},
    )
    await db.commit()
    return AccessGrant(
        download_token=raw_token,
        applicant_name=application.applicant_name,
        expires_at=token.expires_at,
    )


def _audit_fetch(
    db: AsyncSession,
    application_id,
    *,
    kind: str,
    success: bool,
    reason: str | None,
    client_ip: str | None,
    user_agent: str | None,
) -> None:
    record_audit_log(
        db,
        actor="applicant",
        action="download.document_fetched" if success else "download.document_refused",
        resource_type="permit_application",
        resource_id=str(application_id),
        new_value={
            "kind": kind,
            "success": success,
            "reason": reason,
            "ip_address": client_ip,
            "user_agent": (user_agent or "")[:255] or None,
        },
    )


async def fetch_document(
    db: AsyncSession,
    *,
    token: str,
    kind: str,
    now: datetime | None = None,
    client_ip: str | None = None,
    user_agent: str | None = None,
    adapter=None,
) -> documents.DocumentPayload:
    document_kind = documents.normalize_kind(kind)
    if document_kind is None:
        raise ValidationError("Unknown document kind")
    now = now or _utcnow()

    stmt = select(DownloadAccessToken).where(DownloadAccessToken.token_hash == hash_token(token or ""))
    record = (await db.execute(stmt)).scalar_one_or_none()
    if record is None:
        raise TokenNotFound()

    audit = dict(kind=document_kind, client_ip=client_ip, user_agent=user_agent)
    if record.expires_at <= now:
        _audit_fetch(db, record.application_id, success=False, reason="token_expired", **audit)
        await db.commit()
        raise TokenExpired()

    application = await db.get(PermitApplication, record.application_id)
    if application is None or not application.is_certificate_issued:
        raise TokenNotFound()

    document = await documents.get_document(db, application.id, document_kind)
    try:
        if document is None:
            raise FileNotFoundError(document_kind)
        payload = documents.read_document(document, adapter=adapter)
    except FileNotFoundError as exc:
        _audit_fetch(db, application.id, success=False, reason="document_missing", **audit)
        await db.commit()
        raise DocumentNotAvailable() from exc

    _audit_fetch(db, application.id, success=True, reason=None, **audit)
    await db.commit()
    return payload
