"""Single-use OTP challenges bound to an application and a purpose.

A challenge holds its own random secret (encrypted at rest); the six digit
code handed to the notifier is derived from it with HOTP at counter 0, so the
code is never stored or returned to the caller. Only the non-secret
``reference`` and expiry leave this module.
"""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pyotp
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.core.settings import settings
from permitflow.models.download_access_token import DownloadAccessToken
from permitflow.models.otp_challenge import OtpChallenge
from permitflow.services.audit import record_audit_log
from permitflow.services.errors import InvalidOrExpiredOtp, ValidationError
from permitflow.services.notifier import OtpDispatch, OtpNotifier, get_notifier

logger = logging.getLogger(__name__)

OTP_DIGITS = 6
_CODE_PATTERN = re.compile(r"^\d{6}$")


@dataclass(frozen=True)
class IssuedChallenge:
    reference: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def derive_code(secret: str) -> str:
    return pyotp.HOTP(secret, digits=OTP_DIGITS).at(0)


def normalize_code(code: str | None) -> str:
    normalized = (code or "").strip()
    if not _CODE_PATTERN.match(normalized):
        raise ValidationError("OTP must be a 6-digit code")
    return normalized


def _generate_reference() -> str:
    return secrets.token_hex(6).upper()


def _live_conditions(application_id, purpose: str) -> list:
    return [
        OtpChallenge.application_id == application_id,
        OtpChallenge.purpose == purpose,
        OtpChallenge.consumed_at.is_(None),
        OtpChallenge.invalidated_at.is_(None),
    ]


async def find_live(db: AsyncSession, application_id, purpose: str) -> OtpChallenge | None:
    stmt = (
        select(OtpChallenge)
        .where(*_live_conditions(application_id, purpose))
        .order_by(OtpChallenge.created_at.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def invalidate_live(
    db: AsyncSession,
    application_id,
    *,
    purpose: str | None = None,
    purpose_prefix: str | None = None,
    now: datetime | None = None,
) -> None:
    conditions = [
        OtpChallenge.application_id == application_id,
        OtpChallenge.consumed_at.is_(None),
        OtpChallenge.invalidated_at.is_(None),
    ]
    if purpose is not None:
        conditions.append(OtpChallenge.purpose == purpose)
    if purpose_prefix is not None:
        conditions.append(OtpChallenge.purpose.startswith(purpose_prefix))
    stmt = (
        update(OtpChallenge)
        .where(*conditions)
        .values(invalidated_at=now or _utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.execute(stmt)


async def issue(
    db: AsyncSession,
    *,
    application_id,
    purpose: str,
    ttl_minutes: int,
    stage: int | None = None,
    recipient: str | None = None,
    actor: str = "system",
    notifier: OtpNotifier | None = None,
    now: datetime | None = None,
) -> IssuedChallenge:
    """Create a fresh challenge, retiring any live one for the same purpose.

    The challenge is committed before the code is dispatched.
    """
    now = now or _utcnow()
    await invalidate_live(db, application_id, purpose=purpose, now=now)

    secret = pyotp.random_base32()
    challenge = OtpChallenge(
        application_id=application_id,
        purpose=purpose,
        stage=stage,
        reference=_generate_reference(),
        secret=secret,
        expires_at=now + timedelta(minutes=ttl_minutes),
        failed_attempts=0,
    )
    db.add(challenge)
    record_audit_log(
        db,
        actor=actor,
        action="otp.issued",
        resource_type="permit_application",
        resource_id=str(application_id),
        new_value={"purpose": purpose, "stage": stage, "reference": challenge.reference},
    )
    await db.commit()

    await (notifier or get_notifier()).dispatch(
        OtpDispatch(
            application_id=str(application_id),
            purpose=purpose,
            reference=challenge.reference,
            code=derive_code(secret),
            expires_at=challenge.expires_at,
            recipient=recipient,
        )
    )
    return IssuedChallenge(reference=challenge.reference, expires_at=challenge.expires_at)


async def _record_failed_attempt(db: AsyncSession, challenge: OtpChallenge, now: datetime) -> None:
    attempts = (challenge.failed_attempts or 0) + 1
    challenge.failed_attempts = attempts
    if attempts >= settings.otp_max_failed_attempts:
        challenge.invalidated_at = now
        logger.warning(
            "OTP challenge locked after %s failed attempts reference=%s",
            attempts,
            challenge.reference,
            extra={"application_id": str(challenge.application_id), "purpose": challenge.purpose},
        )
    db.add(challenge)
    # the attempt counter must survive the rollback of the surrounding action
    await db.commit()


async def consume(
    db: AsyncSession,
    challenge: OtpChallenge | None,
    code: str,
    *,
    now: datetime | None = None,
) -> OtpChallenge:
    """Check ``code`` against ``challenge`` and mark it consumed exactly once.

    Every failure surfaces as :class:`InvalidOrExpiredOtp`.
    """
    now = now or _utcnow()
    normalized = normalize_code(code)
    if (
        challenge is None
        or challenge.consumed_at is not None
        or challenge.invalidated_at is not None
        or challenge.expires_at <= now
    ):
        raise InvalidOrExpiredOtp()

    if not pyotp.HOTP(challenge.secret, digits=OTP_DIGITS).verify(normalized, 0):
        await _record_failed_attempt(db, challenge, now)
        raise InvalidOrExpiredOtp()

    stmt = (
        update(OtpChallenge)
        .where(
            OtpChallenge.id == challenge.id,
            OtpChallenge.consumed_at.is_(None),
            OtpChallenge.invalidated_at.is_(None),
            OtpChallenge.expires_at > now,
        )
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        raise InvalidOrExpiredOtp()
    challenge.consumed_at = now
    return challenge


async def verify(
    db: AsyncSession,
    *,
    application_id,
    purpose: str,
    code: str,
    now: datetime | None = None,
) -> OtpChallenge:
    normalized = normalize_code(code)
    challenge = await find_live(db, application_id, purpose)
    return await consume(db, challenge, normalized, now=now)


async def count_issued_since(
    db: AsyncSession,
    application_id,
    purpose: str,
    since: datetime,
) -> int:
    stmt = select(func.count(OtpChallenge.id)).where(
        OtpChallenge.application_id == application_id,
        OtpChallenge.purpose == purpose,
        OtpChallenge.created_at >= since,
    )
    return int((await db.execute(stmt)).scalar_one_or_none() or 0)


async def purge_expired(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    retention: timedelta = timedelta(days=2),
) -> tuple[int, int]:
    """Delete challenges and download tokens that can no longer be used.

    Challenges are kept for ``retention`` after expiry so the daily request
    cap can still count them. Returns ``(challenges, tokens)`` removed.
    """
    now = now or _utcnow()
    challenges = await db.execute(
        delete(OtpChallenge).where(OtpChallenge.expires_at < now - retention)
    )
    tokens = await db.execute(
        delete(DownloadAccessToken).where(DownloadAccessToken.expires_at < now)
    )
    await db.commit()
    removed = (challenges.rowcount or 0, tokens.rowcount or 0)
    logger.info("Purged %s OTP challenges and %s download tokens", *removed)
    return removed
