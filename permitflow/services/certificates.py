"""Certificate finalization for the two post-payment signing stages."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.core.settings import settings
from permitflow.models.approval_entry import ApprovalEntry
from permitflow.models.permit_application import PermitApplication
from permitflow.services import documents, signer
from permitflow.services.errors import SignatureInvalid, ValidationError
from permitflow.services.stages import Stage

logger = logging.getLogger(__name__)

SIGNING_STAGES = (Stage.EXECUTIVE_ENGINEER_SIGN_PENDING, Stage.CITY_ENGINEER_SIGN_PENDING)


@dataclass(frozen=True)
class SigningStatistics:
    stage: Stage
    pending_count: int
    completed_count: int
    today_processed: int
    week_processed: int
    month_processed: int


def certificate_number(application: PermitApplication, issued_at: datetime) -> str:
    """For example ``PMC/ARC2026030001/2026-2029``."""
    valid_to = issued_at.year + settings.certificate_validity_years
    return (
        f"{settings.certificate_number_prefix}/{application.application_number}/"
        f"{issued_at.year}-{valid_to}"
    )


def stamp_signature(application: PermitApplication, signed_stage: Stage, now: datetime) -> None:
    if signed_stage == Stage.EXECUTIVE_ENGINEER_SIGN_PENDING:
        application.ee2_signed_at = now
    elif signed_stage == Stage.CITY_ENGINEER_SIGN_PENDING:
        application.ce2_signed_at = now
        application.certificate_issued_at = now
        application.certificate_number = certificate_number(application, now)
        # valid through the end of the final calendar year
        application.certificate_valid_until = date(now.year + settings.certificate_validity_years, 12, 31)


def verify_chain(application: PermitApplication, chain: list[ApprovalEntry]) -> None:
    for entry in chain:
        valid = bool(entry.signature_digest) and signer.verify_stage_signature(
            entry.signature_digest,
            application.application_number,
            entry.stage,
            entry.actor_role,
            entry.actor_name,
            entry.signed_at,
        )
        if not valid:
            logger.error(
                "Approval signature mismatch at stage %s",
                entry.stage,
                extra={"application_id": str(application.id), "stage": entry.stage},
            )
            raise SignatureInvalid(details={"stage": entry.stage})


async def issue_documents(
    db: AsyncSession,
    application: PermitApplication,
    reached_stage: Stage,
    *,
    adapter=None,
) -> None:
    """Render whatever document the stage just reached makes available."""
    if reached_stage == Stage.PAYMENT_PENDING:
        chain = await documents.load_chain(db, application)
        content = documents.render_recommendation_form(application, chain)
        await documents.store_document(db, application, "recommendation_form", content, adapter=adapter)
    elif reached_stage == Stage.CLERK_PENDING:
        content = documents.render_challan(application)
        await documents.store_document(db, application, "challan", content, adapter=adapter)
    elif reached_stage == Stage.APPROVED:
        chain = await documents.load_chain(db, application)
        verify_chain(application, chain)
        content = documents.render_certificate(application, chain)
        await documents.store_document(db, application, "certificate", content, adapter=adapter)


def _one_month_before(now: datetime) -> datetime:
    year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


async def signing_statistics(
    db: AsyncSession,
    stage: int,
    *,
    now: datetime | None = None,
) -> SigningStatistics:
    try:
        signing_stage = Stage(stage)
    except ValueError as exc:
        raise ValidationError("Unknown stage") from exc
    if signing_stage not in SIGNING_STAGES:
        raise ValidationError("Statistics are available for the signing stages only")

    now = now or datetime.now(timezone.utc)
    signed_at = (
        PermitApplication.ee2_signed_at
        if signing_stage == Stage.EXECUTIVE_ENGINEER_SIGN_PENDING
        else PermitApplication.ce2_signed_at
    )
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    stmt = select(
        func.count(PermitApplication.id).filter(PermitApplication.stage == int(signing_stage)),
        func.count(signed_at),
        func.count(PermitApplication.id).filter(signed_at >= day_start),
        func.count(PermitApplication.id).filter(signed_at >= now - timedelta(days=7)),
        func.count(PermitApplication.id).filter(signed_at >= _one_month_before(now)),
    )
    row = (await db.execute(stmt)).first()
    pending, completed, today, week, month = (int(value or 0) for value in (row or (0, 0, 0, 0, 0)))
    return SigningStatistics(
        stage=signing_stage,
        pending_count=pending,
        completed_count=completed,
        today_processed=today,
        week_processed=week,
        month_processed=month,
    )
