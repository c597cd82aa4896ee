"""OTP-gated signing: one verified code, one stage transition, one commit."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.core.context import set_actor
from permitflow.core.settings import settings
from permitflow.services import certificates, otp, workflow
from permitflow.services.errors import (
    AuthorizationError,
    InvalidOrExpiredOtp,
    StageMismatch,
    ValidationError,
    WorkflowError,
)
from permitflow.services.stages import (
    OfficerRole,
    Stage,
    owned_previous_stage,
    parse_role,
    role_owns,
    signature_purpose,
    stage_label,
)

logger = logging.getLogger(__name__)


def resolve_officer_role(value: str | OfficerRole) -> OfficerRole:
    role = value if isinstance(value, OfficerRole) else parse_role(value)
    if role is None or role == OfficerRole.PAYMENT_GATEWAY:
        raise AuthorizationError()
    return role


async def generate_signing_otp(
    db: AsyncSession,
    *,
    application_id,
    actor_role: str | OfficerRole,
    notifier=None,
) -> otp.IssuedChallenge:
    role = resolve_officer_role(actor_role)
    set_actor(role.value)
    application = await workflow.load_for_update(db, application_id)
    try:
        stage = workflow.ensure_actionable(application)
        workflow.ensure_owner(application, role)
    except WorkflowError:
        await db.rollback()
        raise
    return await otp.issue(
        db,
        application_id=application.id,
        purpose=signature_purpose(role),
        stage=int(stage),
        recipient=role.value,
        actor=role.value,
        ttl_minutes=settings.signing_otp_ttl_minutes,
        notifier=notifier,
    )


async def verify_and_sign(
    db: AsyncSession,
    *,
    application_id,
    actor_role: str | OfficerRole,
    actor_name: str,
    otp_code: str,
    comments: str | None = None,
    expected_stage: int | None = None,
    now: datetime | None = None,
    adapter=None,
) -> workflow.Transition:
    role = resolve_officer_role(actor_role)
    if not (actor_name or "").strip():
        raise ValidationError("Actor name is required")
    code = otp.normalize_code(otp_code)
    now = now or datetime.now(timezone.utc)
    set_actor(f"{role.value}:{actor_name.strip()}")

    application = await workflow.load_for_update(db, application_id)
    try:
        workflow.ensure_actionable(application, expected_stage)
        purpose = signature_purpose(role)
        pending = await otp.find_live(db, application.id, purpose)
        if pending is not None and pending.stage != application.stage:
            raise StageMismatch(details={"current_stage": int(application.stage)})
        if (
            pending is None
            and not role_owns(role, application.stage)
            and owned_previous_stage(role, application.stage)
        ):
            # the code was spent on a stage the chain has already left
            raise InvalidOrExpiredOtp(details={"current_stage": int(application.stage)})
        workflow.ensure_owner(application, role)
        proof = await otp.consume(db, pending, code, now=now)
        transition = await workflow.advance(
            db,
            application,
            actor_role=role,
            actor_name=actor_name,
            proof=proof,
            comments=comments,
            now=now,
        )
        await certificates.issue_documents(db, application, transition.to_stage, adapter=adapter)
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        logger.info("Concurrent update lost", extra={"application_id": str(application_id)})
        raise StageMismatch() from exc
    except WorkflowError:
        await db.rollback()
        raise
    await db.refresh(application)
    return transition


def success_message(transition: workflow.Transition) -> str:
    if transition.to_stage == Stage.APPROVED:
        return "Digital signature applied successfully. Certificate issued."
    return (
        "Digital signature applied successfully. "
        f"Application forwarded: {stage_label(transition.to_stage)}."
    )
