"""Stage state machine for permit applications.

Every stage change goes through :func:`_apply_transition`, which appends the
approval entry for the stage being left. Callers are expected to hold the
application row lock (:func:`load_for_update`) and to commit or roll back the
surrounding transaction; nothing here commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.core.settings import settings
from permitflow.models.application_document import ApplicationDocument
from permitflow.models.approval_entry import ApprovalEntry
from permitflow.models.otp_challenge import OtpChallenge
from permitflow.models.permit_application import PermitApplication
from permitflow.services import certificates, otp, signer
from permitflow.services.audit import record_audit_log
from permitflow.services.errors import (
    ApplicationNotFound,
    AuthorizationError,
    InvalidOrExpiredOtp,
    PaymentError,
    RejectionNotAllowed,
    StageMismatch,
    TerminalStateViolation,
    ValidationError,
)
from permitflow.services.stages import (
    FINAL_REJECTION_STAGES,
    REJECTABLE_STAGES,
    SIGNATURE_PURPOSE_PREFIX,
    OfficerRole,
    Stage,
    next_stage,
    role_owns,
    signature_purpose,
)

logger = logging.getLogger(__name__)

PAYMENT_GATEWAY_ACTOR = "Payment gateway"
CYCLE_DOCUMENT_KINDS = ("recommendation_form", "challan")


@dataclass(frozen=True)
class Transition:
    application: PermitApplication
    entry: ApprovalEntry
    from_stage: Stage
    to_stage: Stage


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def load_for_update(db: AsyncSession, application_id) -> PermitApplication:
    stmt = (
        select(PermitApplication)
        .where(PermitApplication.id == application_id)
        .with_for_update()
    )
    application = (await db.execute(stmt)).scalar_one_or_none()
    if application is None:
        raise ApplicationNotFound()
    return application


def is_terminal(application: PermitApplication) -> bool:
    stage = Stage(application.stage)
    if stage == Stage.APPROVED:
        return True
    return stage == Stage.REJECTED and bool(application.rejection_final)


def ensure_actionable(application: PermitApplication, expected_stage: int | None = None) -> Stage:
    """Raise unless officers may act on the application right now."""
    if is_terminal(application):
        raise TerminalStateViolation()
    stage = Stage(application.stage)
    if stage == Stage.REJECTED:
        raise StageMismatch(
            "Application has been returned to the applicant",
            details={"current_stage": int(stage)},
        )
    if expected_stage is not None and int(expected_stage) != int(stage):
        raise StageMismatch(details={"current_stage": int(stage)})
    return stage


def ensure_owner(application: PermitApplication, role: OfficerRole) -> None:
    if not role_owns(role, application.stage):
        logger.info(
            "Actor role %s refused at stage %s",
            role.value,
            application.stage,
            extra={"application_id": str(application.id)},
        )
        raise AuthorizationError()


async def active_chain(db: AsyncSession, application: PermitApplication) -> list[ApprovalEntry]:
    stmt = (
        select(ApprovalEntry)
        .where(
            ApprovalEntry.application_id == application.id,
            ApprovalEntry.cycle == application.chain_cycle,
        )
        .order_by(ApprovalEntry.stage.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def _apply_transition(
    db: AsyncSession,
    application: PermitApplication,
    *,
    actor_role: OfficerRole,
    actor_name: str,
    comments: str | None,
    now: datetime,
) -> Transition:
    from_stage = Stage(application.stage)
    to_stage = next_stage(from_stage)
    if to_stage >= Stage.CLERK_PENDING and not application.has_payment:
        raise PaymentError("Payment must be recorded before the application reaches the clerk")

    entry = ApprovalEntry(
        application_id=application.id,
        cycle=application.chain_cycle,
        stage=int(from_stage),
        actor_role=actor_role.value,
        actor_name=actor_name,
        comments=comments,
        signed_at=now,
        signature_digest=signer.sign_stage(
            application.application_number,
            int(from_stage),
            actor_role.value,
            actor_name,
            now,
        ),
    )
    db.add(entry)
    application.stage = int(to_stage)
    certificates.stamp_signature(application, from_stage, now)
    db.add(application)

    # no signing OTP may outlive the stage it was issued for
    await otp.invalidate_live(db, application.id, purpose_prefix=SIGNATURE_PURPOSE_PREFIX, now=now)
    record_audit_log(
        db,
        actor=f"{actor_role.value}:{actor_name}",
        action="permit_application.stage_advanced",
        resource_type="permit_application",
        resource_id=str(application.id),
        old_value={"stage": int(from_stage)},
        new_value={"stage": int(to_stage)},
    )
    logger.info(
        "Application advanced %s -> %s",
        from_stage.name,
        to_stage.name,
        extra={"application_id": str(application.id), "stage": int(to_stage)},
    )
    return Transition(application=application, entry=entry, from_stage=from_stage, to_stage=to_stage)


async def advance(
    db: AsyncSession,
    application: PermitApplication,
    *,
    actor_role: OfficerRole,
    actor_name: str,
    proof: OtpChallenge | None,
    comments: str | None = None,
    expected_stage: int | None = None,
    now: datetime | None = None,
) -> Transition:
    """Move the application one stage forward on behalf of ``actor_role``.

    ``proof`` must be the signing challenge consumed for exactly this
    application, role and stage.
    """
    stage = ensure_actionable(application, expected_stage)
    ensure_owner(application, actor_role)
    if (
        proof is None
        or proof.consumed_at is None
        or proof.application_id != application.id
        or proof.purpose != signature_purpose(actor_role)
    ):
        raise InvalidOrExpiredOtp()
    if proof.stage != int(stage):
        raise StageMismatch(details={"current_stage": int(stage)})
    name = (actor_name or "").strip()
    if not name:
        raise ValidationError("Actor name is required")
    notes = (comments or "").strip() or None
    return await _apply_transition(
        db,
        application,
        actor_role=actor_role,
        actor_name=name,
        comments=notes,
        now=now or _utcnow(),
    )


async def confirm_payment(
    db: AsyncSession,
    application: PermitApplication,
    *,
    amount: int,
    reference: str,
    now: datetime | None = None,
) -> Transition:
    now = now or _utcnow()
    stage = ensure_actionable(application)
    if stage != Stage.PAYMENT_PENDING:
        raise StageMismatch(details={"current_stage": int(stage)})
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise PaymentError("Payment amount must be a positive whole number")
    reference = (reference or "").strip()
    if not reference:
        raise ValidationError("Payment reference is required")

    old_payment = {
        "amount": application.payment_amount,
        "reference": application.payment_reference,
    }
    application.payment_amount = amount
    application.payment_reference = reference
    application.paid_at = now
    record_audit_log(
        db,
        actor=OfficerRole.PAYMENT_GATEWAY.value,
        action="permit_application.payment_recorded",
        resource_type="permit_application",
        resource_id=str(application.id),
        old_value=old_payment,
        new_value={"amount": amount, "reference": reference},
    )
    return await _apply_transition(
        db,
        application,
        actor_role=OfficerRole.PAYMENT_GATEWAY,
        actor_name=PAYMENT_GATEWAY_ACTOR,
        comments=f"Payment reference {reference}",
        now=now,
    )


def validate_rejection_comments(comments: str | None) -> str:
    cleaned = (comments or "").strip()
    if not cleaned:
        raise ValidationError("Rejection comments are required")
    return cleaned


async def reject(
    db: AsyncSession,
    application: PermitApplication,
    *,
    actor_role: OfficerRole,
    actor_name: str,
    comments: str,
    expected_stage: int | None = None,
    now: datetime | None = None,
) -> PermitApplication:
    cleaned = validate_rejection_comments(comments)
    stage = ensure_actionable(application, expected_stage)
    if stage not in REJECTABLE_STAGES:
        raise RejectionNotAllowed()
    ensure_owner(application, actor_role)

    now = now or _utcnow()
    final = stage in FINAL_REJECTION_STAGES
    application.rejected_at_stage = int(stage)
    application.rejection_comments = cleaned
    application.rejected_by = (actor_name or "").strip() or actor_role.value
    application.rejected_at = now
    application.rejection_final = final
    application.stage = int(Stage.REJECTED)
    db.add(application)

    await otp.invalidate_live(db, application.id, purpose_prefix=SIGNATURE_PURPOSE_PREFIX, now=now)
    record_audit_log(
        db,
        actor=f"{actor_role.value}:{application.rejected_by}",
        action="permit_application.rejected",
        resource_type="permit_application",
        resource_id=str(application.id),
        old_value={"stage": int(stage)},
        new_value={"stage": int(Stage.REJECTED), "final": final, "comments": cleaned},
    )
    logger.info(
        "Application rejected at %s final=%s",
        stage.name,
        final,
        extra={"application_id": str(application.id), "stage": int(stage)},
    )
    return application


async def resubmit(
    db: AsyncSession,
    application: PermitApplication,
    *,
    now: datetime | None = None,
    policy: str | None = None,
) -> PermitApplication:
    """Re-enter the chain after a returning rejection.

    ``reset`` drops the previous cycle's approval entries, ``preserve`` keeps
    them as history. Either way the active chain starts empty. A return from
    the Clerk stage or later also clears the payment and its documents.
    """
    if is_terminal(application):
        raise TerminalStateViolation()
    if Stage(application.stage) != Stage.REJECTED:
        raise StageMismatch(
            "Only returned applications can be resubmitted",
            details={"current_stage": int(application.stage)},
        )

    policy = policy or settings.returning_rejection_policy
    previous_cycle = application.chain_cycle
    if policy == "reset":
        await db.execute(
            delete(ApprovalEntry).where(
                ApprovalEntry.application_id == application.id,
                ApprovalEntry.cycle == previous_cycle,
            )
        )
    old_value = {
        "stage": int(Stage.REJECTED),
        "chain_cycle": previous_cycle,
        "rejected_at_stage": application.rejected_at_stage,
    }
    rejected_at_stage = application.rejected_at_stage
    if rejected_at_stage is not None and rejected_at_stage >= int(Stage.PAYMENT_PENDING):
        # the next cycle pays again and renders its own form and challan
        await db.execute(
            delete(ApplicationDocument).where(
                ApplicationDocument.application_id == application.id,
                ApplicationDocument.kind.in_(CYCLE_DOCUMENT_KINDS),
            )
        )
        old_value["payment_reference"] = application.payment_reference
        application.payment_amount = None
        application.payment_reference = None
        application.paid_at = None
    application.chain_cycle = previous_cycle + 1
    application.stage = int(Stage.JUNIOR_ENGINEER_PENDING)
    application.rejected_at_stage = None
    application.rejection_comments = None
    application.rejected_by = None
    application.rejected_at = None
    application.rejection_final = False
    db.add(application)
    record_audit_log(
        db,
        actor="applicant",
        action="permit_application.resubmitted",
        resource_type="permit_application",
        resource_id=str(application.id),
        old_value=old_value,
        new_value={
            "stage": int(Stage.JUNIOR_ENGINEER_PENDING),
            "chain_cycle": application.chain_cycle,
            "policy": policy,
        },
    )
    return application
