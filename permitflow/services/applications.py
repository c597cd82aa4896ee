from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.models.approval_entry import ApprovalEntry
from permitflow.models.permit_application import PermitApplication
from permitflow.schemas.applications import ApplicationCreate
from permitflow.services import certificates, workflow
from permitflow.services.audit import model_snapshot, record_audit_log
from permitflow.services.errors import (
    ApplicationNotFound,
    StageMismatch,
    ValidationError,
    WorkflowError,
)
from permitflow.services.stages import ROLE_STAGES, OfficerRole, PositionType, Stage

logger = logging.getLogger(__name__)

NUMBER_PREFIXES = {
    PositionType.ARCHITECT: "ARC",
    PositionType.LICENCE_ENGINEER: "LIC",
    PositionType.STRUCTURAL_ENGINEER: "SE",
    PositionType.SUPERVISOR1: "SUP1",
    PositionType.SUPERVISOR2: "SUP2",
}
MAX_NUMBER_ATTEMPTS = 3


async def _next_application_number(
    db: AsyncSession,
    position_type: PositionType,
    now: datetime,
) -> str:
    prefix = f"{NUMBER_PREFIXES[position_type]}{now.year}{now.month:02d}"
    stmt = select(func.count(PermitApplication.id)).where(
        PermitApplication.application_number.startswith(prefix)
    )
    issued = int((await db.execute(stmt)).scalar_one_or_none() or 0)
    return f"{prefix}{issued + 1:04d}"


async def submit_application(
    db: AsyncSession,
    payload: ApplicationCreate,
    *,
    now: datetime | None = None,
) -> PermitApplication:
    """Create an application at the first review stage.

    Numbers follow ``<prefix><yyyymm><seq>``; a collision with a concurrent
    submission is retried.
    """
    now = now or datetime.now(timezone.utc)
    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        application = PermitApplication(
            application_number=await _next_application_number(db, payload.position_type, now),
            position_type=payload.position_type.value,
            building_type=payload.building_type,
            applicant_name=payload.applicant_name.strip(),
            applicant_email=str(payload.applicant_email).strip().lower(),
            applicant_contact=payload.applicant_contact,
            stage=int(Stage.JUNIOR_ENGINEER_PENDING),
            chain_cycle=1,
            rejection_final=False,
        )
        db.add(application)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            logger.info("Application number collision on attempt %s", attempt)
            continue
        record_audit_log(
            db,
            actor="applicant",
            action="permit_application.submitted",
            resource_type="permit_application",
            resource_id=str(application.id),
            new_value=model_snapshot(
                application,
                include=("application_number", "position_type", "applicant_email", "stage"),
            ),
        )
        await db.commit()
        await db.refresh(application)
        return application
    raise ValidationError("Could not allocate an application number; retry the submission")


async def get_application(db: AsyncSession, application_id) -> PermitApplication:
    application = await db.get(PermitApplication, application_id)
    if application is None:
        raise ApplicationNotFound()
    return application


async def get_active_chain(db: AsyncSession, application: PermitApplication) -> list[ApprovalEntry]:
    return await workflow.active_chain(db, application)


async def list_pending_for_role(
    db: AsyncSession,
    role: OfficerRole,
    *,
    position_type: PositionType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[PermitApplication]]:
    stages = sorted(int(stage) for stage in ROLE_STAGES[role])
    conditions = [PermitApplication.stage.in_(stages)]
    if position_type is not None:
        if role != OfficerRole.ASSISTANT_ENGINEER:
            raise ValidationError("Position filter is only available for the Assistant Engineer queue")
        conditions.append(PermitApplication.position_type == position_type.value)

    total_stmt = select(func.count(PermitApplication.id)).where(*conditions)
    total = int((await db.execute(total_stmt)).scalar_one_or_none() or 0)
    stmt = (
        select(PermitApplication)
        .where(*conditions)
        .order_by(PermitApplication.updated_at.asc())
        .limit(limit)
        .offset(offset)
    )
    items = list((await db.execute(stmt)).scalars().all())
    return total, items


async def record_payment(
    db: AsyncSession,
    *,
    application_id,
    amount: int,
    reference: str,
    now: datetime | None = None,
    adapter=None,
) -> PermitApplication:
    application = await workflow.load_for_update(db, application_id)
    try:
        transition = await workflow.confirm_payment(
            db,
            application,
            amount=amount,
            reference=reference,
            now=now,
        )
        await certificates.issue_documents(db, application, transition.to_stage, adapter=adapter)
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise StageMismatch() from exc
    except WorkflowError:
        await db.rollback()
        raise
    await db.refresh(application)
    return application
