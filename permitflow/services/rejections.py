from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.core.context import set_actor
from permitflow.models.permit_application import PermitApplication
from permitflow.services import workflow
from permitflow.services.errors import AuthorizationError, StageMismatch, WorkflowError
from permitflow.services.stages import OfficerRole, parse_role


async def reject_application(
    db: AsyncSession,
    *,
    application_id,
    actor_role: str | OfficerRole,
    comments: str | None,
    actor_name: str | None = None,
    expected_stage: int | None = None,
    now: datetime | None = None,
) -> PermitApplication:
    """Reject the application at its current stage.

    Comments are checked before the application is loaded. Whether the
    rejection is final depends only on the stage it happens at.
    """
    cleaned = workflow.validate_rejection_comments(comments)
    role = actor_role if isinstance(actor_role, OfficerRole) else parse_role(actor_role)
    if role is None or role == OfficerRole.PAYMENT_GATEWAY:
        raise AuthorizationError()
    set_actor(role.value)

    application = await workflow.load_for_update(db, application_id)
    try:
        await workflow.reject(
            db,
            application,
            actor_role=role,
            actor_name=actor_name or role.value,
            comments=cleaned,
            expected_stage=expected_stage,
            now=now,
        )
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise StageMismatch() from exc
    except WorkflowError:
        await db.rollback()
        raise
    await db.refresh(application)
    return application


async def resubmit_application(
    db: AsyncSession,
    *,
    application_id,
    now: datetime | None = None,
) -> PermitApplication:
    application = await workflow.load_for_update(db, application_id)
    try:
        await workflow.resubmit(db, application, now=now)
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise StageMismatch() from exc
    except WorkflowError:
        await db.rollback()
        raise
    await db.refresh(application)
    return application
