from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.db.session import get_db
from permitflow.schemas.signing import RejectRequest, RejectResponse
from permitflow.services import rejections

router = APIRouter(tags=["rejections"])


@router.post("/reject", response_model=RejectResponse, summary="Reject an application at its current stage")
async def reject_application(
    payload: RejectRequest,
    db: AsyncSession = Depends(get_db),
) -> RejectResponse:
    application = await rejections.reject_application(
        db,
        application_id=payload.application_id,
        actor_role=payload.actor_role,
        actor_name=payload.actor_name,
        comments=payload.rejection_comments,
        expected_stage=payload.expected_stage,
    )
    final = bool(application.rejection_final)
    message = (
        "Application rejected. This decision is final."
        if final
        else "Application returned to the applicant for correction."
    )
    return RejectResponse(message=message, stage=application.stage, final=final)
