from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.core.limiter import limiter
from permitflow.core.settings import settings
from permitflow.db.session import get_db
from permitflow.schemas.signing import (
    OtpGenerateRequest,
    OtpGenerateResponse,
    VerifyAndSignRequest,
    VerifyAndSignResponse,
)
from permitflow.services import signature_gate
from permitflow.services.stages import stage_label

router = APIRouter(prefix="/otp", tags=["signing"])


@router.post(
    "/generate",
    response_model=OtpGenerateResponse,
    summary="Issue a signing OTP for the officer owning the current stage",
)
@limiter.limit(settings.otp_rate_limit)
async def generate_signing_otp(
    request: Request,
    payload: OtpGenerateRequest,
    db: AsyncSession = Depends(get_db),
) -> OtpGenerateResponse:
    issued = await signature_gate.generate_signing_otp(
        db,
        application_id=payload.application_id,
        actor_role=payload.actor_role,
    )
    return OtpGenerateResponse(
        message="OTP sent successfully",
        otp_reference=issued.reference,
        expires_at=issued.expires_at,
    )


@router.post(
    "/verify-and-sign",
    response_model=VerifyAndSignResponse,
    summary="Verify a signing OTP and apply the officer's signature",
)
@limiter.limit(settings.otp_rate_limit)
async def verify_and_sign(
    request: Request,
    payload: VerifyAndSignRequest,
    db: AsyncSession = Depends(get_db),
) -> VerifyAndSignResponse:
    transition = await signature_gate.verify_and_sign(
        db,
        application_id=payload.application_id,
        actor_role=payload.actor_role,
        actor_name=payload.actor_name,
        otp_code=payload.otp,
        comments=payload.comments,
        expected_stage=payload.expected_stage,
    )
    return VerifyAndSignResponse(
        message=signature_gate.success_message(transition),
        stage=int(transition.to_stage),
        stage_label=stage_label(transition.to_stage),
    )
