from urllib.parse import quote

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.api.deps import ClientInfo, get_client_info
from permitflow.core.limiter import limiter
from permitflow.core.settings import settings
from permitflow.db.session import get_db
from permitflow.schemas.downloads import (
    RequestAccessRequest,
    RequestAccessResponse,
    VerifyAccessRequest,
    VerifyAccessResponse,
)
from permitflow.services import downloads

router = APIRouter(prefix="/download", tags=["downloads"])


@router.post(
    "/request-access",
    response_model=RequestAccessResponse,
    summary="Send a download OTP to the applicant's e-mail",
)
@limiter.limit(settings.otp_rate_limit)
async def request_access(
    request: Request,
    payload: RequestAccessRequest,
    db: AsyncSession = Depends(get_db),
) -> RequestAccessResponse:
    issued = await downloads.request_access(
        db,
        application_number=payload.application_number,
        email=payload.email,
    )
    return RequestAccessResponse(
        message="OTP sent to the registered e-mail address",
        otp_reference=issued.reference,
        expires_at=issued.expires_at,
    )


@router.post(
    "/verify-otp",
    response_model=VerifyAccessResponse,
    summary="Exchange a download OTP for a 24 hour download token",
)
@limiter.limit(settings.otp_rate_limit)
async def verify_access(
    request: Request,
    payload: VerifyAccessRequest,
    db: AsyncSession = Depends(get_db),
) -> VerifyAccessResponse:
    grant = await downloads.verify_access(
        db,
        application_number=payload.application_number,
        otp_code=payload.otp,
    )
    return VerifyAccessResponse(
        message="OTP verified",
        download_token=grant.download_token,
        applicant_name=grant.applicant_name,
        expires_at=grant.expires_at,
    )


@router.get(
    "/{kind}/{download_token}",
    response_class=Response,
    summary="Download an issued document with a download token",
)
@limiter.limit(settings.download_rate_limit)
async def fetch_document(
    request: Request,
    kind: str,
    download_token: str,
    client: ClientInfo = Depends(get_client_info),
    db: AsyncSession = Depends(get_db),
) -> Response:
    payload = await downloads.fetch_document(
        db,
        token=download_token,
        kind=kind,
        client_ip=client.ip_address,
        user_agent=client.user_agent,
    )
    return Response(
        content=payload.content,
        media_type=payload.content_type,
        headers={
            "Content-Disposition": f"attachment; filename=\"{quote(payload.file_name)}\"",
        },
    )
