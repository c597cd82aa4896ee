from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from permitflow.db.session import get_db
from permitflow.schemas.applications import (
    ApplicationCreate,
    ApplicationDTO,
    ApplicationSummaryDTO,
    PaymentRequest,
    PendingApplicationsResponse,
    SigningStatisticsDTO,
    StageDTO,
)
from permitflow.services import applications, certificates, rejections
from permitflow.services.errors import ValidationError
from permitflow.services.stages import STAGE_OWNERS, PositionType, Stage, parse_role, stage_label

router = APIRouter(tags=["applications"])


async def _application_dto(db: AsyncSession, application) -> ApplicationDTO:
    chain = await applications.get_active_chain(db, application)
    return ApplicationDTO.from_model(application, chain)


@router.get("/stages", response_model=list[StageDTO], summary="List workflow stages and their owners")
async def list_stages() -> list[StageDTO]:
    return [
        StageDTO(
            code=int(stage),
            name=stage.name,
            label=stage_label(stage),
            owner_role=STAGE_OWNERS[stage].value if stage in STAGE_OWNERS else None,
        )
        for stage in Stage
    ]


@router.post(
    "/applications",
    response_model=ApplicationDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a new permit application",
)
async def submit_application(
    payload: ApplicationCreate,
    db: AsyncSession = Depends(get_db),
) -> ApplicationDTO:
    application = await applications.submit_application(db, payload)
    return ApplicationDTO.from_model(application, [])


@router.get(
    "/applications/pending",
    response_model=PendingApplicationsResponse,
    summary="List applications waiting on a role",
)
async def list_pending(
    role: str = Query(...),
    position_type: PositionType | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> PendingApplicationsResponse:
    officer_role = parse_role(role)
    if officer_role is None:
        raise ValidationError("Unknown role")
    total, items = await applications.list_pending_for_role(
        db,
        officer_role,
        position_type=position_type,
        limit=limit,
        offset=offset,
    )
    return PendingApplicationsResponse(
        role=officer_role.value,
        total=total,
        items=[ApplicationSummaryDTO.model_validate(item) for item in items],
    )


@router.get("/applications/{application_id}", response_model=ApplicationDTO, summary="Get an application")
async def get_application(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ApplicationDTO:
    application = await applications.get_application(db, application_id)
    return await _application_dto(db, application)


@router.post(
    "/applications/{application_id}/resubmit",
    response_model=ApplicationDTO,
    summary="Resubmit an application returned for correction",
)
async def resubmit_application(
    application_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ApplicationDTO:
    application = await rejections.resubmit_application(db, application_id=application_id)
    return await _application_dto(db, application)


@router.post(
    "/applications/{application_id}/payment",
    response_model=ApplicationDTO,
    summary="Record the registration fee payment",
)
async def record_payment(
    application_id: UUID,
    payload: PaymentRequest,
    db: AsyncSession = Depends(get_db),
) -> ApplicationDTO:
    application = await applications.record_payment(
        db,
        application_id=application_id,
        amount=payload.amount,
        reference=payload.reference,
    )
    return await _application_dto(db, application)


@router.get(
    "/certificates/statistics/{stage}",
    response_model=SigningStatisticsDTO,
    summary="Signing throughput for a stage-2 signing stage",
)
async def signing_statistics(
    stage: int,
    db: AsyncSession = Depends(get_db),
) -> SigningStatisticsDTO:
    stats = await certificates.signing_statistics(db, stage)
    return SigningStatisticsDTO(
        stage=int(stats.stage),
        pending_count=stats.pending_count,
        completed_count=stats.completed_count,
        today_processed=stats.today_processed,
        week_processed=stats.week_processed,
        month_processed=stats.month_processed,
    )
