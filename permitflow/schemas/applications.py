from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from permitflow.schemas.common import RequestModel
from permitflow.services.stages import PositionType, Stage, stage_label


class ApplicationCreate(RequestModel):
    position_type: PositionType
    building_type: str | None = Field(default=None, max_length=100)
    applicant_name: str = Field(min_length=1, max_length=255)
    applicant_email: EmailStr
    applicant_contact: str | None = Field(default=None, max_length=50)

    @field_validator("position_type", mode="before")
    @classmethod
    def _normalize_position(cls, value):
        if isinstance(value, str):
            return value.strip().upper().replace(" ", "_")
        return value

    @field_validator("applicant_email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class PaymentRequest(RequestModel):
    amount: int = Field(gt=0)
    reference: str = Field(min_length=1, max_length=100)


class ApprovalEntryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stage: int
    actor_role: str
    actor_name: str
    comments: str | None = None
    signed_at: datetime


class RejectionDTO(BaseModel):
    rejected_at_stage: int
    comments: str
    rejected_by: str
    rejected_at: datetime
    final: bool


class PaymentDTO(BaseModel):
    amount: int
    reference: str
    paid_at: datetime


class CertificateDTO(BaseModel):
    issued_at: datetime | None = None
    certificate_number: str | None = None
    valid_until: date | None = None
    ee2_signed_at: datetime | None = None
    ce2_signed_at: datetime | None = None


class ApplicationDTO(BaseModel):
    id: UUID
    application_number: str
    position_type: str
    building_type: str | None = None
    applicant_name: str
    applicant_email: str
    applicant_contact: str | None = None
    stage: int
    stage_name: str
    stage_label: str
    chain_cycle: int
    approval_chain: list[ApprovalEntryDTO] = Field(default_factory=list)
    rejection: RejectionDTO | None = None
    payment: PaymentDTO | None = None
    certificate: CertificateDTO | None = None

    @classmethod
    def from_model(cls, application, chain=None) -> "ApplicationDTO":
        rejection = None
        if application.is_rejected:
            rejection = RejectionDTO(
                rejected_at_stage=application.rejected_at_stage,
                comments=application.rejection_comments,
                rejected_by=application.rejected_by,
                rejected_at=application.rejected_at,
                final=bool(application.rejection_final),
            )
        payment = None
        if application.paid_at is not None:
            payment = PaymentDTO(
                amount=application.payment_amount,
                reference=application.payment_reference,
                paid_at=application.paid_at,
            )
        certificate = None
        if application.ee2_signed_at is not None or application.certificate_issued_at is not None:
            certificate = CertificateDTO(
                issued_at=application.certificate_issued_at,
                certificate_number=application.certificate_number,
                valid_until=application.certificate_valid_until,
                ee2_signed_at=application.ee2_signed_at,
                ce2_signed_at=application.ce2_signed_at,
            )
        stage = Stage(application.stage)
        return cls(
            id=application.id,
            application_number=application.application_number,
            position_type=application.position_type,
            building_type=application.building_type,
            applicant_name=application.applicant_name,
            applicant_email=application.applicant_email,
            applicant_contact=application.applicant_contact,
            stage=int(stage),
            stage_name=stage.name,
            stage_label=stage_label(stage),
            chain_cycle=application.chain_cycle,
            approval_chain=[ApprovalEntryDTO.model_validate(entry) for entry in chain or []],
            rejection=rejection,
            payment=payment,
            certificate=certificate,
        )


class ApplicationSummaryDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_number: str
    position_type: str
    applicant_name: str
    stage: int


class PendingApplicationsResponse(BaseModel):
    role: str
    total: int
    items: list[ApplicationSummaryDTO]


class StageDTO(BaseModel):
    code: int
    name: str
    label: str
    owner_role: str | None = None


class SigningStatisticsDTO(BaseModel):
    stage: int
    pending_count: int
    completed_count: int
    today_processed: int
    week_processed: int
    month_processed: int
