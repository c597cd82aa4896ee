from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field

from permitflow.schemas.common import ActionResponse, RequestModel


class OtpGenerateRequest(RequestModel):
    application_id: UUID
    actor_role: str = Field(min_length=1, max_length=40)


class OtpGenerateResponse(ActionResponse):
    otp_reference: str
    expires_at: datetime


class VerifyAndSignRequest(RequestModel):
    application_id: UUID
    actor_role: str = Field(min_length=1, max_length=40)
    actor_name: str = Field(min_length=1, max_length=255)
    otp: str = Field(min_length=1, max_length=12)
    comments: str | None = Field(default=None, max_length=2000)
    expected_stage: int | None = Field(default=None, ge=0, le=10)


class VerifyAndSignResponse(ActionResponse):
    stage: int
    stage_label: str


class RejectRequest(RequestModel):
    application_id: UUID
    actor_role: str = Field(min_length=1, max_length=40)
    actor_name: str | None = Field(default=None, max_length=255)
    # blank comments are refused by the rejection handler with its own error
    rejection_comments: str | None = Field(default=None, max_length=4000)
    expected_stage: int | None = Field(default=None, ge=0, le=10)


class RejectResponse(ActionResponse):
    stage: int
    final: bool
