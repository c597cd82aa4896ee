from __future__ import annotations

from datetime import datetime

from pydantic import EmailStr, Field

from permitflow.schemas.common import ActionResponse, RequestModel


class RequestAccessRequest(RequestModel):
    application_number: str = Field(min_length=1, max_length=50)
    email: EmailStr


class RequestAccessResponse(ActionResponse):
    otp_reference: str | None = None
    expires_at: datetime | None = None


class VerifyAccessRequest(RequestModel):
    application_number: str = Field(min_length=1, max_length=50)
    otp: str = Field(min_length=1, max_length=12)


class VerifyAccessResponse(ActionResponse):
    download_token: str
    applicant_name: str
    expires_at: datetime
