import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, func, text
from sqlalchemy.dialects.postgresql import UUID

from permitflow.db.base import Base
from permitflow.models.types import EncryptedString


class OtpChallenge(Base):
    __tablename__ = "otp_challenges"
    __table_args__ = (
        Index(
            "uq_otp_challenges_live_purpose",
            "application_id",
            "purpose",
            unique=True,
            postgresql_where=text("consumed_at IS NULL AND invalidated_at IS NULL"),
        ),
        Index("ix_otp_challenges_expires_at", "expires_at"),
        Index("ix_otp_challenges_app_purpose_created", "application_id", "purpose", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("permit_applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    purpose = Column(String(60), nullable=False)
    stage = Column(Integer, nullable=True)
    reference = Column(String(32), nullable=False, unique=True)
    secret = Column(EncryptedString(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    failed_attempts = Column(Integer, nullable=False, default=0)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    invalidated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
