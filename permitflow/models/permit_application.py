import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from permitflow.db.base import Base


class PermitApplication(Base):
    __tablename__ = "permit_applications"
    __allow_unmapped__ = True
    __table_args__ = (
        CheckConstraint("stage BETWEEN 0 AND 10", name="ck_permit_app_stage"),
        CheckConstraint("chain_cycle >= 1", name="ck_permit_app_chain_cycle_positive"),
        CheckConstraint("version >= 1", name="ck_permit_app_version_positive"),
        CheckConstraint(
            "payment_amount IS NULL OR payment_amount > 0",
            name="ck_permit_app_payment_positive",
        ),
        CheckConstraint(
            "(stage = 10) = (rejected_at_stage IS NOT NULL)",
            name="ck_permit_app_rejection_iff_rejected",
        ),
        CheckConstraint(
            "stage < 6 OR stage = 10 OR paid_at IS NOT NULL",
            name="ck_permit_app_paid_before_clerk",
        ),
        CheckConstraint(
            "position_type IN ('ARCHITECT', 'LICENCE_ENGINEER', 'STRUCTURAL_ENGINEER', 'SUPERVISOR1', 'SUPERVISOR2')",
            name="ck_permit_app_position_type",
        ),
        Index("ix_permit_applications_stage_position", "stage", "position_type"),
        UniqueConstraint("certificate_number", name="uq_permit_applications_certificate_number"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_number = Column(String(50), nullable=False, unique=True, index=True)
    position_type = Column(String(40), nullable=False)
    building_type = Column(String(100), nullable=True)
    applicant_name = Column(String(255), nullable=False)
    applicant_email = Column(String(255), nullable=False)
    applicant_contact = Column(String(50), nullable=True)

    stage = Column(Integer, nullable=False, default=0)
    chain_cycle = Column(Integer, nullable=False, default=1)

    rejected_at_stage = Column(Integer, nullable=True)
    rejection_comments = Column(Text, nullable=True)
    rejected_by = Column(String(255), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_final = Column(Boolean, nullable=False, default=False)

    payment_amount = Column(BigInteger, nullable=True)
    payment_reference = Column(String(100), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    ee2_signed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    ce2_signed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    certificate_issued_at = Column(DateTime(timezone=True), nullable=True)
    certificate_number = Column(String(64), nullable=True)
    certificate_valid_until = Column(Date, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_rejected(self) -> bool:
        return self.rejected_at_stage is not None

    @property
    def has_payment(self) -> bool:
        return self.paid_at is not None

    @property
    def is_certificate_issued(self) -> bool:
        return self.certificate_issued_at is not None
