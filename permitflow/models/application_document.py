import uuid

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from permitflow.db.base import Base


DOCUMENT_KINDS = ("certificate", "recommendation_form", "challan")


class ApplicationDocument(Base):
    __tablename__ = "application_documents"
    __table_args__ = (
        CheckConstraint(
            "kind IN ('certificate', 'recommendation_form', 'challan')",
            name="ck_application_documents_kind",
        ),
        UniqueConstraint("application_id", "kind", name="uq_application_documents_kind"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("permit_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind = Column(String(40), nullable=False)
    file_name = Column(String(255), nullable=False)
    storage_provider = Column(String(20), nullable=False, default="local")
    storage_key = Column(String(512), nullable=False)
    content_type = Column(String(100), nullable=False, default="application/pdf")
    size_bytes = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
