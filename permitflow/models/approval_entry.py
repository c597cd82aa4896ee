import uuid

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from permitflow.db.base import Base


class ApprovalEntry(Base):
    """One signed-off stage in an application's approval chain.

    Rows are append-only. ``cycle`` matches ``PermitApplication.chain_cycle``
    at the time of signing; earlier cycles survive only under the
    ``preserve`` rejection policy.
    """

    __tablename__ = "approval_entries"
    __allow_unmapped__ = True
    __table_args__ = (
        UniqueConstraint("application_id", "cycle", "stage", name="uq_approval_entries_cycle_stage"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("permit_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    cycle = Column(Integer, nullable=False, default=1)
    stage = Column(Integer, nullable=False)
    actor_role = Column(String(40), nullable=False)
    actor_name = Column(String(255), nullable=False)
    comments = Column(Text, nullable=True)
    signature_digest = Column(String(128), nullable=True)
    signed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
