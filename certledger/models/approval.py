from enum import Enum
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import ForeignKey, Text, DateTime
from certledger.db.base import Base
from certledger.models.certificate import utcnow

class ApprovalDecision(str, Enum):
    pending="pending"
    approved="approved"
    rejected="rejected"

class ApprovalRecord(Base):
    """Audit trail row. Insert-only."""
    __tablename__ = "certificate_approvals"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    certificate_id: Mapped[int] = mapped_column(ForeignKey("certificates.id"), index=True)
    actor_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    decision: Mapped[ApprovalDecision]
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
