from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import ForeignKey, String, DateTime, JSON
from certledger.db.base import Base

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class CertificateStatus(str, Enum):
    pending="pending"
    approved="approved"
    rejected="rejected"
    issued="issued"
    revoked="revoked"

class Certificate(Base):
    __tablename__ = "certificates"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), index=True)
    certificate_type_id: Mapped[int] = mapped_column(ForeignKey("certificate_types.id"))
    achievement_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    status: Mapped[CertificateStatus] = mapped_column(default=CertificateStatus.pending, index=True)

    # proof_hash and content_id are written together
    content_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    proof_hash: Mapped[Optional[str]] = mapped_column(String(66), unique=True, nullable=True)
    tx_ref: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)

    created_by: Mapped[int] = mapped_column(ForeignKey("users.id"))
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    meta: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict)

    student = relationship("Student", lazy="joined")
    certificate_type = relationship("CertificateType", lazy="joined")
