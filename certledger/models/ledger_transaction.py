from enum import Enum
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import ForeignKey, String, DateTime, BigInteger
from certledger.db.base import Base
from certledger.models.certificate import utcnow

class LedgerTxKind(str, Enum):
    issue="issue"
    revoke="revoke"

class LedgerTxStatus(str, Enum):
    pending="pending"
    confirmed="confirmed"
    failed="failed"

class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    certificate_id: Mapped[int] = mapped_column(ForeignKey("certificates.id"), index=True)
    tx_id: Mapped[str] = mapped_column(String(66), unique=True, index=True)
    kind: Mapped[LedgerTxKind]
    gas_used: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    gas_price: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    status: Mapped[LedgerTxStatus] = mapped_column(default=LedgerTxStatus.pending, index=True)
    block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    block_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
