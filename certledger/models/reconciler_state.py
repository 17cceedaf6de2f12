from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, DateTime, BigInteger
from certledger.db.base import Base
from certledger.models.certificate import utcnow

class ReconcilerState(Base):
    """Event cursor per contract: the last block whose events were applied."""
    __tablename__ = "reconciler_state"
    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_block: Mapped[int] = mapped_column(BigInteger)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
