from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from certledger.crud.base import CRUDBase
from certledger.models.ledger_transaction import LedgerTransaction, LedgerTxKind, LedgerTxStatus

class CRUDLedgerTransaction(CRUDBase[LedgerTransaction]):
    def get_by_tx_id(self, db: Session, tx_id: str) -> Optional[LedgerTransaction]:
        return db.scalar(select(LedgerTransaction).where(LedgerTransaction.tx_id == tx_id))

    def for_certificate(self, db: Session, certificate_id: int) -> List[LedgerTransaction]:
        return list(db.scalars(
            select(LedgerTransaction)
            .where(LedgerTransaction.certificate_id == certificate_id)
            .order_by(LedgerTransaction.created_at, LedgerTransaction.id)
        ))

    def latest_pending(self, db: Session, certificate_id: int, kind: LedgerTxKind) -> Optional[LedgerTransaction]:
        return db.scalar(
            select(LedgerTransaction)
            .where(LedgerTransaction.certificate_id == certificate_id,
                   LedgerTransaction.kind == kind,
                   LedgerTransaction.status == LedgerTxStatus.pending)
            .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc())
            .limit(1)
        )

    def latest_confirmed(self, db: Session, certificate_id: int) -> Optional[LedgerTransaction]:
        return db.scalar(
            select(LedgerTransaction)
            .where(LedgerTransaction.certificate_id == certificate_id,
                   LedgerTransaction.status == LedgerTxStatus.confirmed)
            .order_by(LedgerTransaction.confirmed_at.desc(), LedgerTransaction.id.desc())
            .limit(1)
        )

    def pending_older_than(self, db: Session, cutoff: datetime, limit: int = 100) -> List[LedgerTransaction]:
        return list(db.scalars(
            select(LedgerTransaction)
            .where(LedgerTransaction.status == LedgerTxStatus.pending, LedgerTransaction.created_at <= cutoff)
            .order_by(LedgerTransaction.created_at, LedgerTransaction.id)
            .limit(limit)
        ))

    def upsert(self, db: Session, *, tx_id: str, certificate_id: int, kind: LedgerTxKind, **fields: Any) -> LedgerTransaction:
        """One row per external transaction id; later calls update it."""
        row = self.get_by_tx_id(db, tx_id)
        if row is None:
            try:
                with db.begin_nested():
                    row = LedgerTransaction(tx_id=tx_id, certificate_id=certificate_id, kind=kind, **fields)
                    db.add(row)
                return row
            except IntegrityError:
                # concurrent insert of the same tx id
                row = self.get_by_tx_id(db, tx_id)
        for k, v in fields.items():
            if v is not None:
                setattr(row, k, v)
        db.flush()
        return row

ledger_transaction = CRUDLedgerTransaction(LedgerTransaction)
