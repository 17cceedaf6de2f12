from __future__ import annotations

from typing import Optional
from sqlalchemy.orm import Session

from certledger.crud.base import CRUDBase
from certledger.models.reconciler_state import ReconcilerState

class CRUDReconcilerState(CRUDBase[ReconcilerState]):
    def last_block(self, db: Session, name: str) -> Optional[int]:
        row = self.get(db, name)
        return row.last_block if row is not None else None

    def save_block(self, db: Session, name: str, block: int) -> ReconcilerState:
        row = self.get(db, name)
        if row is None:
            return self.create(db, {"name": name, "last_block": block})
        row.last_block = block
        db.flush()
        return row

reconciler_state = CRUDReconcilerState(ReconcilerState)
