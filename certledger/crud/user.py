from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from certledger.crud.base import CRUDBase
from certledger.models.user import User

class CRUDUser(CRUDBase[User]):
    def get_by_email(self, db: Session, email: str) -> Optional[User]:
        return db.scalar(select(User).where(User.email == (email or "").strip().lower()))

user = CRUDUser(User)
