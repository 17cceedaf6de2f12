from typing import List
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from certledger.db.base import Base
from certledger.models.user_role import user_roles


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120))
    email: Mapped[str] = mapped_column(String(160), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="active")

    roles: Mapped[List["Role"]] = relationship(secondary=user_roles, back_populates="users", lazy="selectin")

    @property
    def role_names(self) -> set[str]:
        return {r.name for r in (self.roles or [])}
