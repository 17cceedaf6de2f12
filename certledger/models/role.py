from typing import List
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from certledger.db.base import Base
from certledger.models.user_role import user_roles


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(32), unique=True)

    users: Mapped[List["User"]] = relationship(secondary=user_roles, back_populates="roles", lazy="selectin")
