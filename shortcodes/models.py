"""SQLAlchemy ORM models for the shortcode service.

Data Model Layout
=================
::
    codes table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ owner_id (VARCHAR(64) NOT NULL, INDEXED)
    └─ created_at (TIMESTAMPTZ, DEFAULT NOW())

Key Behaviours
===============
- The unique index on ``code`` is the durable source of truth for collisions.
- Rows are never updated; an issued code is never reassigned.

Classes:
    IssuedCode:  A shortcode that has been durably issued to an owner.
"""

import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from shortcodes.database import Base

__all__ = ["IssuedCode"]


class IssuedCode(Base):
    __tablename__ = "codes"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    owner_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<IssuedCode(id={self.id}, code='{self.code}', owner_id='{self.owner_id}')>"
