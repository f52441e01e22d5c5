"""Read-only mappings for tables owned by the surrounding LMS application.

Migrations never create or alter these tables; `alembic/env.py` filters them
out of autogenerate.
"""

from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from feedback_engine.core.database import Base

EXTERNAL_TABLES = frozenset({"assignments", "profiles"})


class Assignment(Base):
  __tablename__ = "assignments"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)
  content: Mapped[str | None] = mapped_column(Text, nullable=True)


class Profile(Base):
  __tablename__ = "profiles"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  role: Mapped[str | None] = mapped_column(String, nullable=True)
