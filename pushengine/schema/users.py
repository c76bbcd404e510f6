"""SQLAlchemy models for the recipient directory read by the delivery core."""

from __future__ import annotations

import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from pushengine.core.database import Base


class User(Base):
  """Recipient identity, contact number and the single Expo device slot."""

  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  phone_number: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  preferred_language: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  expo_push_token: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class StudentProfile(Base):
  """Academic attributes used by attribute-filter targeting."""

  __tablename__ = "student_profiles"

  user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
  institution_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  program_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  stage: Mapped[str | None] = mapped_column(String, nullable=True)
