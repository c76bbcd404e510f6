"""SQLAlchemy model for scheduled notification jobs."""

from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from pushengine.core.database import Base


class NotificationJob(Base):
  """Persist a notification campaign with its schedule, targeting and counters."""

  __tablename__ = "notification_jobs"
  __table_args__ = (Index("ix_notification_jobs_due", "status", "next_send_at", "scheduled_at"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False)
  message_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  image_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
  redirect_target: Mapped[str | None] = mapped_column(Text, nullable=True)
  scheduled_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
  frequency: Mapped[str] = mapped_column(String, nullable=False)
  next_send_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  recipient_mode: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'not_set'"))
  recipient_ids: Mapped[list | None] = mapped_column(JSONB, nullable=True)
  phone_numbers: Mapped[list] = mapped_column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
  attribute_filter: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  last_sent_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  total_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  total_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
  created_by: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  lease_owner: Mapped[str | None] = mapped_column(String, nullable=True)
  lease_expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
