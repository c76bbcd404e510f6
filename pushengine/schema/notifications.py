"""SQLAlchemy model for per-recipient notification history."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from pushengine.core.database import Base


class DeliveryRecord(Base):
  """Persist one notification per recipient, independent of push outcome."""

  __tablename__ = "notifications"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
  job_id: Mapped[str | None] = mapped_column(String, ForeignKey("notification_jobs.id", ondelete="SET NULL"), index=True, nullable=True)
  message_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  body: Mapped[str] = mapped_column(Text, nullable=False)
  data_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
