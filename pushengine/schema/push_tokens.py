"""SQLAlchemy model for FCM registration tokens."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from pushengine.core.database import Base


class PushToken(Base):
  """Persist a single FCM registration token for a user."""

  __tablename__ = "notification_tokens"
  __table_args__ = (Index("ux_notification_tokens_user_token", "user_id", "token", unique=True),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
  token: Mapped[str] = mapped_column(Text, nullable=False, index=True)
  platform: Mapped[str | None] = mapped_column(String, nullable=True)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
