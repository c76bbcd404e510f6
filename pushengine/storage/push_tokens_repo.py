"""Repository helpers for push token persistence."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert

from pushengine.core.database import get_session_factory
from pushengine.schema.push_tokens import PushToken
from pushengine.schema.users import User

logger = logging.getLogger(__name__)


class PushTokenStore(Protocol):
  """Write contract used to revoke tokens a channel reported as unregistered."""

  async def deactivate_fcm_tokens(self, tokens: Sequence[str]) -> int:
    """Mark FCM registry entries inactive and return the affected row count."""

  async def clear_expo_tokens(self, tokens: Sequence[str]) -> int:
    """Clear Expo device slots holding these tokens and return the affected row count."""


class PushTokenRepository(PushTokenStore):
  """Persist and revoke push tokens in Postgres."""

  async def register_fcm_token(self, *, user_id: str, token: str, platform: str | None = None) -> None:
    """Insert or reactivate an FCM token for a user."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      # Re-registering a known token reactivates it instead of duplicating the row.
      stmt = insert(PushToken).values(user_id=user_id, token=token, platform=platform, is_active=True)
      stmt = stmt.on_conflict_do_update(index_elements=["user_id", "token"], set_={"is_active": True, "platform": platform, "updated_at": func.now()})
      await session.execute(stmt)
      await session.commit()

  async def save_expo_token(self, *, user_id: str, token: str) -> None:
    """Store the user's current Expo device token, replacing any previous one."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      await session.execute(update(User).where(User.id == user_id).values(expo_push_token=token))
      await session.commit()

  async def clear_expo_token_for_user(self, *, user_id: str) -> None:
    """Remove the Expo device slot for a user, e.g. on logout."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      await session.execute(update(User).where(User.id == user_id).values(expo_push_token=None))
      await session.commit()

  async def deactivate_fcm_tokens(self, tokens: Sequence[str]) -> int:
    if not tokens:
      return 0
    session_factory = get_session_factory()
    if session_factory is None:
      return 0

    async with session_factory() as session:
      stmt = update(PushToken).where(PushToken.token.in_(list(tokens)), PushToken.is_active.is_(True)).values(is_active=False, updated_at=func.now())
      result = await session.execute(stmt)
      await session.commit()
      return int(result.rowcount or 0)

  async def clear_expo_tokens(self, tokens: Sequence[str]) -> int:
    if not tokens:
      return 0
    session_factory = get_session_factory()
    if session_factory is None:
      return 0

    async with session_factory() as session:
      result = await session.execute(update(User).where(User.expo_push_token.in_(list(tokens))).values(expo_push_token=None))
      await session.commit()
      return int(result.rowcount or 0)
