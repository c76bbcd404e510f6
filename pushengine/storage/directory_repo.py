"""Read-only recipient directory consumed by targeting and token lookup."""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import func, select

from pushengine.core.database import get_session_factory
from pushengine.jobs.models import AttributeFilter
from pushengine.schema.push_tokens import PushToken
from pushengine.schema.users import StudentProfile, User

# asyncpg caps bind parameters per statement.
_ID_BATCH_SIZE = 5000
_PHONE_FORMATTING_PATTERN = r"[\s()-]"


@dataclass(frozen=True)
class RecipientAddresses:
  """Raw push addresses for a recipient set."""

  expo_tokens: dict[str, str] = field(default_factory=dict)
  fcm_tokens: list[tuple[str, str]] = field(default_factory=list)


class RecipientDirectory(Protocol):
  """Directory contract: read-only, no knowledge of campaigns."""

  async def find_active_recipients(self, attribute_filter: AttributeFilter | None) -> list[str]:
    """Return active recipient ids matching every constrained attribute."""

  async def find_by_contact(self, numbers: Sequence[str]) -> list[str]:
    """Return active recipient ids whose normalised contact number is listed."""

  async def find_existing(self, ids: Sequence[str]) -> list[str]:
    """Return the subset of ids that exist, regardless of active state."""

  async def find_addresses(self, ids: Sequence[str]) -> RecipientAddresses:
    """Return the Expo slot and active FCM tokens for the given ids."""


def _batched(values: Sequence[str], size: int = _ID_BATCH_SIZE) -> Iterator[list[str]]:
  for start in range(0, len(values), size):
    yield list(values[start : start + size])


def normalize_phone_number(raw: str) -> str:
  """Strip whitespace, dashes and parentheses from a contact number."""
  return re.sub(_PHONE_FORMATTING_PATTERN, "", raw)


def _lower(value: str | None) -> str | None:
  return value.strip().lower() if value is not None else None


class PostgresRecipientDirectory(RecipientDirectory):
  """Query users, student profiles and FCM tokens in Postgres."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def find_active_recipients(self, attribute_filter: AttributeFilter | None) -> list[str]:
    stmt = select(User.id).outerjoin(StudentProfile, StudentProfile.user_id == User.id).where(User.is_active.is_(True))
    if attribute_filter is not None:
      if attribute_filter.institution_id is not None:
        stmt = stmt.where(StudentProfile.institution_id == attribute_filter.institution_id)
      if attribute_filter.program_id is not None:
        stmt = stmt.where(StudentProfile.program_id == attribute_filter.program_id)
      if attribute_filter.stage is not None:
        stmt = stmt.where(StudentProfile.stage == attribute_filter.stage)
      if attribute_filter.language is not None:
        stmt = stmt.where(func.lower(User.preferred_language) == _lower(attribute_filter.language))
    async with self._session_factory() as session:
      return list((await session.execute(stmt)).scalars().all())

  async def find_by_contact(self, numbers: Sequence[str]) -> list[str]:
    normalized_column = func.regexp_replace(User.phone_number, _PHONE_FORMATTING_PATTERN, "", "g")
    found: list[str] = []
    async with self._session_factory() as session:
      for batch in _batched(list(numbers)):
        stmt = select(User.id).where(User.is_active.is_(True), normalized_column.in_(batch))
        found.extend((await session.execute(stmt)).scalars().all())
    return found

  async def find_existing(self, ids: Sequence[str]) -> list[str]:
    found: list[str] = []
    async with self._session_factory() as session:
      for batch in _batched(list(ids)):
        found.extend((await session.execute(select(User.id).where(User.id.in_(batch)))).scalars().all())
    return found

  async def find_addresses(self, ids: Sequence[str]) -> RecipientAddresses:
    addresses = RecipientAddresses()
    async with self._session_factory() as session:
      for batch in _batched(list(ids)):
        expo_stmt = select(User.id, User.expo_push_token).where(User.id.in_(batch), User.expo_push_token.is_not(None))
        for user_id, token in (await session.execute(expo_stmt)).all():
          addresses.expo_tokens[user_id] = token

        fcm_stmt = select(PushToken.user_id, PushToken.token).where(PushToken.user_id.in_(batch), PushToken.is_active.is_(True)).order_by(PushToken.created_at.asc())
        addresses.fcm_tokens.extend((user_id, token) for user_id, token in (await session.execute(fcm_stmt)).all())
    return addresses


@dataclass
class DirectoryRecipient:
  """One recipient held by the in-memory directory."""

  id: str
  is_active: bool = True
  phone_number: str | None = None
  language: str | None = None
  institution_id: str | None = None
  program_id: str | None = None
  stage: str | None = None
  expo_push_token: str | None = None
  fcm_tokens: dict[str, bool] = field(default_factory=dict)

  def matches(self, attribute_filter: AttributeFilter | None) -> bool:
    if attribute_filter is None:
      return True
    if attribute_filter.institution_id is not None and self.institution_id != attribute_filter.institution_id:
      return False
    if attribute_filter.program_id is not None and self.program_id != attribute_filter.program_id:
      return False
    if attribute_filter.stage is not None and self.stage != attribute_filter.stage:
      return False
    if attribute_filter.language is not None and _lower(self.language) != _lower(attribute_filter.language):
      return False
    return True


class InMemoryRecipientDirectory(RecipientDirectory):
  """Directory backed by a dict; also accepts token revocations."""

  def __init__(self, recipients: Iterable[DirectoryRecipient] = ()) -> None:
    self._recipients: dict[str, DirectoryRecipient] = {recipient.id: recipient for recipient in recipients}

  def add(self, recipient: DirectoryRecipient) -> None:
    self._recipients[recipient.id] = recipient

  def get(self, recipient_id: str) -> DirectoryRecipient | None:
    return self._recipients.get(recipient_id)

  async def find_active_recipients(self, attribute_filter: AttributeFilter | None) -> list[str]:
    return [recipient.id for recipient in self._recipients.values() if recipient.is_active and recipient.matches(attribute_filter)]

  async def find_by_contact(self, numbers: Sequence[str]) -> list[str]:
    wanted = set(numbers)
    return [recipient.id for recipient in self._recipients.values() if recipient.is_active and recipient.phone_number and normalize_phone_number(recipient.phone_number) in wanted]

  async def find_existing(self, ids: Sequence[str]) -> list[str]:
    return [recipient_id for recipient_id in ids if recipient_id in self._recipients]

  async def find_addresses(self, ids: Sequence[str]) -> RecipientAddresses:
    addresses = RecipientAddresses()
    for recipient_id in ids:
      recipient = self._recipients.get(recipient_id)
      if recipient is None:
        continue
      if recipient.expo_push_token:
        addresses.expo_tokens[recipient_id] = recipient.expo_push_token
      addresses.fcm_tokens.extend((recipient_id, token) for token, active in recipient.fcm_tokens.items() if active)
    return addresses

  async def deactivate_fcm_tokens(self, tokens: Sequence[str]) -> int:
    wanted = set(tokens)
    count = 0
    for recipient in self._recipients.values():
      for token in list(recipient.fcm_tokens):
        if token in wanted and recipient.fcm_tokens[token]:
          recipient.fcm_tokens[token] = False
          count += 1
    return count

  async def clear_expo_tokens(self, tokens: Sequence[str]) -> int:
    wanted = set(tokens)
    count = 0
    for recipient in self._recipients.values():
      if recipient.expo_push_token in wanted:
        recipient.expo_push_token = None
        count += 1
    return count
