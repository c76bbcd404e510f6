"""Domain models for scheduled notification jobs."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any


class Frequency(str, Enum):
  ONCE = "ONCE"
  HOURLY = "HOURLY"
  DAILY = "DAILY"
  WEEKLY = "WEEKLY"
  MONTHLY = "MONTHLY"


class JobStatus(str, Enum):
  PENDING = "PENDING"
  ACTIVE = "ACTIVE"
  COMPLETED = "COMPLETED"
  CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED})


@dataclass(frozen=True)
class NotSet:
  """No explicit recipient targeting; another strategy decides."""


@dataclass(frozen=True)
class Broadcast:
  """Target every active recipient, optionally narrowed by language."""


@dataclass(frozen=True)
class SpecificRecipients:
  """Target exactly the listed recipient ids."""

  ids: tuple[str, ...]


Recipients = NotSet | Broadcast | SpecificRecipients

NOT_SET = NotSet()
BROADCAST = Broadcast()

RECIPIENTS_NOT_SET = "not_set"
RECIPIENTS_BROADCAST = "broadcast"
RECIPIENTS_SPECIFIC = "specific"


def recipients_to_storage(recipients: Recipients) -> tuple[str, list[str] | None]:
  """Flatten the recipient union into a (mode, ids) pair for persistence."""
  if isinstance(recipients, SpecificRecipients):
    return RECIPIENTS_SPECIFIC, list(recipients.ids)
  if isinstance(recipients, Broadcast):
    return RECIPIENTS_BROADCAST, None
  return RECIPIENTS_NOT_SET, None


def recipients_from_storage(mode: str | None, ids: list[str] | None) -> Recipients:
  """Rebuild the recipient union from its persisted (mode, ids) pair."""
  if mode == RECIPIENTS_SPECIFIC:
    return SpecificRecipients(ids=tuple(ids or ()))
  if mode == RECIPIENTS_BROADCAST:
    return BROADCAST
  return NOT_SET


@dataclass(frozen=True)
class AttributeFilter:
  """Conjunctive predicate over recipient attributes. A None key places no constraint."""

  institution_id: str | None = None
  program_id: str | None = None
  stage: str | None = None
  language: str | None = None

  def is_empty(self) -> bool:
    return all(getattr(self, item.name) is None for item in fields(self))

  def to_dict(self) -> dict[str, str]:
    """Return only the constrained keys."""
    return {item.name: getattr(self, item.name) for item in fields(self) if getattr(self, item.name) is not None}

  @classmethod
  def from_dict(cls, raw: dict[str, Any] | None) -> AttributeFilter | None:
    """Build a filter from a stored mapping; unknown keys raise ValueError."""
    if raw is None:
      return None
    allowed = {item.name for item in fields(cls)}
    unknown = sorted(set(raw) - allowed)
    if unknown:
      raise ValueError(f"Unknown attribute filter keys: {', '.join(unknown)}")
    return cls(**{key: (str(value) if value is not None else None) for key, value in raw.items()})


@dataclass(frozen=True)
class NotificationJobRecord:
  """A declarative, possibly-recurring notification campaign."""

  id: str
  title: str
  body: str
  message_type: str
  scheduled_at: datetime
  frequency: Frequency
  status: JobStatus
  created_by: str
  created_at: datetime
  updated_at: datetime
  recipients: Recipients = NOT_SET
  phone_numbers: tuple[str, ...] = field(default_factory=tuple)
  attribute_filter: AttributeFilter | None = None
  image_ref: str | None = None
  redirect_target: str | None = None
  next_send_at: datetime | None = None
  last_sent_at: datetime | None = None
  total_sent: int = 0
  total_failed: int = 0
  lease_owner: str | None = None
  lease_expires_at: datetime | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES

  @property
  def due_at(self) -> datetime | None:
    """Return the fire time this job is waiting for, or None when it is not schedulable."""
    if self.status == JobStatus.PENDING:
      return self.scheduled_at
    if self.status == JobStatus.ACTIVE:
      return self.next_send_at
    return None

  def is_due(self, now: datetime) -> bool:
    due_at = self.due_at
    return due_at is not None and due_at <= now

  def is_leased(self, now: datetime) -> bool:
    return self.lease_owner is not None and self.lease_expires_at is not None and self.lease_expires_at > now

  def has_targeting(self) -> bool:
    """Return True when at least one targeting strategy is set."""
    if not isinstance(self.recipients, NotSet):
      return True
    if self.phone_numbers:
      return True
    return self.attribute_filter is not None and not self.attribute_filter.is_empty()


@dataclass(frozen=True)
class ExecutionOutcome:
  """Summary of one job execution attempt."""

  job_id: str
  executed: bool
  recipient_count: int = 0
  success_count: int = 0
  failure_count: int = 0
  reason: str | None = None
