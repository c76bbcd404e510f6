"""Resolve a job's targeting strategy into concrete recipient ids."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pushengine.jobs.errors import TargetingError
from pushengine.jobs.models import AttributeFilter, Broadcast, NotificationJobRecord, NotSet, SpecificRecipients
from pushengine.storage.directory_repo import RecipientDirectory, normalize_phone_number

logger = logging.getLogger(__name__)


class TargetingResolver:
  """Apply the first matching strategy: recipients, then phone numbers, then attribute filter."""

  def __init__(self, directory: RecipientDirectory) -> None:
    self._directory = directory

  async def resolve(self, job: NotificationJobRecord) -> set[str]:
    if not isinstance(job.recipients, NotSet):
      language = job.attribute_filter.language if job.attribute_filter is not None else None
      return await self.resolve_recipients(job.recipients, language=language)

    if job.phone_numbers:
      return await self.resolve_phone_numbers(job.phone_numbers)

    if job.attribute_filter is not None and not job.attribute_filter.is_empty():
      resolved = set(await self._directory.find_active_recipients(job.attribute_filter))
      logger.debug("Job %s attribute filter %s resolved %d recipients", job.id, job.attribute_filter.to_dict(), len(resolved))
      return resolved

    raise TargetingError(f"Notification job {job.id} has no targeting strategy.")

  async def resolve_recipients(self, recipients: Broadcast | SpecificRecipients, *, language: str | None = None) -> set[str]:
    """Resolve an explicit recipients value; also used for sends outside any job."""
    if isinstance(recipients, Broadcast):
      # Broadcast honours only the language constraint.
      language_filter = AttributeFilter(language=language) if language is not None else None
      resolved = set(await self._directory.find_active_recipients(language_filter))
      logger.debug("Broadcast resolved %d recipients (language=%s)", len(resolved), language)
      return resolved

    # Explicit ids skip the active filter; unknown ids are dropped.
    requested = list(dict.fromkeys(recipients.ids))
    resolved = set(await self._directory.find_existing(requested))
    if len(resolved) != len(requested):
      logger.info("Dropped %d listed recipients that no longer exist", len(requested) - len(resolved))
    return resolved

  async def resolve_phone_numbers(self, phone_numbers: Sequence[str]) -> set[str]:
    numbers = list(dict.fromkeys(normalize_phone_number(number) for number in phone_numbers if number.strip()))
    resolved = set(await self._directory.find_by_contact(numbers))
    logger.debug("Phone lookup resolved %d of %d numbers", len(resolved), len(numbers))
    return resolved
