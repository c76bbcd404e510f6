"""Request payloads accepted by the notification job write path."""

from __future__ import annotations

import datetime
import re
import urllib.parse
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

from pushengine.jobs.models import BROADCAST, NOT_SET, AttributeFilter, Frequency, Recipients, SpecificRecipients

_DATA_IMAGE_RE = re.compile(r"^data:image/(jpeg|jpg|png|gif|webp|svg\+xml);base64,[A-Za-z0-9+/=]+$")


def _to_camel(string: str) -> str:
  """Convert snake_case to camelCase so the API accepts frontend-style payloads."""
  parts = string.split("_")
  if not parts:
    return string
  return parts[0] + "".join(part[:1].upper() + part[1:] for part in parts[1:])


def validate_redirect_target(value: str | None) -> str | None:
  """Accept absolute http(s) URLs only; protocol-relative links are rejected."""
  if value is None:
    return None
  normalized = value.strip()
  if normalized.startswith("//"):
    raise PydanticCustomError("redirect_protocol_relative", "redirect target cannot be a protocol-relative URL.")
  parsed = urllib.parse.urlparse(normalized)
  if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
    raise PydanticCustomError("redirect_scheme", "redirect target must be an absolute http or https URL.")
  return normalized


def validate_image_ref(value: str | None) -> str | None:
  """Accept http(s) image URLs or base64 image data URIs."""
  if value is None:
    return None
  normalized = value.strip()
  if _DATA_IMAGE_RE.fullmatch(normalized):
    return normalized
  parsed = urllib.parse.urlparse(normalized)
  if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
    raise PydanticCustomError("image_ref_format", "image must be an http(s) URL or a base64 data:image URI.")
  return normalized


def validate_aware_datetime(value: datetime.datetime | None) -> datetime.datetime | None:
  """Reject naive timestamps and normalise to UTC."""
  if value is None:
    return None
  if value.tzinfo is None or value.utcoffset() is None:
    raise PydanticCustomError("datetime_naive", "timestamp must include a timezone offset.")
  return value.astimezone(datetime.UTC)


AwareDatetime = Annotated[datetime.datetime, AfterValidator(validate_aware_datetime)]
ImageRef = Annotated[str, AfterValidator(validate_image_ref)]
RedirectTarget = Annotated[str, AfterValidator(validate_redirect_target)]


class AttributeFilterPayload(BaseModel):
  """Known attribute filter keys; omitted keys place no constraint."""

  institution_id: str | None = None
  program_id: str | None = None
  stage: str | None = None
  language: str | None = None
  model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=_to_camel)

  def to_filter(self) -> AttributeFilter:
    return AttributeFilter(institution_id=self.institution_id, program_id=self.program_id, stage=self.stage, language=self.language)


class _RecipientsPayload(BaseModel):
  recipients: list[str] | None = None
  model_config = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=_to_camel)

  @field_validator("recipients")
  @classmethod
  def validate_recipients(cls, value: list[str] | None) -> list[str] | None:
    """An explicit recipient list must name at least one id; null means broadcast."""
    if value is None:
      return None
    cleaned = list(dict.fromkeys(item.strip() for item in value if item.strip()))
    if not cleaned:
      raise PydanticCustomError("recipients_empty", "recipients must list at least one id, or be null to broadcast.")
    return cleaned

  def recipients_value(self) -> Recipients | None:
    """Return the targeting union, or None when the field was not supplied."""
    if "recipients" not in self.model_fields_set:
      return None
    if self.recipients is None:
      return BROADCAST
    return SpecificRecipients(ids=tuple(self.recipients))


class NotificationJobCreate(_RecipientsPayload):
  """Payload for creating a notification job.

  ``recipients`` is three-state: omitted (no explicit targeting), ``null``
  (broadcast to every active recipient) or a non-empty id list.
  """

  title: str = Field(min_length=1, max_length=200)
  body: str = Field(min_length=1, max_length=4000)
  message_type: str = Field(min_length=1, max_length=64)
  scheduled_at: AwareDatetime
  frequency: Frequency = Frequency.ONCE
  phone_numbers: list[str] = Field(default_factory=list)
  attribute_filter: AttributeFilterPayload | None = None
  image_ref: ImageRef | None = None
  redirect_target: RedirectTarget | None = None
  created_by: str = Field(min_length=1)

  def targeting(self) -> Recipients:
    return self.recipients_value() or NOT_SET


class NotificationJobUpdate(_RecipientsPayload):
  """Partial update; omitted fields keep their stored value."""

  title: str | None = Field(default=None, min_length=1, max_length=200)
  body: str | None = Field(default=None, min_length=1, max_length=4000)
  message_type: str | None = Field(default=None, min_length=1, max_length=64)
  scheduled_at: AwareDatetime | None = None
  frequency: Frequency | None = None
  phone_numbers: list[str] | None = None
  attribute_filter: AttributeFilterPayload | None = None
  image_ref: ImageRef | None = None
  redirect_target: RedirectTarget | None = None

  def supplied(self, name: str) -> bool:
    return name in self.model_fields_set


class AdhocSendRequest(_RecipientsPayload):
  """One-shot send outside any job. ``recipients`` must be supplied; ``null`` broadcasts."""

  title: str = Field(min_length=1, max_length=200)
  body: str = Field(min_length=1, max_length=4000)
  message_type: str = Field(min_length=1, max_length=64)
  language: str | None = None
  image_ref: ImageRef | None = None
  redirect_target: RedirectTarget | None = None
