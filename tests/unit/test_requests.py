from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from pushengine.jobs.models import BROADCAST, NOT_SET, AttributeFilter, SpecificRecipients
from pushengine.jobs.requests import NotificationJobCreate, NotificationJobUpdate

BASE = {"title": "t", "body": "b", "messageType": "GK", "scheduledAt": "2025-03-10T14:30:00+05:30", "createdBy": "admin"}


def test_scheduled_at_is_normalised_to_utc():
  request = NotificationJobCreate.model_validate({**BASE, "recipients": None})
  assert request.scheduled_at == datetime(2025, 3, 10, 9, 0, tzinfo=UTC)


def test_recipients_three_states():
  assert NotificationJobCreate.model_validate(BASE).targeting() == NOT_SET
  assert NotificationJobCreate.model_validate({**BASE, "recipients": None}).targeting() == BROADCAST
  assert NotificationJobCreate.model_validate({**BASE, "recipients": ["a", " a ", "b"]}).targeting() == SpecificRecipients(ids=("a", "b"))


@pytest.mark.parametrize("value", ["https://example.com/page", "http://example.com"])
def test_redirect_target_accepts_absolute_http(value):
  assert NotificationJobCreate.model_validate({**BASE, "redirectTarget": value}).redirect_target == value


@pytest.mark.parametrize("value", ["//example.com/page", "javascript:alert(1)", "/relative/path", "mailto:a@example.com"])
def test_redirect_target_rejects_unsafe_values(value):
  with pytest.raises(ValidationError):
    NotificationJobCreate.model_validate({**BASE, "redirectTarget": value})


def test_image_ref_accepts_data_uri():
  value = "data:image/png;base64,iVBORw0KGgo="
  assert NotificationJobCreate.model_validate({**BASE, "imageRef": value}).image_ref == value


def test_attribute_filter_payload_maps_to_filter():
  request = NotificationJobCreate.model_validate({**BASE, "attributeFilter": {"institutionId": "i1", "language": "en"}})
  assert request.attribute_filter.to_filter() == AttributeFilter(institution_id="i1", language="en")


def test_update_tracks_supplied_fields():
  request = NotificationJobUpdate.model_validate({"imageRef": None})
  assert request.supplied("image_ref")
  assert not request.supplied("title")
  assert request.recipients_value() is None


def test_attribute_filter_from_dict_rejects_unknown_keys():
  assert AttributeFilter.from_dict({"stage": 2}) == AttributeFilter(stage="2")
  with pytest.raises(ValueError):
    AttributeFilter.from_dict({"city": "Pune"})
