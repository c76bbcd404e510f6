from __future__ import annotations

import pytest

from pushengine.jobs.type_mapper import routing_key_for
from pushengine.notifications.contracts import PushMessage


@pytest.mark.parametrize(
  ("message_type", "expected"),
  [("CURRENT_AFFAIRS", "current-affair"), ("gk", "general-knowledge"), ("GOVT_VACANCY", "govt-vacancy"), ("CMS", "admin"), (" update ", "announcement"), ("Quiz_Result", "quiz_result")],
)
def test_routing_key_for(message_type, expected):
  assert routing_key_for(message_type) == expected


def test_payload_data_carries_routing_fields():
  message = PushMessage(title="t", body="b", message_type="DAILY_DIGEST", image_ref="https://cdn.example.com/a.png", redirect_target="https://example.com/digest")

  payload = message.payload_data(job_id="job-1")

  assert payload == {"type": "daily-digest", "notificationType": "DAILY_DIGEST", "jobId": "job-1", "redirectUrl": "https://example.com/digest", "image": "https://cdn.example.com/a.png"}


def test_payload_data_omits_absent_optionals():
  payload = PushMessage(title="t", body="b", message_type="MCQ").payload_data()
  assert payload == {"type": "mcq", "notificationType": "MCQ"}
