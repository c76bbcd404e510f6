"""Mapping from job message types to client routing keys."""

from __future__ import annotations

_ROUTING_KEYS: dict[str, str] = {
  "CURRENT_AFFAIR": "current-affair",
  "CURRENT_AFFAIRS": "current-affair",
  "CA": "current-affair",
  "ARTICLE": "current-affair",
  "CONTENT": "current-affair",
  "GENERAL_KNOWLEDGE": "general-knowledge",
  "GK": "general-knowledge",
  "GOVT_VACANCY": "govt-vacancy",
  "VACANCY": "govt-vacancy",
  "DAILY_DIGEST": "daily-digest",
  "KNOW_YOURSELF": "know-yourself",
  "MCQ": "mcq",
  "EXAM": "exam",
  "JOB": "job",
  "ADMIN": "admin",
  "CMS": "admin",
  "SYSTEM": "admin",
  "EVENT": "event",
  "COLLEGE_EVENT": "event",
  "ANNOUNCEMENT": "announcement",
  "UPDATE": "announcement",
}


def routing_key_for(message_type: str) -> str:
  """Return the client-side routing key for a message type, defaulting to the lower-cased type."""
  return _ROUTING_KEYS.get(message_type.strip().upper(), message_type.strip().lower())
