"""Errors raised by the notification job write path and execution."""

from __future__ import annotations

from typing import Any


class NotificationJobError(Exception):
  """Base class for notification job failures."""


class JobValidationError(NotificationJobError):
  """Raised when a job definition is malformed."""

  def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None) -> None:
    super().__init__(message)
    self.details = details or []


class JobNotFoundError(NotificationJobError):
  """Raised when a job id does not exist."""

  def __init__(self, job_id: str) -> None:
    super().__init__(f"Notification job {job_id} not found.")
    self.job_id = job_id


class JobLifecycleError(NotificationJobError):
  """Raised when an operation is not allowed in the job's current state."""


class JobBusyError(NotificationJobError):
  """Raised when another worker holds the job's lease."""


class TargetingError(NotificationJobError):
  """Raised when a job reaches the resolver without a usable targeting strategy."""
