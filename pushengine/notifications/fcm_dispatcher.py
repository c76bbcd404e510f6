"""Firebase Cloud Messaging batch channel."""

from __future__ import annotations

import logging
import re
import warnings
from collections.abc import Sequence

import firebase_admin
from firebase_admin import messaging
from starlette.concurrency import run_in_threadpool

from pushengine.notifications.contracts import CHANNEL_FCM, PushAddress, PushMessage, stringify_data
from pushengine.notifications.dispatcher import BatchingDispatcher, ChunkItemResult

logger = logging.getLogger(__name__)

FCM_MAX_BATCH_SIZE = 500

_FCM_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_:\-]{20,4096}$")


def is_fcm_token(token: str) -> bool:
  """Return True when the token looks like an FCM registration token."""
  return isinstance(token, str) and bool(_FCM_TOKEN_PATTERN.match(token))


class FcmDispatcher(BatchingDispatcher):
  """Firebase Admin SDK backed sender using `send_each` over registration tokens."""

  channel = CHANNEL_FCM

  def __init__(self, *, app: firebase_admin.App | None = None, timeout_seconds: float = 30.0, max_batch_size: int = FCM_MAX_BATCH_SIZE, max_concurrent_chunks: int = 4) -> None:
    if max_batch_size > FCM_MAX_BATCH_SIZE:
      raise ValueError(f"FCM accepts at most {FCM_MAX_BATCH_SIZE} messages per batch.")
    super().__init__(max_batch_size=max_batch_size, timeout_seconds=timeout_seconds, max_concurrent_chunks=max_concurrent_chunks)
    self._app = app

  def is_valid_token(self, token: str) -> bool:
    return is_fcm_token(token)

  def build_messages(self, chunk: Sequence[PushAddress], message: PushMessage, *, job_id: str | None = None) -> list[messaging.Message]:
    """Shape one message per registration token; images need platform-specific fields to render."""
    image = message.image_ref
    apns = None
    if image:
      # iOS only renders images through a notification service extension.
      apns = messaging.APNSConfig(headers={"mutable-content": "1"}, payload=messaging.APNSPayload(aps=messaging.Aps(mutable_content=True, sound="default")), fcm_options=messaging.APNSFCMOptions(image=image))

    data = stringify_data(message.payload_data(job_id=job_id))
    notification = messaging.Notification(title=message.title, body=message.body, image=image)
    android = messaging.AndroidConfig(priority="high", notification=messaging.AndroidNotification(channel_id="default", sound="default", image=image))
    # Clients register FCM registration tokens, which newer SDKs flag as deprecated in favour of installation ids.
    with warnings.catch_warnings():
      warnings.simplefilter("ignore", DeprecationWarning)
      return [messaging.Message(token=address.token, data=data, notification=notification, android=android, apns=apns) for address in chunk]

  async def send_chunk(self, chunk: Sequence[PushAddress], message: PushMessage, *, job_id: str | None = None) -> list[ChunkItemResult]:
    messages = self.build_messages(chunk, message, job_id=job_id)
    batch_response = await run_in_threadpool(messaging.send_each, messages, app=self._app)
    return [_response_to_result(response) for response in batch_response.responses]


def _response_to_result(response: messaging.SendResponse) -> ChunkItemResult:
  """Classify one FCM send response."""
  if response.success:
    return ChunkItemResult(success=True)
  exc = response.exception
  if exc is None:
    return ChunkItemResult(success=False, reason="unknown_error")
  return ChunkItemResult(success=False, reason=f"{type(exc).__name__}: {exc}", revoke=isinstance(exc, messaging.UnregisteredError))
