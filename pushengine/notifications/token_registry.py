"""Per-recipient push address lookup and revocation."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from pushengine.notifications.contracts import CHANNEL_EXPO, CHANNEL_FCM, PushAddress, PushAddressBook
from pushengine.storage.directory_repo import RecipientDirectory
from pushengine.storage.push_tokens_repo import PushTokenStore

logger = logging.getLogger(__name__)


class TokenRegistry:
  """Partition a recipient set's addresses by channel."""

  def __init__(self, directory: RecipientDirectory, token_store: PushTokenStore | None = None) -> None:
    self._directory = directory
    self._token_store = token_store

  async def lookup(self, recipient_ids: Iterable[str]) -> PushAddressBook:
    ids = sorted(set(recipient_ids))
    if not ids:
      return PushAddressBook()

    raw = await self._directory.find_addresses(ids)

    expo = tuple(PushAddress(recipient_id=recipient_id, token=raw.expo_tokens[recipient_id], channel=CHANNEL_EXPO) for recipient_id in ids if raw.expo_tokens.get(recipient_id))

    # A token shared by two recipients is sent once, to its first owner.
    seen_tokens: set[str] = set()
    fcm: list[PushAddress] = []
    for recipient_id, token in raw.fcm_tokens:
      if not token or token in seen_tokens:
        continue
      seen_tokens.add(token)
      fcm.append(PushAddress(recipient_id=recipient_id, token=token, channel=CHANNEL_FCM))

    reachable = {address.recipient_id for address in expo} | {address.recipient_id for address in fcm}
    unreachable = frozenset(recipient_id for recipient_id in ids if recipient_id not in reachable)
    logger.debug("Token lookup recipients=%d expo=%d fcm=%d unreachable=%d", len(ids), len(expo), len(fcm), len(unreachable))
    return PushAddressBook(expo=expo, fcm=tuple(fcm), unreachable=unreachable)

  async def revoke(self, addresses: Sequence[PushAddress]) -> None:
    """Deactivate tokens reported as no longer registered; failures are logged, not raised."""
    if not addresses or self._token_store is None:
      return

    expo_tokens = sorted({address.token for address in addresses if address.channel == CHANNEL_EXPO})
    fcm_tokens = sorted({address.token for address in addresses if address.channel == CHANNEL_FCM})
    try:
      if expo_tokens:
        cleared = await self._token_store.clear_expo_tokens(expo_tokens)
        logger.info("Cleared %d unregistered Expo tokens", cleared)
      if fcm_tokens:
        deactivated = await self._token_store.deactivate_fcm_tokens(fcm_tokens)
        logger.info("Deactivated %d unregistered FCM tokens", deactivated)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed revoking unregistered push tokens: %s", exc, exc_info=True)
