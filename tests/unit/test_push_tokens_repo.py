from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from pushengine.storage.push_tokens_repo import PushTokenRepository


@pytest.fixture
def mock_session(monkeypatch):
  session = AsyncMock()
  result = MagicMock()
  result.rowcount = 2
  session.execute.return_value = result

  factory = MagicMock()
  factory.return_value.__aenter__.return_value = session
  factory.return_value.__aexit__.return_value = False
  monkeypatch.setattr("pushengine.storage.push_tokens_repo.get_session_factory", lambda: factory)
  return session


@pytest.mark.anyio
async def test_register_fcm_token_upserts(mock_session):
  await PushTokenRepository().register_fcm_token(user_id="u1", token="tok", platform="android")

  statement = mock_session.execute.await_args.args[0]
  assert "ON CONFLICT" in str(statement.compile(dialect=postgresql.dialect()))
  mock_session.commit.assert_awaited_once()


@pytest.mark.anyio
async def test_deactivate_fcm_tokens_returns_rowcount(mock_session):
  assert await PushTokenRepository().deactivate_fcm_tokens(["a", "b"]) == 2
  mock_session.commit.assert_awaited_once()


@pytest.mark.anyio
async def test_clear_expo_tokens_skips_empty_input(mock_session):
  assert await PushTokenRepository().clear_expo_tokens([]) == 0
  mock_session.execute.assert_not_awaited()


@pytest.mark.anyio
async def test_save_and_clear_expo_token(mock_session):
  repo = PushTokenRepository()
  await repo.save_expo_token(user_id="u1", token="ExponentPushToken[abc]")
  await repo.clear_expo_token_for_user(user_id="u1")

  assert mock_session.execute.await_count == 2
  assert mock_session.commit.await_count == 2


@pytest.mark.anyio
async def test_writes_are_skipped_without_database(monkeypatch):
  monkeypatch.setattr("pushengine.storage.push_tokens_repo.get_session_factory", lambda: None)
  repo = PushTokenRepository()

  assert await repo.deactivate_fcm_tokens(["a"]) == 0
  await repo.register_fcm_token(user_id="u1", token="tok")
