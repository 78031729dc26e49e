"""Tests for the Telegram transport."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import TelegramError

from ytdigest.adapters.telegram_adapter import AdapterError, TelegramAdapter
from ytdigest.core.models import InboundOutcome, OutcomeKind


@pytest.fixture
def orchestrator() -> AsyncMock:
    mock = AsyncMock()
    mock.handle_message.return_value = InboundOutcome(kind=OutcomeKind.QUEUED, message="queued", request_id="req-1")
    return mock


@pytest.fixture
def adapter(orchestrator: AsyncMock) -> TelegramAdapter:
    telegram_adapter = TelegramAdapter("123:abc", orchestrator)
    telegram_adapter.app = MagicMock()
    telegram_adapter.app.bot = AsyncMock()
    return telegram_adapter


def _update(chat_id: int, text: str | None) -> MagicMock:
    update = MagicMock()
    update.effective_chat.id = chat_id
    update.effective_message.text = text
    return update


@pytest.mark.asyncio
async def test_deliver_sends_to_every_party(adapter: TelegramAdapter) -> None:
    await adapter.deliver(["1", "2"], "summary")

    sent = [call.kwargs for call in adapter.bot.send_message.await_args_list]
    assert sent == [{"chat_id": "1", "text": "summary"}, {"chat_id": "2", "text": "summary"}]


@pytest.mark.asyncio
async def test_deliver_isolates_failed_recipient(adapter: TelegramAdapter) -> None:
    adapter.bot.send_message.side_effect = [TelegramError("blocked"), None]

    await adapter.deliver(["1", "2"], "summary")

    assert adapter.bot.send_message.await_count == 2


@pytest.mark.asyncio
async def test_long_payload_is_chunked(adapter: TelegramAdapter) -> None:
    adapter.max_message_size = 10

    await adapter.deliver(["1"], "aaaa bbbb cccc dddd")

    texts = [call.kwargs["text"] for call in adapter.bot.send_message.await_args_list]
    assert texts == ["aaaa bbbb", "cccc dddd"]


@pytest.mark.asyncio
async def test_text_message_is_routed_and_replied(adapter: TelegramAdapter, orchestrator: AsyncMock) -> None:
    await adapter._handle_text_message(_update(42, "https://youtu.be/dQw4w9WgXcQ"), MagicMock())

    orchestrator.handle_message.assert_awaited_once_with("42", "https://youtu.be/dQw4w9WgXcQ")
    adapter.bot.send_message.assert_awaited_once_with(chat_id="42", text="queued")


@pytest.mark.asyncio
async def test_empty_message_is_ignored(adapter: TelegramAdapter, orchestrator: AsyncMock) -> None:
    await adapter._handle_text_message(_update(42, None), MagicMock())

    orchestrator.handle_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_non_whitelisted_chat_is_ignored(orchestrator: AsyncMock) -> None:
    adapter = TelegramAdapter("123:abc", orchestrator, allowed_chat_ids=[7])
    adapter.app = MagicMock()
    adapter.app.bot = AsyncMock()

    await adapter._handle_text_message(_update(42, "https://youtu.be/dQw4w9WgXcQ"), MagicMock())
    await adapter._handle_text_message(_update(7, "https://youtu.be/dQw4w9WgXcQ"), MagicMock())

    orchestrator.handle_message.assert_awaited_once_with("7", "https://youtu.be/dQw4w9WgXcQ")


@pytest.mark.asyncio
async def test_reply_failure_is_contained(adapter: TelegramAdapter) -> None:
    adapter.bot.send_message.side_effect = TelegramError("network")

    await adapter._handle_text_message(_update(42, "https://youtu.be/dQw4w9WgXcQ"), MagicMock())


def test_bot_before_start_raises(orchestrator: AsyncMock) -> None:
    adapter = TelegramAdapter("123:abc", orchestrator)

    with pytest.raises(AdapterError):
        _ = adapter.bot
