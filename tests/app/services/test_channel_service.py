"""Tests for ChannelService."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from app.config import Settings
from app.constants.channels import ChannelType, ConversationStatus, MessageStatus, SenderType
from app.core.exceptions import (
    ChannelNotFoundError,
    ConfigValidationError,
    ConnectorConnectionError,
    ConversationNotFoundError,
    ConversationStateError,
    MessageNotFoundError,
    SendDeliveryError,
    UnknownChannelTypeError,
    WebhookNormalizationError,
)
from app.core.secrets import MASK, open_config
from app.models.channel import Channel
from app.models.conversation import Conversation
from app.models.conversation_message import ConversationMessage
from app.schemas.channel import ChannelCreate, ChannelUpdate
from app.schemas.channel_messages import (
    ChannelConnectionResult,
    OutgoingMessage,
    SendMessageResult,
    WebhookPayload,
)
from app.services.channel_service import ChannelService
from tests.fixtures.channel_fixtures import TELEGRAM_TOKEN

NEW_TELEGRAM_TOKEN = "654321:BBHdqTcvCH1vGWJxfSeofSAs0K5Q"


def _mock_bot(bot_id=42):
    bot = MagicMock()
    bot.get_me = AsyncMock(return_value=MagicMock(id=bot_id))
    bot.delete_webhook = AsyncMock(return_value=True)
    return bot


# --- channel lifecycle -------------------------------------------------------


@pytest.mark.asyncio
async def test_create_chat_widget_channel(db, channel_service, workspace_id):
    channel = await channel_service.create_channel(
        ChannelCreate(
            workspace_id=workspace_id,
            type=ChannelType.CHAT_WIDGET,
            name="Website Chat",
            config={"welcome_message": "Hi there"},
        )
    )

    assert channel.id is not None
    assert channel.status == "active"
    assert channel.webhook_url == f"/api/widget/chat/{channel.id}"
    assert channel.last_sync_at is not None
    assert db.query(Channel).count() == 1


@pytest.mark.asyncio
async def test_create_channel_rejects_invalid_config(db, channel_service, workspace_id):
    with pytest.raises(ConfigValidationError) as exc:
        await channel_service.create_channel(
            ChannelCreate(
                workspace_id=workspace_id,
                type=ChannelType.EMAIL,
                name="Support",
                config={"email_from_name": "Support"},
            )
        )
    assert any("email_from" in e for e in exc.value.errors)
    assert db.query(Channel).count() == 0


@pytest.mark.asyncio
async def test_create_channel_without_connector(db, channel_service, workspace_id):
    with pytest.raises(UnknownChannelTypeError):
        await channel_service.create_channel(
            ChannelCreate(
                workspace_id=workspace_id, type=ChannelType.FACEBOOK, name="FB"
            )
        )
    assert db.query(Channel).count() == 0


@pytest.mark.asyncio
async def test_failed_connect_leaves_no_channel(
    db, channel_service, registry, workspace_id, monkeypatch
):
    connector = registry.require(ChannelType.CHAT_WIDGET)
    monkeypatch.setattr(
        connector,
        "connect",
        AsyncMock(return_value=ChannelConnectionResult(success=False, error="nope")),
    )
    disconnect = AsyncMock()
    monkeypatch.setattr(connector, "disconnect", disconnect)

    with pytest.raises(ConnectorConnectionError, match="nope"):
        await channel_service.create_channel(
            ChannelCreate(
                workspace_id=workspace_id, type=ChannelType.CHAT_WIDGET, name="Widget"
            )
        )
    disconnect.assert_awaited_once()
    assert db.query(Channel).count() == 0


@pytest.mark.asyncio
async def test_connect_exception_leaves_no_channel(
    db, channel_service, registry, workspace_id, monkeypatch
):
    connector = registry.require(ChannelType.CHAT_WIDGET)
    monkeypatch.setattr(connector, "connect", AsyncMock(side_effect=RuntimeError("boom")))

    with pytest.raises(ConnectorConnectionError):
        await channel_service.create_channel(
            ChannelCreate(
                workspace_id=workspace_id, type=ChannelType.CHAT_WIDGET, name="Widget"
            )
        )
    assert db.query(Channel).count() == 0


@pytest.mark.asyncio
async def test_connect_timeout_disconnects_before_removing(
    db, registry, workspace_id, monkeypatch
):
    connector = registry.require(ChannelType.CHAT_WIDGET)

    async def slow(channel):
        await asyncio.sleep(1)

    disconnect = AsyncMock()
    monkeypatch.setattr(connector, "connect", slow)
    monkeypatch.setattr(connector, "disconnect", disconnect)
    service = ChannelService(db, registry, Settings(connect_timeout_seconds=0.05))

    with pytest.raises(ConnectorConnectionError, match="Timed out"):
        await service.create_channel(
            ChannelCreate(
                workspace_id=workspace_id, type=ChannelType.CHAT_WIDGET, name="Widget"
            )
        )

    disconnect.assert_awaited_once()
    assert db.query(Channel).count() == 0


@pytest.mark.asyncio
async def test_create_telegram_channel_seals_token(
    db, channel_service, registry, workspace_id
):
    connector = registry.require(ChannelType.TELEGRAM)
    with patch.object(connector, "_get_bot", return_value=_mock_bot(4242)):
        channel = await channel_service.create_channel(
            ChannelCreate(
                workspace_id=workspace_id,
                type=ChannelType.TELEGRAM,
                name="Bot",
                config={"bot_token": TELEGRAM_TOKEN},
            )
        )

    assert channel.config["bot_token"].startswith("enc:")
    assert channel.external_channel_id == "4242"
    read = channel_service.to_read(channel)
    assert read.config["bot_token"] == MASK


@pytest.mark.asyncio
async def test_update_channel_keeps_masked_secret(
    db, channel_service, registry, setup_telegram_channel
):
    connector = registry.require(ChannelType.TELEGRAM)
    with patch.object(connector, "_get_bot", return_value=_mock_bot()):
        channel = await channel_service.update_channel(
            setup_telegram_channel.id,
            ChannelUpdate(name="Renamed", config={"bot_token": MASK}),
        )

    assert channel.name == "Renamed"
    opened = open_config(connector.config_model, channel.config)
    assert opened["bot_token"] == TELEGRAM_TOKEN
    # webhook_secret was not resent, so it is dropped from the config
    assert "webhook_secret" not in channel.config


@pytest.mark.asyncio
async def test_update_channel_rejects_invalid_config(
    db, channel_service, registry, setup_telegram_channel
):
    before = dict(setup_telegram_channel.config)
    with pytest.raises(ConfigValidationError):
        await channel_service.update_channel(
            setup_telegram_channel.id,
            ChannelUpdate(config={"bot_token": "not-a-token"}),
        )
    db.refresh(setup_telegram_channel)
    assert setup_telegram_channel.config == before


@pytest.mark.asyncio
async def test_update_channel_to_another_bot_releases_old_webhook(
    db, channel_service, registry, setup_telegram_channel, monkeypatch
):
    setup_telegram_channel.external_channel_id = "42"
    db.commit()
    connector = registry.require(ChannelType.TELEGRAM)
    disconnect = AsyncMock()
    monkeypatch.setattr(connector, "disconnect", disconnect)

    with patch.object(connector, "_get_bot", return_value=_mock_bot(777)):
        channel = await channel_service.update_channel(
            setup_telegram_channel.id,
            ChannelUpdate(config={"bot_token": NEW_TELEGRAM_TOKEN}),
        )

    assert channel.external_channel_id == "777"
    disconnect.assert_awaited_once()
    released = disconnect.await_args.args[0]
    assert released.id == channel.id
    assert open_config(connector.config_model, released.config)["bot_token"] == TELEGRAM_TOKEN
    assert open_config(connector.config_model, channel.config)["bot_token"] == NEW_TELEGRAM_TOKEN


@pytest.mark.asyncio
async def test_update_channel_same_bot_keeps_webhook(
    db, channel_service, registry, setup_telegram_channel, monkeypatch
):
    setup_telegram_channel.external_channel_id = "42"
    db.commit()
    connector = registry.require(ChannelType.TELEGRAM)
    disconnect = AsyncMock()
    monkeypatch.setattr(connector, "disconnect", disconnect)

    with patch.object(connector, "_get_bot", return_value=_mock_bot(42)):
        await channel_service.update_channel(
            setup_telegram_channel.id,
            ChannelUpdate(config={"bot_token": NEW_TELEGRAM_TOKEN}),
        )

    disconnect.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_channel_status_only(db, channel_service, setup_chat_widget_channel):
    channel = await channel_service.update_channel(
        setup_chat_widget_channel.id, ChannelUpdate(status="paused")
    )
    assert channel.status == "paused"
    report = await channel_service.get_channel_status(channel.id)
    assert report.connected is False


@pytest.mark.asyncio
async def test_delete_channel_cascades(db, channel_service, setup_conversation):
    await channel_service.delete_channel(setup_conversation.channel_id)

    assert db.query(Channel).count() == 0
    assert db.query(Conversation).count() == 0
    assert db.query(ConversationMessage).count() == 0


@pytest.mark.asyncio
async def test_delete_channel_disconnects(
    db, channel_service, registry, setup_telegram_channel, monkeypatch
):
    connector = registry.require(ChannelType.TELEGRAM)
    disconnect = AsyncMock()
    monkeypatch.setattr(connector, "disconnect", disconnect)

    await channel_service.delete_channel(setup_telegram_channel.id)

    disconnect.assert_awaited_once()
    assert db.query(Channel).count() == 0


def test_get_channel_scoped_by_workspace(channel_service, setup_chat_widget_channel):
    assert (
        channel_service.get_channel(
            setup_chat_widget_channel.id, setup_chat_widget_channel.workspace_id
        ).id
        == setup_chat_widget_channel.id
    )
    with pytest.raises(ChannelNotFoundError):
        channel_service.get_channel(setup_chat_widget_channel.id, "another-workspace")
    with pytest.raises(ChannelNotFoundError):
        channel_service.get_channel(uuid4())


@pytest.mark.asyncio
async def test_ensure_default_chat_widget_channel(db, channel_service, workspace_id):
    first = await channel_service.ensure_default_chat_widget_channel(workspace_id, "bot-1")
    second = await channel_service.ensure_default_chat_widget_channel(workspace_id, "bot-1")

    assert first.id == second.id
    assert first.config["bot_id"] == "bot-1"
    assert db.query(Channel).count() == 1


# --- inbound -----------------------------------------------------------------


def test_handle_webhook_ignores_non_message_events(db, channel_service, setup_chat_widget_channel):
    channel = setup_chat_widget_channel
    result = channel_service.handle_webhook(
        channel.id,
        WebhookPayload(
            channel_type=ChannelType.CHAT_WIDGET,
            channel_id=channel.id,
            workspace_id=channel.workspace_id,
            event_type="typing",
            payload={"sessionId": "s"},
        ),
    )
    assert result is None
    assert db.query(Conversation).count() == 0


def test_handle_webhook_records_message(db, channel_service, setup_chat_widget_channel):
    channel = setup_chat_widget_channel
    result = channel_service.handle_webhook(
        channel.id,
        WebhookPayload(
            channel_type=ChannelType.CHAT_WIDGET,
            channel_id=channel.id,
            workspace_id=channel.workspace_id,
            event_type="message",
            payload={"sessionId": "s-9", "message": "Hello", "messageId": "w-1"},
        ),
    )
    assert result.conversation.contact_key == "s-9"
    assert result.message.external_message_id == "w-1"


def test_handle_webhook_invalid_field_types(db, channel_service, setup_whatsapp_channel):
    channel = setup_whatsapp_channel
    body = {
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "messages": [
                                {
                                    "from": "15551230000",
                                    "id": "wamid.9",
                                    "type": "text",
                                    "text": {"body": ["not", "a", "string"]},
                                }
                            ]
                        }
                    }
                ]
            }
        ]
    }

    with pytest.raises(WebhookNormalizationError, match="invalid fields"):
        channel_service.handle_webhook(
            channel.id,
            WebhookPayload(
                channel_type=ChannelType.WHATSAPP,
                channel_id=channel.id,
                workspace_id=channel.workspace_id,
                event_type="message",
                payload=body,
            ),
        )
    assert db.query(Conversation).count() == 0


# --- outbound ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_send_message_records_reply(db, channel_service, setup_conversation):
    stored = await channel_service.send_message(
        setup_conversation.channel_id,
        OutgoingMessage(
            conversation_id=setup_conversation.id,
            content="How can I help?",
            is_ai_generated=True,
        ),
    )

    assert stored.sender_type == SenderType.BOT.value
    assert stored.status == MessageStatus.SENT.value
    assert stored.external_message_id.startswith("widget:")
    conversation = db.query(Conversation).one()
    assert conversation.message_count == 2
    assert conversation.first_response_at is not None


@pytest.mark.asyncio
async def test_send_message_fills_recipient(
    db, channel_service, registry, setup_conversation, monkeypatch
):
    seen = []

    async def capture(channel, message):
        seen.append(message)
        return SendMessageResult(success=True, external_message_id="x-1")

    monkeypatch.setattr(registry.require(ChannelType.CHAT_WIDGET), "send_message", capture)

    await channel_service.send_message(
        setup_conversation.channel_id,
        OutgoingMessage(conversation_id=setup_conversation.id, content="Hi"),
    )

    assert seen[0].recipient == "session-1"
    assert seen[0].recipient_name == "Jane Roe"
    assert seen[0].metadata["in_reply_to"] == "m-1"


@pytest.mark.asyncio
async def test_send_email_reply_threads_subject(
    db, channel_service, registry, setup_email_channel, monkeypatch
):
    channel = setup_email_channel
    inbound = channel_service.handle_webhook(
        channel.id,
        WebhookPayload(
            channel_type=ChannelType.EMAIL,
            channel_id=channel.id,
            workspace_id=channel.workspace_id,
            event_type="inbound_email",
            payload={
                "from": {"email": "Customer@Example.com", "name": "Cus Tomer"},
                "subject": "Broken invoice",
                "textBody": "My invoice is wrong",
                "messageId": "<abc@mail.example.com>",
            },
        ),
    )
    seen = []
    connector = registry.require(ChannelType.EMAIL)
    original_send = connector.send_message

    async def capture(ch, message):
        seen.append(message)
        return await original_send(ch, message)

    monkeypatch.setattr(connector, "send_message", capture)

    stored = await channel_service.send_message(
        channel.id,
        OutgoingMessage(conversation_id=inbound.conversation.id, content="Fixed it"),
    )

    assert seen[0].recipient == "customer@example.com"
    assert seen[0].metadata["subject"] == "Broken invoice"
    assert seen[0].metadata["in_reply_to"] == "<abc@mail.example.com>"
    assert stored.message_metadata["subject"] == "Broken invoice"
    assert stored.external_message_id.endswith(f"{channel.config['email_domain']}>")


@pytest.mark.asyncio
async def test_failed_send_writes_nothing(
    db, channel_service, registry, setup_conversation, monkeypatch
):
    monkeypatch.setattr(
        registry.require(ChannelType.CHAT_WIDGET),
        "send_message",
        AsyncMock(
            return_value=SendMessageResult(success=False, error="down", retryable=True)
        ),
    )

    with pytest.raises(SendDeliveryError) as exc:
        await channel_service.send_message(
            setup_conversation.channel_id,
            OutgoingMessage(conversation_id=setup_conversation.id, content="Hi"),
        )

    assert exc.value.retryable is True
    assert exc.value.status_code == 503
    conversation = db.query(Conversation).one()
    assert conversation.message_count == 1
    assert conversation.first_response_at is None
    assert db.query(ConversationMessage).count() == 1


@pytest.mark.asyncio
async def test_send_timeout_is_retryable(
    db, registry, setup_conversation, monkeypatch
):
    async def slow(channel, message):
        await asyncio.sleep(1)

    monkeypatch.setattr(registry.require(ChannelType.CHAT_WIDGET), "send_message", slow)
    service = ChannelService(db, registry, Settings(outbound_send_timeout_seconds=0.05))

    with pytest.raises(SendDeliveryError) as exc:
        await service.send_message(
            setup_conversation.channel_id,
            OutgoingMessage(conversation_id=setup_conversation.id, content="Hi"),
        )

    assert exc.value.retryable is True
    assert db.query(ConversationMessage).count() == 1


@pytest.mark.asyncio
async def test_send_connector_crash_is_not_retryable(
    db, channel_service, registry, setup_conversation, monkeypatch
):
    monkeypatch.setattr(
        registry.require(ChannelType.CHAT_WIDGET),
        "send_message",
        AsyncMock(side_effect=RuntimeError("bug")),
    )

    with pytest.raises(SendDeliveryError) as exc:
        await channel_service.send_message(
            setup_conversation.channel_id,
            OutgoingMessage(conversation_id=setup_conversation.id, content="Hi"),
        )
    assert exc.value.retryable is False
    assert exc.value.status_code == 502


@pytest.mark.asyncio
async def test_send_on_sms_stub_fails(db, channel_service, setup_sms_channel):
    result = channel_service.handle_webhook(
        setup_sms_channel.id,
        WebhookPayload(
            channel_type=ChannelType.SMS,
            channel_id=setup_sms_channel.id,
            workspace_id=setup_sms_channel.workspace_id,
            event_type="message",
            payload={"From": "+15551234567", "MessageSid": "SM1", "Body": "yo"},
        ),
    )
    with pytest.raises(SendDeliveryError) as exc:
        await channel_service.send_message(
            setup_sms_channel.id,
            OutgoingMessage(conversation_id=result.conversation.id, content="Hi"),
        )
    assert exc.value.retryable is False


@pytest.mark.asyncio
async def test_send_to_resolved_conversation(db, channel_service, setup_conversation):
    channel_service.resolve_conversation(setup_conversation.id)

    with pytest.raises(ConversationStateError):
        await channel_service.send_message(
            setup_conversation.channel_id,
            OutgoingMessage(conversation_id=setup_conversation.id, content="Hi"),
        )
    assert db.query(ConversationMessage).count() == 1


@pytest.mark.asyncio
async def test_reply_delivered_after_resolve_is_recorded(
    db, channel_service, registry, setup_conversation, monkeypatch
):
    async def resolve_then_deliver(channel, message):
        conversation = db.get(Conversation, message.conversation_id)
        channel_service.conversations.resolve(conversation)
        return SendMessageResult(success=True, external_message_id="late-1")

    monkeypatch.setattr(
        registry.require(ChannelType.CHAT_WIDGET), "send_message", resolve_then_deliver
    )

    stored = await channel_service.send_message(
        setup_conversation.channel_id,
        OutgoingMessage(conversation_id=setup_conversation.id, content="On my way"),
    )

    assert stored.external_message_id == "late-1"
    conversation = db.query(Conversation).one()
    assert conversation.status == ConversationStatus.RESOLVED.value
    assert conversation.thread_key is None
    assert conversation.message_count == 2
    assert conversation.first_response_at is not None


@pytest.mark.asyncio
async def test_send_through_wrong_channel(
    db, channel_service, setup_conversation, setup_signed_chat_widget_channel
):
    with pytest.raises(ConversationNotFoundError):
        await channel_service.send_message(
            setup_signed_chat_widget_channel.id,
            OutgoingMessage(conversation_id=setup_conversation.id, content="Hi"),
        )


# --- conversations -----------------------------------------------------------


def test_assign_and_resolve_through_service(channel_service, setup_conversation):
    conversation = channel_service.assign_conversation(setup_conversation.id, "agent-1")
    assert conversation.status == ConversationStatus.ASSIGNED.value

    conversation = channel_service.resolve_conversation(setup_conversation.id)
    assert conversation.status == ConversationStatus.RESOLVED.value

    # resolving again is a no-op
    again = channel_service.resolve_conversation(setup_conversation.id)
    assert again.resolved_at == conversation.resolved_at


def test_conversation_lookups(channel_service, setup_conversation):
    conversation, messages = channel_service.get_conversation_with_messages(
        setup_conversation.id
    )
    assert conversation.id == setup_conversation.id
    assert len(messages) == 1

    with pytest.raises(ConversationNotFoundError):
        channel_service.get_conversation(setup_conversation.id, "another-workspace")


def test_update_message_status_unknown(channel_service):
    with pytest.raises(MessageNotFoundError):
        channel_service.update_message_status(uuid4(), MessageStatus.DELIVERED)
