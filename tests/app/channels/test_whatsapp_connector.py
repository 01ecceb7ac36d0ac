"""Tests for WhatsAppConnector."""

import hashlib
import hmac
import json
from uuid import uuid4

import httpx
import pytest

from app.channels.plugins.whatsapp import WhatsAppConnector
from app.constants.channels import ChannelType, ContentType, FileType
from app.core.exceptions import WebhookNormalizationError
from app.schemas.channel_messages import OutgoingMessage, WebhookPayload
from tests.fixtures.channel_fixtures import WEBHOOK_SECRET


def whatsapp_event(message=None, contacts=None, statuses=None):
    value = {"messaging_product": "whatsapp", "metadata": {"phone_number_id": "1098765432"}}
    if message is not None:
        value["messages"] = [message]
        value["contacts"] = contacts or [
            {"profile": {"name": "Maria"}, "wa_id": message.get("from")}
        ]
    if statuses is not None:
        value["statuses"] = statuses
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "WABA", "changes": [{"field": "messages", "value": value}]}],
    }


def text_message(body="Hola", message_id="wamid.1", sender="15551230000"):
    return {
        "from": sender,
        "id": message_id,
        "timestamp": "1700000000",
        "type": "text",
        "text": {"body": body},
    }


def _payload(channel, body):
    return WebhookPayload(
        channel_type=ChannelType.WHATSAPP,
        channel_id=channel.id,
        workspace_id=channel.workspace_id,
        event_type="message",
        payload=body,
    )


def _connector(settings, handler):
    return WhatsAppConnector(settings, transport=httpx.MockTransport(handler))


@pytest.fixture
def connector(settings):
    return WhatsAppConnector(settings)


def test_handle_text_message(connector, setup_whatsapp_channel):
    msg = connector.handle_webhook(
        setup_whatsapp_channel, _payload(setup_whatsapp_channel, whatsapp_event(text_message()))
    )

    assert msg.external_id == "wamid.1"
    assert msg.contact_phone == "15551230000"
    assert msg.contact_name == "Maria"
    assert msg.content == "Hola"
    assert msg.timestamp.year == 2023
    assert connector.contact_key(msg) == "15551230000"


def test_handle_media_message(connector, setup_whatsapp_channel):
    message = {
        "from": "15551230000",
        "id": "wamid.2",
        "type": "image",
        "image": {"id": "media-9", "mime_type": "image/jpeg", "caption": "receipt"},
    }
    msg = connector.handle_webhook(
        setup_whatsapp_channel, _payload(setup_whatsapp_channel, whatsapp_event(message))
    )

    assert msg.content == "receipt"
    assert msg.content_type == ContentType.IMAGE
    assert msg.attachments[0].file_type == FileType.IMAGE
    assert msg.attachments[0].url == "whatsapp:media/media-9"


def test_handle_location_and_unsupported(connector, setup_whatsapp_channel):
    channel = setup_whatsapp_channel
    location = {
        "from": "15551230000",
        "id": "wamid.3",
        "type": "location",
        "location": {"latitude": 40.4, "longitude": -3.7},
    }
    msg = connector.handle_webhook(channel, _payload(channel, whatsapp_event(location)))
    assert msg.content == "[Location: 40.4, -3.7]"
    assert msg.rich_content == {"location": {"latitude": 40.4, "longitude": -3.7}}

    reaction = {"from": "15551230000", "id": "wamid.4", "type": "reaction"}
    msg = connector.handle_webhook(channel, _payload(channel, whatsapp_event(reaction)))
    assert msg.content == "[Unsupported message type: reaction]"


def test_status_callbacks_are_ignored(connector, setup_whatsapp_channel):
    event = whatsapp_event(statuses=[{"id": "wamid.1", "status": "delivered"}])
    assert connector.handle_webhook(
        setup_whatsapp_channel, _payload(setup_whatsapp_channel, event)
    ) is None


def test_malformed_event(connector, setup_whatsapp_channel):
    with pytest.raises(WebhookNormalizationError):
        connector.handle_webhook(
            setup_whatsapp_channel, _payload(setup_whatsapp_channel, {"entry": []})
        )


def test_verify_webhook_uses_app_secret(connector, setup_whatsapp_channel):
    body = json.dumps(whatsapp_event(text_message())).encode()
    digest = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()

    assert connector.verify_webhook(
        setup_whatsapp_channel, body, {"X-Hub-Signature-256": f"sha256={digest}"}
    ) is True
    assert connector.verify_webhook(
        setup_whatsapp_channel, body, {"X-Hub-Signature-256": "sha256=deadbeef"}
    ) is False


def test_verify_subscription(connector, setup_whatsapp_channel):
    channel = setup_whatsapp_channel
    assert connector.verify_subscription(channel, "subscribe", "verify-me", "42") == "42"
    assert connector.verify_subscription(channel, "subscribe", "wrong", "42") is None
    assert connector.verify_subscription(channel, "unsubscribe", "verify-me", "42") is None


@pytest.mark.asyncio
async def test_connect(settings, setup_whatsapp_channel):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v19.0/1098765432"
        assert request.headers["Authorization"] == "Bearer EAAG-test-token"
        return httpx.Response(200, json={"display_phone_number": "+1 555 000 1111"})

    connector = _connector(settings, handler)
    result = await connector.connect(setup_whatsapp_channel)
    await connector.stop()

    assert result.success is True
    assert result.external_channel_id == "+1 555 000 1111"


@pytest.mark.asyncio
async def test_connect_rejected(settings, setup_whatsapp_channel):
    connector = _connector(settings, lambda request: httpx.Response(401, json={}))
    result = await connector.connect(setup_whatsapp_channel)
    await connector.stop()
    assert result.success is False


@pytest.mark.asyncio
async def test_send_message(settings, setup_whatsapp_channel):
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"messages": [{"id": "wamid.out"}]})

    connector = _connector(settings, handler)
    result = await connector.send_message(
        setup_whatsapp_channel,
        OutgoingMessage(conversation_id=uuid4(), content="Hi Maria", recipient="15551230000"),
    )
    await connector.stop()

    assert result.success is True
    assert result.external_message_id == "wamid.out"
    assert sent[0]["to"] == "15551230000"
    assert sent[0]["text"] == {"body": "Hi Maria"}


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code, retryable", [(429, True), (500, True), (400, False)])
async def test_send_message_errors(settings, setup_whatsapp_channel, status_code, retryable):
    connector = _connector(
        settings, lambda request: httpx.Response(status_code, json={"error": {}})
    )
    result = await connector.send_message(
        setup_whatsapp_channel,
        OutgoingMessage(conversation_id=uuid4(), content="Hi", recipient="15551230000"),
    )
    await connector.stop()

    assert result.success is False
    assert result.retryable is retryable


@pytest.mark.asyncio
async def test_send_message_network_error(settings, setup_whatsapp_channel):
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    connector = _connector(settings, handler)
    result = await connector.send_message(
        setup_whatsapp_channel,
        OutgoingMessage(conversation_id=uuid4(), content="Hi", recipient="15551230000"),
    )
    await connector.stop()
    assert result.success is False
    assert result.retryable is True


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"timestamp": "nope"}, "timestamp"),
        ({"timestamp": str(10**20)}, "timestamp"),
        ({"text": "Hola"}, "text"),
    ],
)
def test_malformed_message_fields(connector, setup_whatsapp_channel, overrides, field):
    channel = setup_whatsapp_channel
    body = whatsapp_event({**text_message(), **overrides})
    with pytest.raises(WebhookNormalizationError, match=field):
        connector.handle_webhook(channel, _payload(channel, body))


def test_messages_entry_must_be_an_object(connector, setup_whatsapp_channel):
    channel = setup_whatsapp_channel
    body = whatsapp_event(text_message())
    body["entry"][0]["changes"][0]["value"]["messages"] = ["wamid.1"]
    with pytest.raises(WebhookNormalizationError):
        connector.handle_webhook(channel, _payload(channel, body))
