"""Tests for the Telegram Bot API provider."""

from unittest.mock import patch

import pytest

from helpers import FIXED_NOW, TELEGRAM_CREDENTIALS, provider_error, tg_update

from botlink.integrations.http import ProviderResponseError, TransportError
from botlink.integrations.models import (
    EventType,
    InvalidCredentialsError,
    SendError,
    SendErrorCode,
    TemplateRef,
    TextOptions,
)
from botlink.integrations.telegram import TelegramProvider

REQUEST_JSON = "botlink.integrations.telegram.request_json"
BOT_URL = f"https://telegram.test/bot{TELEGRAM_CREDENTIALS['bot_token']}"


@pytest.fixture
def provider():
    return TelegramProvider()


def _normalize(provider, payload):
    return provider.normalize(payload, integration_id="tg-1", received_at=FIXED_NOW)


class TestCredentials:
    def test_missing_bot_token(self, provider):
        with pytest.raises(InvalidCredentialsError, match="bot_token"):
            provider.parse_credentials({"webhook_secret": "x"})

    def test_prepare_generates_url_safe_secret(self, provider):
        prepared = provider.prepare_credentials({"bot_token": "1:abc"})
        assert prepared["webhook_secret"].isalnum()


class TestFetchIdentity:
    def test_identity_is_at_username(self, provider):
        with patch(
            REQUEST_JSON,
            return_value={"ok": True, "result": {"id": 42, "username": "acme_bot", "first_name": "Acme"}},
        ) as mock_request:
            result = provider.fetch_identity(TELEGRAM_CREDENTIALS)

        assert result.valid is True
        assert result.identity == "@acme_bot"
        assert result.profile["bot_id"] == "42"
        method, url = mock_request.call_args[0]
        assert method == "GET"
        assert url == f"{BOT_URL}/getMe"

    def test_ok_false_raises_provider_error(self, provider):
        with patch(
            REQUEST_JSON,
            return_value={"ok": False, "error_code": 401, "description": "Unauthorized"},
        ):
            with pytest.raises(ProviderResponseError) as exc_info:
                provider.fetch_identity(TELEGRAM_CREDENTIALS)
        assert exc_info.value.status_code == 401

    def test_missing_username_is_invalid(self, provider):
        with patch(REQUEST_JSON, return_value={"ok": True, "result": {"id": 42}}):
            with pytest.raises(InvalidCredentialsError):
                provider.fetch_identity(TELEGRAM_CREDENTIALS)


class TestWebhookLifecycle:
    def test_on_connect_registers_webhook_with_secret(self, provider):
        with patch(REQUEST_JSON, return_value={"ok": True, "result": True}) as mock_request:
            provider.on_connect(TELEGRAM_CREDENTIALS, "https://bots.example/webhooks/telegram/tg-1")

        method, url = mock_request.call_args[0]
        assert method == "POST"
        assert url == f"{BOT_URL}/setWebhook"
        assert mock_request.call_args.kwargs["json_body"] == {
            "url": "https://bots.example/webhooks/telegram/tg-1",
            "secret_token": "tg-secret-abc",
        }

    def test_on_connect_without_url_is_noop(self, provider):
        with patch(REQUEST_JSON) as mock_request:
            provider.on_connect(TELEGRAM_CREDENTIALS, None)
        mock_request.assert_not_called()

    def test_on_disconnect_deletes_webhook(self, provider):
        with patch(REQUEST_JSON, return_value={"ok": True, "result": True}) as mock_request:
            provider.on_disconnect(TELEGRAM_CREDENTIALS)
        assert mock_request.call_args[0][1] == f"{BOT_URL}/deleteWebhook"

    def test_webhook_info(self, provider):
        result = {
            "url": "https://bots.example/webhooks/telegram/tg-1",
            "has_custom_certificate": False,
            "pending_update_count": 5,
            "last_error_date": 1704067200,
            "last_error_message": "Connection timed out",
        }
        with patch(REQUEST_JSON, return_value={"ok": True, "result": result}) as mock_request:
            info = provider.webhook_info(TELEGRAM_CREDENTIALS)

        method, url = mock_request.call_args[0]
        assert (method, url) == ("GET", f"{BOT_URL}/getWebhookInfo")
        assert info.url == result["url"]
        assert info.pending_update_count == 5
        assert info.last_error_at == FIXED_NOW.replace(hour=0)
        assert info.healthy is False

    def test_webhook_info_without_url_is_unhealthy(self, provider):
        with patch(REQUEST_JSON, return_value={"ok": True, "result": {"url": "", "pending_update_count": 0}}):
            info = provider.webhook_info(TELEGRAM_CREDENTIALS)
        assert info.url is None
        assert info.healthy is False


class TestVerification:
    def test_handshake_never_verified(self, provider):
        result = provider.verify_handshake(
            TELEGRAM_CREDENTIALS, mode="subscribe", token="tg-secret-abc", challenge="C"
        )
        assert result.verified is False

    def test_secret_header_matches(self, provider):
        headers = {"X-Telegram-Bot-Api-Secret-Token": "tg-secret-abc"}
        assert provider.verify_delivery(TELEGRAM_CREDENTIALS, b"{}", headers) is True

    def test_secret_header_mismatch(self, provider):
        headers = {"X-Telegram-Bot-Api-Secret-Token": "other"}
        assert provider.verify_delivery(TELEGRAM_CREDENTIALS, b"{}", headers) is False

    def test_secret_header_missing(self, provider):
        assert provider.verify_delivery(TELEGRAM_CREDENTIALS, b"{}", {}) is False


class TestNormalize:
    """Update normalization."""

    def test_private_text_message(self, provider):
        [event] = _normalize(provider, tg_update())

        assert event.type == EventType.MESSAGE
        assert event.external_message_id == "777:55"
        assert event.sender_id == "777"
        assert event.sender_name == "Ada L"
        assert event.text == "hi bot"
        assert event.kind == "text"
        assert event.conversation_id == "777"
        assert event.occurred_at.year == 2024

    def test_message_ids_scoped_by_chat(self, provider):
        a = _normalize(provider, tg_update(message_id=1, chat_id=100))
        b = _normalize(provider, tg_update(message_id=1, chat_id=200))
        assert a[0].external_message_id != b[0].external_message_id

    def test_edited_message_gets_distinct_id(self, provider):
        update = tg_update()
        message = update.pop("message")
        message["edit_date"] = 1704067300
        update["edited_message"] = message

        [event] = _normalize(provider, update)

        assert event.external_message_id == "777:55:edit:1704067300"
        assert event.kind == "edited_text"

    def test_photo_uses_largest_size(self, provider):
        update = tg_update()
        message = update["message"]
        del message["text"]
        message["caption"] = "pic"
        message["photo"] = [
            {"file_id": "small", "width": 90},
            {"file_id": "large", "width": 1280},
        ]

        [event] = _normalize(provider, update)

        assert event.kind == "photo"
        assert event.text == "pic"
        assert event.media_ref == "large"

    def test_sticker_has_no_text(self, provider):
        update = tg_update()
        message = update["message"]
        del message["text"]
        message["sticker"] = {"file_id": "stk-1", "emoji": "😀"}

        [event] = _normalize(provider, update)

        assert event.kind == "sticker"
        assert event.text is None
        assert event.media_ref == "stk-1"

    def test_channel_post_sender_is_channel(self, provider):
        update = {
            "update_id": 9,
            "channel_post": {
                "message_id": 3,
                "date": 1704067200,
                "chat": {"id": -1001, "type": "channel", "title": "News"},
                "sender_chat": {"id": -1001, "type": "channel", "title": "News"},
                "text": "post",
            },
        }
        [event] = _normalize(provider, update)
        assert event.sender_id == "-1001"
        assert event.sender_name == "News"

    def test_callback_query(self, provider):
        update = {
            "update_id": 10,
            "callback_query": {
                "id": "cbq-1",
                "from": {"id": 777, "first_name": "Ada"},
                "message": {"message_id": 55, "chat": {"id": 777}},
                "data": "confirm",
            },
        }
        [event] = _normalize(provider, update)
        assert event.external_message_id == "callback:cbq-1"
        assert event.kind == "callback_query"
        assert event.text == "confirm"
        assert event.occurred_at == FIXED_NOW

    def test_list_of_updates_skips_malformed(self, provider):
        updates = [
            tg_update(update_id=1, message_id=1),
            tg_update(update_id=2, message_id=2, user_id=None),
            tg_update(update_id=3, message_id=3),
        ]

        events = _normalize(provider, updates)

        assert [e.external_message_id for e in events] == ["777:1", "777:3"]

    @pytest.mark.parametrize("payload", [None, "x", {}, {"update_id": 1, "poll": {}}, [1, None]])
    def test_unhandled_payload_yields_nothing(self, provider, payload):
        assert _normalize(provider, payload) == []


class TestSend:
    def test_send_text(self, provider):
        with patch(
            REQUEST_JSON, return_value={"ok": True, "result": {"message_id": 901}}
        ) as mock_request:
            result = provider.send_text(TELEGRAM_CREDENTIALS, "777", "hello")

        assert result.provider_message_id == "901"
        assert mock_request.call_args[0][1] == f"{BOT_URL}/sendMessage"
        assert mock_request.call_args.kwargs["json_body"] == {"chat_id": "777", "text": "hello"}

    def test_send_text_with_options(self, provider):
        options = TextOptions(
            preview_url=False,
            reply_to_message_id="777:42",
            disable_notification=True,
            parse_mode="HTML",
        )
        with patch(
            REQUEST_JSON, return_value={"ok": True, "result": {"message_id": 902}}
        ) as mock_request:
            provider.send_text(TELEGRAM_CREDENTIALS, "777", "<b>hi</b>", options)

        assert mock_request.call_args.kwargs["json_body"] == {
            "chat_id": "777",
            "text": "<b>hi</b>",
            "link_preview_options": {"is_disabled": True},
            "parse_mode": "HTML",
            "disable_notification": True,
            "reply_parameters": {"message_id": 42, "allow_sending_without_reply": True},
        }

    @pytest.mark.parametrize("reply_to,expected", [("42", 42), ("777:43:edit:1704067200", 43)])
    def test_reply_to_accepts_bare_and_external_ids(self, provider, reply_to, expected):
        with patch(
            REQUEST_JSON, return_value={"ok": True, "result": {"message_id": 903}}
        ) as mock_request:
            provider.send_text(
                TELEGRAM_CREDENTIALS, "777", "hi", TextOptions(reply_to_message_id=reply_to)
            )

        reply = mock_request.call_args.kwargs["json_body"]["reply_parameters"]
        assert reply["message_id"] == expected

    def test_reply_to_non_telegram_id_fails_without_provider_call(self, provider):
        with patch(REQUEST_JSON) as mock_request:
            with pytest.raises(SendError) as exc_info:
                provider.send_text(
                    TELEGRAM_CREDENTIALS,
                    "777",
                    "hi",
                    TextOptions(reply_to_message_id="wamid.ABC"),
                )

        assert exc_info.value.code == SendErrorCode.UNSUPPORTED
        mock_request.assert_not_called()

    def test_template_unsupported_without_provider_call(self, provider):
        with patch(REQUEST_JSON) as mock_request:
            with pytest.raises(SendError) as exc_info:
                provider.send_template(TELEGRAM_CREDENTIALS, "777", TemplateRef(name="welcome"))

        assert exc_info.value.code == SendErrorCode.UNSUPPORTED
        mock_request.assert_not_called()

    def test_mark_delivered_is_noop(self, provider):
        with patch(REQUEST_JSON) as mock_request:
            provider.mark_delivered(TELEGRAM_CREDENTIALS, "777:55")
        mock_request.assert_not_called()


class TestTranslateError:
    @pytest.mark.parametrize(
        "status,description,expected",
        [
            (400, "Bad Request: chat not found", SendErrorCode.INVALID_RECIPIENT),
            (403, "Forbidden: bot was blocked by the user", SendErrorCode.INVALID_RECIPIENT),
            (429, "Too Many Requests: retry after 5", SendErrorCode.RATE_LIMITED),
            (401, "Unauthorized", SendErrorCode.AUTHENTICATION_FAILED),
            (400, "Bad Request: message text is empty", SendErrorCode.PROVIDER_ERROR),
        ],
    )
    def test_classification(self, provider, status, description, expected):
        exc = provider_error(status, {"ok": False, "error_code": status, "description": description})
        error = provider.translate_error(exc)
        assert error.code == expected
        assert error.message == description

    def test_transport_error(self, provider):
        error = provider.translate_error(TransportError("ConnectionError: connection failed"))
        assert error.code == SendErrorCode.TRANSPORT_ERROR
