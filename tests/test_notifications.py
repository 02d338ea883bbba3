import json

import httpx

from spadesk.config import settings
from spadesk.notifications import HubtelSmsGateway, retry_backoff_seconds


def _gateway(handler, sleeps=None):
    return HubtelSmsGateway(
        base_url="https://sms.test/v1/messages",
        client_id="client-id",
        client_secret="client-secret",
        sender_id="SALON&SPA",
        transport=httpx.MockTransport(handler),
        sleep=(sleeps.append if sleeps is not None else (lambda _seconds: None)),
    )


def test_phone_numbers_are_normalised_to_country_code():
    assert HubtelSmsGateway.format_phone_number("241234567") == "+233241234567"
    assert HubtelSmsGateway.format_phone_number("024 123 4567") == "+233241234567"
    assert HubtelSmsGateway.format_phone_number("233241234567") == "+233241234567"
    assert HubtelSmsGateway.format_phone_number("+233 24 123 4567") == "+233241234567"
    assert HubtelSmsGateway.format_phone_number("12345") == "12345"


def test_thank_you_message_mentions_services_and_total():
    message = HubtelSmsGateway.thank_you_message("Ama", "Pedicure, Cut and Style", 150)
    assert message.startswith("Dear Ama, thank you for visiting")
    assert "Pedicure, Cut and Style" in message
    assert f"{settings.CURRENCY} 150.00" in message


def test_promo_message_carries_details_and_opt_out():
    message = HubtelSmsGateway.promo_message("Kojo", "20% off all facials this weekend.")
    assert message.startswith("Hello Kojo! 20% off all facials this weekend.")
    assert message.endswith("To opt out, reply STOP.")


def test_send_sms_posts_payload_with_basic_auth():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"status": 0, "messageId": "abc"})

    result = _gateway(handler).send_sms("0241234567", "Hello")
    assert result.success is True
    assert result.data == {"status": 0, "messageId": "abc"}
    assert result.attempts == 1

    assert len(seen) == 1
    assert seen[0].headers["Authorization"].startswith("Basic ")
    assert json.loads(seen[0].content) == {"from": "SALON&SPA", "to": "+233241234567", "content": "Hello"}


def test_send_sms_retries_server_errors_then_succeeds():
    calls = {"n": 0}
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503, json={"error": "busy"})
        return httpx.Response(200, json={"status": 0})

    previous = (settings.SMS_MAX_ATTEMPTS, settings.SMS_RETRY_BASE_SECONDS, settings.SMS_RETRY_MAX_SECONDS)
    try:
        settings.SMS_MAX_ATTEMPTS = 3
        settings.SMS_RETRY_BASE_SECONDS = 1.0
        settings.SMS_RETRY_MAX_SECONDS = 8.0
        result = _gateway(handler, sleeps).send_sms("0241234567", "Hello")
    finally:
        settings.SMS_MAX_ATTEMPTS, settings.SMS_RETRY_BASE_SECONDS, settings.SMS_RETRY_MAX_SECONDS = previous

    assert result.success is True
    assert result.attempts == 3
    assert sleeps == [1.0, 2.0]


def test_send_sms_gives_up_on_client_errors_without_retry():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(401, json={"message": "bad credentials"})

    result = _gateway(handler).send_sms("0241234567", "Hello")
    assert result.success is False
    assert result.error == "HTTP 401"
    assert result.details == {"message": "bad credentials"}
    assert calls["n"] == 1


def test_send_sms_never_raises_on_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    previous = settings.SMS_MAX_ATTEMPTS
    try:
        settings.SMS_MAX_ATTEMPTS = 2
        result = _gateway(handler).send_sms("0241234567", "Hello")
    finally:
        settings.SMS_MAX_ATTEMPTS = previous

    assert result.success is False
    assert result.attempts == 2
    assert "connection refused" in result.error


def test_unconfigured_gateway_reports_failure():
    gateway = HubtelSmsGateway(client_id="", client_secret="")
    result = gateway.send_sms("0241234567", "Hello")
    assert result.success is False
    assert result.error == "SMS gateway not configured"


def test_backoff_is_capped():
    previous = (settings.SMS_RETRY_BASE_SECONDS, settings.SMS_RETRY_MAX_SECONDS)
    try:
        settings.SMS_RETRY_BASE_SECONDS = 1.0
        settings.SMS_RETRY_MAX_SECONDS = 5.0
        assert [retry_backoff_seconds(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]
    finally:
        settings.SMS_RETRY_BASE_SECONDS, settings.SMS_RETRY_MAX_SECONDS = previous
