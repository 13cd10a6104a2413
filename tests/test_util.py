import pytest

from support_relay.errors import AuthUnavailable, InvalidToken, PayloadError
from support_relay.utils.util import (
    AGENT_MESSAGE_FIELDS,
    INIT_CHAT_FIELDS,
    retry_with_backoff,
    validate_payload,
)


def test_validate_payload_strips_and_keeps_declared_fields():
    payload = validate_payload(
        {"siteId": " site-A ", "customerId": "cust-1", "extra": "ignored"}, INIT_CHAT_FIELDS
    )

    assert payload == {"siteId": "site-A", "customerId": "cust-1"}


def test_validate_payload_reports_every_problem():
    with pytest.raises(PayloadError) as exc_info:
        validate_payload({"siteId": 42}, INIT_CHAT_FIELDS)

    reason = exc_info.value.reason
    assert "siteId" in reason
    assert "customerId" in reason


def test_validate_payload_keeps_message_content_as_typed():
    payload = validate_payload(
        {"conversationId": " c1 ", "content": "  indented\n"}, AGENT_MESSAGE_FIELDS
    )

    assert payload == {"conversationId": "c1", "content": "  indented\n"}


def test_validate_payload_rejects_blank_message_content():
    with pytest.raises(PayloadError):
        validate_payload({"conversationId": "c1", "content": " \n "}, AGENT_MESSAGE_FIELDS)


def test_validate_payload_rejects_blank_required_strings():
    with pytest.raises(PayloadError):
        validate_payload({"siteId": "  ", "customerId": "cust-1"}, INIT_CHAT_FIELDS)


def test_validate_payload_allows_missing_optional_field():
    payload = validate_payload({"conversationId": "c1", "content": "hi"}, AGENT_MESSAGE_FIELDS)

    assert "agentId" not in payload


@pytest.mark.parametrize("data", [None, "initChat", ["siteId"]])
def test_validate_payload_requires_an_object(data):
    with pytest.raises(PayloadError):
        validate_payload(data, INIT_CHAT_FIELDS)


def test_retry_returns_first_success():
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise AuthUnavailable("timeout")
        return "ok"

    assert retry_with_backoff(flaky, max_retries=3, retry_delay=0) == "ok"
    assert len(attempts) == 3


def test_retry_reraises_after_last_attempt():
    attempts = []

    def down():
        attempts.append(1)
        raise AuthUnavailable("timeout")

    with pytest.raises(AuthUnavailable):
        retry_with_backoff(down, max_retries=2, retry_delay=0)
    assert len(attempts) == 2


def test_retry_does_not_retry_other_errors():
    attempts = []

    def rejected():
        attempts.append(1)
        raise InvalidToken("bad token")

    with pytest.raises(InvalidToken):
        retry_with_backoff(rejected, max_retries=5, retry_delay=0)
    assert len(attempts) == 1
