from typing import Any, Callable, Optional
import logging
import time
import requests

from support_relay.errors import CollaboratorUnavailable, PayloadError

logger = logging.getLogger("support_relay")

MAX_RETRIES = 3  # number of retry attempts
RETRY_DELAY = 0.5  # initial retry delay in seconds

INIT_CHAT_FIELDS = [
    {"field": "siteId", "type": str, "required": True},
    {"field": "customerId", "type": str, "required": True},
]
CUSTOMER_MESSAGE_FIELDS = [
    {"field": "conversationId", "type": str, "required": True},
    {"field": "content", "type": str, "required": True, "strip": False},
]
AGENT_CONNECT_FIELDS = [
    {"field": "token", "type": str, "required": True},
]
AGENT_JOIN_FIELDS = [
    {"field": "conversationId", "type": str, "required": True},
]
AGENT_MESSAGE_FIELDS = [
    {"field": "conversationId", "type": str, "required": True},
    {"field": "content", "type": str, "required": True, "strip": False},
    {"field": "agentId", "type": str, "required": False},
]
AGENT_CLOSE_FIELDS = [
    {"field": "conversationId", "type": str, "required": True},
]
CREDENTIAL_FIELDS = [
    {"field": "username", "type": str, "required": True},
    {"field": "password", "type": str, "required": True},
]


def validate_payload(data: Any, payload_fields: list[dict]) -> dict:
    """
    Validates an incoming event or request payload.
        - checks the payload is a json object
        - checks required fields are present, non-blank and of the correct data type

    Args:
        data: decoded json payload
        payload_fields: list of dicts with payload field name, data type, required flag
            and an optional strip flag (default True)

    Returns:
        dict containing only the declared fields
    """
    if not isinstance(data, dict):
        raise PayloadError("payload must be a json object")

    errors = []
    cleaned = {}

    for item in payload_fields:
        field_name = item["field"]
        expected_type = item["type"]
        value = data.get(field_name)

        if value is None:
            if item["required"]:
                errors.append(f"payload missing required field: {field_name}")
            continue

        if not isinstance(value, expected_type):
            errors.append(
                f"payload field '{field_name}' must be of type {expected_type.__name__}"
            )
            continue

        if isinstance(value, str):
            if item.get("strip", True):
                value = value.strip()
            if not value.strip() and item["required"]:
                errors.append(f"payload field '{field_name}' must be a non-empty string")
                continue

        cleaned[field_name] = value

    if errors:
        raise PayloadError("; ".join(errors))

    return cleaned


def post_json(api_url: str, payload: dict, timeout: float) -> requests.Response:
    """
    Posts a json payload to the specified api url

    Args:
        api_url: url to post to
        payload: json payload
        timeout: seconds to wait for the remote side

    Returns:
        the response object, status is not checked
    """
    response = requests.post(
        api_url,
        json=payload,
        headers={"Content-Type": "application/json"},
        timeout=timeout,
    )
    logger.info(f"post {api_url} response status code: {response.status_code}")
    return response


def retry_with_backoff(
    func: Callable,
    *args,
    max_retries: Optional[int] = None,
    retry_delay: Optional[float] = None,
    **kwargs,
):
    """
    Retries a read-only collaborator call with exponential backoff.
    Only CollaboratorUnavailable is retried; any other error propagates immediately.

    Args:
        func: Function to call
        max_retries: number of attempts, defaults to MAX_RETRIES
        retry_delay: initial delay in seconds, defaults to RETRY_DELAY
        *args, **kwargs: Arguments to pass to the function

    Returns:
        the function's result; the last CollaboratorUnavailable is re-raised
        once every attempt has failed
    """
    max_retries = max(1, MAX_RETRIES if max_retries is None else max_retries)
    retry_delay = RETRY_DELAY if retry_delay is None else retry_delay

    for attempt in range(1, max_retries + 1):
        try:
            return func(*args, **kwargs)
        except CollaboratorUnavailable as e:
            if attempt == max_retries:
                logger.error(
                    f"{func.__name__} failed after {max_retries} attempts: {e.reason}"
                )
                raise
            logger.warning(
                f"{e.code} in {func.__name__} (attempt {attempt}/{max_retries}). retrying..."
            )
            time.sleep(retry_delay * (2 ** (attempt - 1)))
