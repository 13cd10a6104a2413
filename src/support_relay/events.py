from functools import wraps
import logging

from flask import current_app, request
from flask_socketio import SocketIO, emit

from support_relay.chat import ChatServices
from support_relay.errors import SupportRelayError
from support_relay.utils.util import (
    AGENT_CLOSE_FIELDS,
    AGENT_CONNECT_FIELDS,
    AGENT_JOIN_FIELDS,
    AGENT_MESSAGE_FIELDS,
    CUSTOMER_MESSAGE_FIELDS,
    INIT_CHAT_FIELDS,
    validate_payload,
)

logger = logging.getLogger("support_relay")

socketio = SocketIO()


def services() -> ChatServices:
    return current_app.extensions["support_relay"]


def send_to_connection(connection_id: str, event: str, payload) -> None:
    socketio.emit(event, payload, to=connection_id)


def reports_errors(error_event: str = "chatError"):
    """
    Turns a SupportRelayError raised by a handler into an error event sent to the
    sender only. The connection stays open.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except SupportRelayError as e:
                logger.info(f"{func.__name__} from {request.sid} failed: {e.code} {e.reason}")
                if error_event == "authError":
                    emit(error_event, {"reason": e.reason})
                else:
                    emit(error_event, e.to_dict())

        return wrapper

    return decorator


@socketio.on("connect")
def on_connect(auth=None):
    services().registry.register(request.sid)


@socketio.on("disconnect")
def on_disconnect(*args):
    services().registry.on_disconnect(request.sid)


@socketio.on("initChat")
@reports_errors()
def init_chat(data):
    payload = validate_payload(data, INIT_CHAT_FIELDS)
    conversation = services().registry.on_customer_init(
        request.sid, payload["siteId"], payload["customerId"]
    )
    emit(
        "chatInitialized",
        {
            "conversationId": conversation.id,
            "messages": [m.to_dict() for m in conversation.messages],
        },
    )


@socketio.on("customerMessage")
@reports_errors()
def customer_message(data):
    payload = validate_payload(data, CUSTOMER_MESSAGE_FIELDS)
    services().router.submit_customer_message(
        request.sid, payload["conversationId"], payload["content"]
    )


@socketio.on("agentConnect")
@reports_errors("authError")
def agent_connect(data):
    # older dashboards send the bare token string
    if isinstance(data, str):
        data = {"token": data}
    payload = validate_payload(data, AGENT_CONNECT_FIELDS)
    conversations = services().registry.on_agent_connect(request.sid, payload["token"])
    emit("activeConversations", [c.to_dict() for c in conversations])


@socketio.on("agentJoinChat")
@reports_errors()
def agent_join_chat(data):
    payload = validate_payload(data, AGENT_JOIN_FIELDS)
    conversation = services().registry.on_agent_join_conversation(
        request.sid, payload["conversationId"]
    )
    if conversation is not None:
        emit(
            "chatHistory",
            {
                "conversationId": conversation.id,
                "messages": [m.to_dict() for m in conversation.messages],
            },
        )


@socketio.on("agentMessage")
@reports_errors()
def agent_message(data):
    payload = validate_payload(data, AGENT_MESSAGE_FIELDS)
    services().router.submit_agent_message(
        request.sid,
        payload["conversationId"],
        payload["content"],
        payload.get("agentId"),
    )


@socketio.on("agentCloseChat")
@reports_errors()
def agent_close_chat(data):
    payload = validate_payload(data, AGENT_CLOSE_FIELDS)
    services().router.close_conversation(request.sid, payload["conversationId"])


@socketio.on_error_default
def on_unhandled_error(e):
    logger.exception(f"unhandled error in socket event from {request.sid}: {e}")
    emit("chatError", {"error": "internalError", "reason": "unexpected server error"})
