from dataclasses import dataclass

from support_relay.chat.broadcaster import RoomBroadcaster, SendFunc
from support_relay.chat.lifecycle import ConversationLifecycle
from support_relay.chat.registry import ConnectionRegistry
from support_relay.chat.router import MessageRouter


@dataclass
class ChatServices:
    auth: object
    broadcaster: RoomBroadcaster
    lifecycle: ConversationLifecycle
    registry: ConnectionRegistry
    router: MessageRouter


def build_services(send: SendFunc, auth_gateway, config) -> ChatServices:
    """
    Wires the chat core together.

    Args:
        send: transport callable, send(connection_id, event, payload)
        auth_gateway: anything with verify_token(token) -> AgentIdentity
        config: mapping with MAX_RETRIES, RETRY_DELAY, MAX_MESSAGE_LENGTH and
            optionally DISCONNECT_GRACE

    Returns:
        ChatServices
    """
    retries = {"max_retries": config["MAX_RETRIES"], "retry_delay": config["RETRY_DELAY"]}
    broadcaster = RoomBroadcaster(send)
    lifecycle = ConversationLifecycle(broadcaster, **retries)
    registry = ConnectionRegistry(
        broadcaster,
        lifecycle,
        auth_gateway,
        disconnect_grace=config.get("DISCONNECT_GRACE", 30.0),
        **retries,
    )
    router = MessageRouter(
        registry, lifecycle, broadcaster, max_message_length=config["MAX_MESSAGE_LENGTH"]
    )
    return ChatServices(
        auth=auth_gateway,
        broadcaster=broadcaster,
        lifecycle=lifecycle,
        registry=registry,
        router=router,
    )
