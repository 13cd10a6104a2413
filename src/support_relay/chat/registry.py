from dataclasses import dataclass, replace
from typing import Optional
import enum
import logging
import threading
import time

from support_relay.chat.broadcaster import AGENT_ROOM, RoomBroadcaster
from support_relay.chat.lifecycle import ConversationLifecycle
from support_relay.errors import CollaboratorUnavailable, HandshakeError, InvalidToken
from support_relay.models import Conversation
from support_relay.utils.util import retry_with_backoff

logger = logging.getLogger("support_relay")


class ConnectionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    CUSTOMER = "customer"
    AGENT = "agent"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ConnectionIdentity:
    connection_id: str
    state: ConnectionState = ConnectionState.UNAUTHENTICATED
    site_id: Optional[str] = None
    customer_id: Optional[str] = None
    conversation_id: Optional[str] = None
    agent_id: Optional[str] = None

    @property
    def is_agent(self) -> bool:
        return self.state == ConnectionState.AGENT

    @property
    def is_customer(self) -> bool:
        return self.state == ConnectionState.CUSTOMER


class ConnectionRegistry:
    """
    Owns the identity of every live connection and runs the customer and agent handshakes.

    Connection states:
        unauthenticated -> customer                       (initChat, terminal)
        unauthenticated -> authenticating -> agent        (agentConnect, valid token)
        unauthenticated -> authenticating -> rejected     (agentConnect, bad token)
        rejected -> authenticating                        (agentConnect retry)
        agent -> agent                                    (agentConnect again, same agent)

    A closed connection leaves its rooms at once, but its identity is kept for
    disconnect_grace seconds so events it sent before closing still complete.
    """

    def __init__(
        self,
        broadcaster: RoomBroadcaster,
        lifecycle: ConversationLifecycle,
        auth_gateway,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        disconnect_grace: float = 30.0,
    ):
        self.broadcaster = broadcaster
        self.lifecycle = lifecycle
        self.auth_gateway = auth_gateway
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._lock = threading.Lock()
        self.disconnect_grace = disconnect_grace
        self._connections: dict[str, ConnectionIdentity] = {}
        # connection_id -> (identity, monotonic time it disconnected)
        self._departed: dict[str, tuple[ConnectionIdentity, float]] = {}

    def register(self, connection_id: str) -> ConnectionIdentity:
        identity = ConnectionIdentity(connection_id=connection_id)
        with self._lock:
            self._connections[connection_id] = identity
        logger.info(f"connection {connection_id} opened")
        return identity

    def identity(self, connection_id: str) -> Optional[ConnectionIdentity]:
        with self._lock:
            return self._connections.get(connection_id)

    def sender_identity(self, connection_id: str) -> Optional[ConnectionIdentity]:
        """
        Identity of the connection an event came from, including a connection that
        has disconnected since. Event handlers may run after the disconnect of the
        connection that sent them.
        """
        with self._lock:
            identity = self._connections.get(connection_id)
            if identity is None and connection_id in self._departed:
                departed, left_at = self._departed[connection_id]
                if time.monotonic() - left_at <= self.disconnect_grace:
                    identity = departed
            return identity

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def _transition(self, connection_id: str, **changes) -> Optional[ConnectionIdentity]:
        # caller holds self._lock; a connection that disconnected meanwhile stays gone
        current = self._connections.get(connection_id)
        if current is None:
            return None
        updated = replace(current, **changes)
        self._connections[connection_id] = updated
        return updated

    def on_customer_init(self, connection_id: str, site_id: str, customer_id: str) -> Conversation:
        """
        Customer handshake: resolve the customer's open conversation and join its room.

        Args:
            connection_id: the connection sending initChat
            site_id: site the customer is chatting from
            customer_id: client-side persisted customer id

        Returns:
            the conversation, with its message history loaded
        """
        with self._lock:
            current = self._connections.get(connection_id)
            if current is None:
                raise HandshakeError("unknown connection")
            if current.state not in (ConnectionState.UNAUTHENTICATED, ConnectionState.CUSTOMER):
                raise HandshakeError(f"connection is {current.state.value}, not a customer")
            if current.is_customer and (current.site_id, current.customer_id) != (site_id, customer_id):
                raise HandshakeError("connection is already bound to another customer")

        conversation, _ = self.lifecycle.find_or_create(site_id, customer_id)

        with self._lock:
            previous = self._connections.get(connection_id)
            if previous is None:
                return conversation
            # another handshake may have landed while the conversation was resolved
            if previous.state not in (ConnectionState.UNAUTHENTICATED, ConnectionState.CUSTOMER):
                raise HandshakeError(f"connection is {previous.state.value}, not a customer")
            if previous.is_customer and (previous.site_id, previous.customer_id) != (site_id, customer_id):
                raise HandshakeError("connection is already bound to another customer")

            self._transition(
                connection_id,
                state=ConnectionState.CUSTOMER,
                site_id=site_id,
                customer_id=customer_id,
                conversation_id=conversation.id,
            )
            if previous.conversation_id and previous.conversation_id != conversation.id:
                self.broadcaster.leave(previous.conversation_id, connection_id)
            self.broadcaster.join(conversation.id, connection_id)

        logger.info(f"customer {customer_id} on {connection_id} joined conversation {conversation.id}")
        return conversation

    def on_agent_connect(self, connection_id: str, token: str) -> list[Conversation]:
        """
        Agent handshake: verify the token, join the agent room and return the open
        conversations newest first. A rejected connection joins nothing and may retry.
        """
        with self._lock:
            current = self._connections.get(connection_id)
            if current is None:
                raise HandshakeError("unknown connection")
            if current.state not in (
                ConnectionState.UNAUTHENTICATED,
                ConnectionState.REJECTED,
                ConnectionState.AGENT,
            ):
                raise HandshakeError(f"connection is {current.state.value}, cannot authenticate")
            # an agent repeating the handshake only refreshes its conversation list
            if not current.is_agent:
                self._transition(connection_id, state=ConnectionState.AUTHENTICATING)

        try:
            agent = retry_with_backoff(
                self.auth_gateway.verify_token,
                token,
                max_retries=self.max_retries,
                retry_delay=self.retry_delay,
            )
        except Exception as e:
            if not current.is_agent:
                with self._lock:
                    self._transition(connection_id, state=ConnectionState.REJECTED)
            if isinstance(e, (InvalidToken, CollaboratorUnavailable)):
                logger.warning(f"agent handshake rejected on {connection_id}: {e.reason}")
            else:
                logger.error(f"agent handshake on {connection_id} failed: {e!r}")
            raise

        if current.is_agent and agent.agent_id != current.agent_id:
            raise HandshakeError("connection is already authenticated as another agent")

        with self._lock:
            latest = self._connections.get(connection_id)
            if latest is not None:
                expected = ConnectionState.AGENT if current.is_agent else ConnectionState.AUTHENTICATING
                if latest.state != expected or (current.is_agent and latest.agent_id != current.agent_id):
                    raise HandshakeError(f"connection is {latest.state.value}, cannot authenticate")
                self._transition(connection_id, state=ConnectionState.AGENT, agent_id=agent.agent_id)
                self.broadcaster.join(AGENT_ROOM, connection_id)

        logger.info(f"agent {agent.agent_id} authenticated on {connection_id}")
        return self.lifecycle.list_open()

    def on_agent_join_conversation(self, connection_id: str, conversation_id: str) -> Optional[Conversation]:
        """
        Subscribes an authenticated agent to one conversation's live stream. Joining
        twice is harmless. Connections that are not agents are ignored.

        Returns:
            the conversation, so its history can be sent to the agent; None if ignored
        """
        identity = self.identity(connection_id)
        if identity is None or not identity.is_agent:
            logger.warning(f"ignoring agentJoinChat from non-agent connection {connection_id}")
            return None

        conversation = self.lifecycle.get(conversation_id)
        self.broadcaster.join(conversation.id, connection_id)
        logger.info(f"agent {identity.agent_id} joined conversation {conversation.id}")
        return conversation

    def on_disconnect(self, connection_id: str) -> None:
        """
        Leaves every room. The identity moves to the departed table instead of being
        dropped, so messages the connection sent just before closing are still
        accepted. Conversations are never touched.
        """
        now = time.monotonic()
        with self._lock:
            identity = self._connections.pop(connection_id, None)
            self.broadcaster.leave_all(connection_id)
            expired = [
                cid for cid, (_, left_at) in self._departed.items()
                if now - left_at > self.disconnect_grace
            ]
            for cid in expired:
                del self._departed[cid]
            if identity is not None and self.disconnect_grace > 0:
                self._departed[connection_id] = (identity, now)
        logger.info(f"connection {connection_id} closed")
