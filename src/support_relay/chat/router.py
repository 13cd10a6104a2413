from typing import Optional
import logging

from support_relay.chat.broadcaster import AGENT_ROOM, RoomBroadcaster
from support_relay.chat.keyed_lock import KeyedLock
from support_relay.chat.lifecycle import ConversationLifecycle
from support_relay.chat.registry import ConnectionIdentity, ConnectionRegistry
from support_relay.errors import (
    ConversationClosed,
    DeliveryFailed,
    NotPermitted,
    PayloadError,
    StoreUnavailable,
)
from support_relay.models import Conversation, Message, Sender
from support_relay.models.util import isoformat
from support_relay.utils import db_util

logger = logging.getLogger("support_relay")

CLOSED_NOTICE = "This conversation has been closed."


class MessageRouter:
    """
    Persists inbound chat messages and fans them out.

    Everything that touches one conversation (validation, append, status change,
    broadcast) runs under that conversation's lock, so subscribers see messages in
    exactly the order they were stored. Nothing is broadcast unless it was stored.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        lifecycle: ConversationLifecycle,
        broadcaster: RoomBroadcaster,
        max_message_length: int = 5000,
    ):
        self.registry = registry
        self.lifecycle = lifecycle
        self.broadcaster = broadcaster
        self.max_message_length = max_message_length
        self.conversation_locks = KeyedLock()

    def _clean_content(self, content, conversation_id: str) -> str:
        if not isinstance(content, str) or not content.strip():
            raise PayloadError("message content must be non-empty text", conversation_id)
        if len(content) > self.max_message_length:
            raise PayloadError(
                f"message content longer than {self.max_message_length} characters",
                conversation_id,
            )
        return content

    def _open_conversation(self, conversation_id: str) -> Conversation:
        conversation = self.lifecycle.get(conversation_id)
        if not conversation.is_open:
            raise ConversationClosed(
                f"conversation is closed: {conversation_id}", conversation_id
            )
        return conversation

    def _persist(self, conversation_id: str, sender: Sender, content: str) -> Message:
        try:
            return db_util.append_message(conversation_id, sender, content)
        except StoreUnavailable as e:
            logger.error(f"{sender.value} message for {conversation_id} not stored: {e.reason}")
            raise DeliveryFailed("message could not be stored, please resend", conversation_id)

    def _publish(self, conversation_id: str, event: str, payload: dict) -> int:
        return self.broadcaster.broadcast_many([conversation_id, AGENT_ROOM], event, payload)

    def _require_agent(self, connection_id: str, conversation_id: str) -> ConnectionIdentity:
        identity = self.registry.sender_identity(connection_id)
        if identity is None or not identity.is_agent:
            raise NotPermitted("only authenticated agents can do this", conversation_id)
        return identity

    def submit_customer_message(self, connection_id: str, conversation_id: str, content: str) -> Message:
        """
        Stores a customer message and broadcasts it to the conversation room and the agent room.

        Args:
            connection_id: the customer's connection
            conversation_id: conversation the message belongs to
            content: message text

        Returns:
            the stored message
        """
        content = self._clean_content(content, conversation_id)
        identity = self.registry.sender_identity(connection_id)
        if identity is None or not identity.is_customer:
            raise NotPermitted("send initChat before sending messages", conversation_id)

        with self.conversation_locks.hold(conversation_id):
            conversation = self.lifecycle.get(conversation_id)
            if (conversation.site_id, conversation.customer_id) != (identity.site_id, identity.customer_id):
                raise NotPermitted("conversation belongs to another customer", conversation_id)
            if not conversation.is_open:
                raise ConversationClosed(
                    f"conversation is closed: {conversation_id}", conversation_id
                )

            message = self._persist(conversation_id, Sender.CUSTOMER, content)
            self._publish(conversation_id, "newMessage", message.to_dict())

        return message

    def submit_agent_message(
        self,
        connection_id: str,
        conversation_id: str,
        content: str,
        agent_id: Optional[str] = None,
    ) -> Message:
        """
        Stores an agent reply, makes the agent the owner if the conversation was
        still pending, and broadcasts the reply.

        The agent of record is the one the connection authenticated as; an agentId
        in the payload that disagrees with it is ignored.
        """
        content = self._clean_content(content, conversation_id)
        identity = self._require_agent(connection_id, conversation_id)
        if agent_id and agent_id != identity.agent_id:
            logger.warning(
                f"agentMessage on {connection_id} claimed agent {agent_id}, "
                f"authenticated as {identity.agent_id}"
            )

        with self.conversation_locks.hold(conversation_id):
            self._open_conversation(conversation_id)
            message = self._persist(conversation_id, Sender.AGENT, content)
            try:
                self.lifecycle.assign_on_first_response(conversation_id, identity.agent_id)
            except StoreUnavailable as e:
                # the reply is stored, so it is still delivered; ownership is settled on the next reply
                logger.error(f"could not assign {conversation_id} to {identity.agent_id}: {e.reason}")
            self._publish(conversation_id, "newMessage", message.to_dict())

        return message

    def close_conversation(self, connection_id: str, conversation_id: str) -> Optional[Conversation]:
        """
        Agent action that ends a conversation. A closing notice from the system is
        appended, then chatClosed goes to the conversation room and the agent room.

        Returns:
            the closed conversation, or None if it was already closed
        """
        identity = self._require_agent(connection_id, conversation_id)

        with self.conversation_locks.hold(conversation_id):
            conversation = self.lifecycle.get(conversation_id)
            if not conversation.is_open:
                logger.info(f"conversation {conversation_id} already closed")
                return None

            try:
                conversation = self.lifecycle.close(conversation_id)
            except StoreUnavailable as e:
                logger.error(f"could not close {conversation_id}: {e.reason}")
                raise DeliveryFailed("conversation could not be closed, please retry", conversation_id)

            # the notice is the last entry of the log, after the status change
            try:
                notice = self._persist(conversation_id, Sender.SYSTEM, CLOSED_NOTICE)
                self._publish(conversation_id, "newMessage", notice.to_dict())
            except DeliveryFailed:
                logger.warning(f"closed {conversation_id} without a closing notice")

            self._publish(
                conversation_id,
                "chatClosed",
                {"conversationId": conversation_id, "closedAt": isoformat(conversation.closed_at)},
            )

        logger.info(f"agent {identity.agent_id} closed conversation {conversation_id}")
        return conversation
