import logging

from support_relay.chat.broadcaster import AGENT_ROOM, RoomBroadcaster
from support_relay.chat.keyed_lock import KeyedLock
from support_relay.errors import ConversationNotFound
from support_relay.models import Conversation
from support_relay.utils import db_util
from support_relay.utils.util import retry_with_backoff

logger = logging.getLogger("support_relay")


class ConversationLifecycle:
    """
    Resolves conversations for customers and moves them through
    pending -> active -> closed. Nothing else writes status or agent_id.
    """

    def __init__(self, broadcaster: RoomBroadcaster, max_retries: int = 3, retry_delay: float = 0.5):
        self.broadcaster = broadcaster
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.customer_locks = KeyedLock()

    def _read(self, func, *args):
        return retry_with_backoff(
            func, *args, max_retries=self.max_retries, retry_delay=self.retry_delay
        )

    def find_or_create(self, site_id: str, customer_id: str) -> tuple[Conversation, bool]:
        """
        Returns the customer's open conversation, creating it if there is none.
        Calls for the same site/customer pair run one at a time, so concurrent
        reconnects resolve to a single conversation and a single newChatRequest.

        Args:
            site_id: site the customer is chatting from
            customer_id: client-side persisted customer id

        Returns:
            tuple containing the conversation and whether it was created
        """
        with self.customer_locks.hold((site_id, customer_id)):
            conversation, created = db_util.find_or_create_conversation(site_id, customer_id)
            if created:
                logger.info(
                    f"created conversation {conversation.id} for site {site_id} customer {customer_id}"
                )
                self.broadcaster.broadcast(AGENT_ROOM, "newChatRequest", conversation.to_dict())
        return conversation, created

    def get(self, conversation_id: str) -> Conversation:
        conversation = self._read(db_util.get_conversation, conversation_id)
        if conversation is None:
            raise ConversationNotFound(
                f"conversation not found: {conversation_id}", conversation_id
            )
        return conversation

    def list_open(self) -> list[Conversation]:
        return self._read(db_util.list_open_conversations)

    def assign_on_first_response(self, conversation_id: str, agent_id: str) -> bool:
        """
        First responder wins: a pending conversation becomes active and owned by
        agent_id. Later agents never replace the owner.
        """
        assigned = db_util.set_active_and_assign_agent(conversation_id, agent_id)
        if assigned:
            logger.info(f"conversation {conversation_id} assigned to agent {agent_id}")
        return assigned

    def close(self, conversation_id: str) -> Conversation:
        """
        Moves a pending or active conversation to closed. Closing a closed
        conversation changes nothing.

        Returns:
            the conversation as stored after the call
        """
        if db_util.close_conversation(conversation_id):
            logger.info(f"conversation {conversation_id} closed")
        return self.get(conversation_id)
