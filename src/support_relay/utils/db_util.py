from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from support_relay.errors import StoreUnavailable
from support_relay.models import db, Agent, Conversation, ConversationStatus, Message, Sender
from support_relay.models.enums import OPEN_STATUSES
from support_relay.models.util import as_utc

logger = logging.getLogger("support_relay")

# smallest step used to keep message timestamps strictly increasing
TIMESTAMP_STEP = timedelta(microseconds=1)


def store_operation(func):
    """
    Wraps a store call so that connectivity failures (locked database, busy
    timeout, exhausted pool) roll back the session and surface as StoreUnavailable.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (OperationalError, PoolTimeoutError) as e:
            db.session.rollback()
            logger.error(f"conversation store unavailable in {func.__name__}: {e}")
            raise StoreUnavailable(f"conversation store unavailable: {e.__class__.__name__}")

    return wrapper


@store_operation
def find_open_conversation(site_id: str, customer_id: str) -> Optional[Conversation]:
    """
    Finds the pending or active conversation for a site/customer pair

    Args:
        site_id: site the customer is chatting from
        customer_id: client-side persisted customer id

    Returns:
        the open conversation, or None
    """
    query = select(Conversation).where(
        Conversation.site_id == site_id,
        Conversation.customer_id == customer_id,
        Conversation.status.in_(OPEN_STATUSES),
    )
    result = db.session.execute(query).scalars().all()

    if len(result) > 1:
        raise ValueError(
            f"multiple open conversations found for site {site_id} customer {customer_id}"
        )

    return result[0] if result else None


@store_operation
def find_or_create_conversation(site_id: str, customer_id: str) -> tuple[Conversation, bool]:
    """
    Gets the open conversation for a site/customer pair or creates a new one if none exists.
    Callers serialize on the pair; the partial unique index on open conversations catches
    writers in other processes.

    Args:
        site_id: site the customer is chatting from
        customer_id: client-side persisted customer id

    Returns:
        tuple containing the conversation and whether it was created by this call
    """
    conversation = find_open_conversation(site_id, customer_id)
    if conversation is not None:
        return conversation, False

    new_conversation = Conversation(
        site_id=site_id,
        customer_id=customer_id,
        status=ConversationStatus.PENDING,
    )
    db.session.add(new_conversation)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(
            f"lost create race for site {site_id} customer {customer_id}, reloading"
        )
        conversation = find_open_conversation(site_id, customer_id)
        if conversation is None:
            raise StoreUnavailable(
                f"could not create a conversation for site {site_id} customer {customer_id}"
            )
        return conversation, False

    return new_conversation, True


@store_operation
def get_conversation(conversation_id: str) -> Optional[Conversation]:
    return db.session.get(Conversation, conversation_id, populate_existing=True)


@store_operation
def append_message(conversation_id: str, sender: Sender, content: str) -> Message:
    """
    Appends a message to a conversation's log. The store is the single ordering
    authority: it assigns the next sequence number and a timestamp strictly later
    than the previous message's.

    Args:
        conversation_id: id of the conversation
        sender: who wrote the message
        content: message text

    Returns:
        the persisted message
    """
    last = db.session.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.seq.desc())
        .limit(1)
    ).scalar_one_or_none()

    timestamp = datetime.now(timezone.utc)
    seq = 1
    if last is not None:
        seq = last.seq + 1
        timestamp = max(timestamp, as_utc(last.timestamp) + TIMESTAMP_STEP)

    message = Message(
        conversation_id=conversation_id,
        seq=seq,
        sender=sender,
        content=content,
        timestamp=timestamp,
    )
    db.session.add(message)
    db.session.commit()
    return message


@store_operation
def set_active_and_assign_agent(conversation_id: str, agent_id: str) -> bool:
    """
    Moves a pending, unassigned conversation to active and records its agent.
    A conversation that already has an agent is left untouched.

    Returns:
        True when this call performed the assignment
    """
    result = db.session.execute(
        update(Conversation)
        .where(
            Conversation.id == conversation_id,
            Conversation.status == ConversationStatus.PENDING,
            Conversation.agent_id.is_(None),
        )
        .values(status=ConversationStatus.ACTIVE, agent_id=agent_id)
    )
    db.session.commit()
    return result.rowcount == 1


@store_operation
def close_conversation(conversation_id: str) -> bool:
    """
    Moves an open conversation to closed and stamps closed_at.

    Returns:
        True when this call closed the conversation, False if it was already closed
    """
    result = db.session.execute(
        update(Conversation)
        .where(
            Conversation.id == conversation_id,
            Conversation.status.in_(OPEN_STATUSES),
        )
        .values(status=ConversationStatus.CLOSED, closed_at=datetime.now(timezone.utc))
    )
    db.session.commit()
    return result.rowcount == 1


@store_operation
def list_open_conversations() -> list[Conversation]:
    """
    Lists pending and active conversations, newest first
    """
    query = (
        select(Conversation)
        .where(Conversation.status.in_(OPEN_STATUSES))
        .order_by(Conversation.created_at.desc(), Conversation.id.desc())
    )
    return list(db.session.execute(query).scalars().all())


@store_operation
def find_agent_by_username(username: str) -> Optional[Agent]:
    return db.session.execute(
        select(Agent).where(Agent.username == username)
    ).scalar_one_or_none()


@store_operation
def create_agent(username: str, password_hash: str) -> Agent:
    """
    Saves a new agent account

    Args:
        username: unique login name
        password_hash: already hashed password

    Returns:
        the new agent; IntegrityError propagates when the username is taken
    """
    agent = Agent(username=username, password_hash=password_hash)
    db.session.add(agent)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise
    return agent
