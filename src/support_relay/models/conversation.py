from . import db
from datetime import datetime, timezone
import uuid

from .enums import ConversationStatus, enum_values
from .util import isoformat


class Conversation(db.Model):
    __tablename__ = "conversations"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    site_id = db.Column(db.String(100), nullable=False)
    customer_id = db.Column(db.String(100), nullable=False)
    agent_id = db.Column(db.String(100), nullable=True)
    status = db.Column(
        db.Enum(
            ConversationStatus,
            name="conversation_status",
            values_callable=enum_values,
            native_enum=False,
        ),
        nullable=False,
        default=ConversationStatus.PENDING,
    )
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    messages = db.relationship(
        "Message",
        back_populates="conversation",
        lazy=True,
        order_by="Message.seq",
    )

    __table_args__ = (
        db.Index("ix_conversations_site_customer", "site_id", "customer_id"),
        # at most one open conversation per (site, customer); needs partial index support
        db.Index(
            "uq_conversations_open_customer",
            "site_id",
            "customer_id",
            unique=True,
            sqlite_where=db.text("status IN ('pending', 'active')"),
            postgresql_where=db.text("status IN ('pending', 'active')"),
        ).ddl_if(dialect=("sqlite", "postgresql")),
    )

    @property
    def is_open(self) -> bool:
        return self.status != ConversationStatus.CLOSED

    def to_dict(self, include_messages: bool = True) -> dict:
        data = {
            "conversationId": self.id,
            "siteId": self.site_id,
            "customerId": self.customer_id,
            "agentId": self.agent_id,
            "status": ConversationStatus(self.status).value,
            "createdAt": isoformat(self.created_at),
            "closedAt": isoformat(self.closed_at),
        }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data
