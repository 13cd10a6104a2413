from . import db
import uuid

from .enums import Sender, enum_values
from .util import isoformat


class Message(db.Model):
    __tablename__ = "messages"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id = db.Column(
        db.String(36), db.ForeignKey("conversations.id"), nullable=False
    )
    seq = db.Column(db.Integer, nullable=False)
    sender = db.Column(
        db.Enum(Sender, name="message_sender", values_callable=enum_values, native_enum=False),
        nullable=False,
    )
    content = db.Column(db.Text, nullable=False)
    # assigned by the store when the message is appended, never by the client
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False)

    conversation = db.relationship("Conversation", back_populates="messages")

    __table_args__ = (
        db.UniqueConstraint("conversation_id", "seq", name="uq_messages_conversation_seq"),
    )

    def to_dict(self) -> dict:
        return {
            "sender": Sender(self.sender).value,
            "content": self.content,
            "timestamp": isoformat(self.timestamp),
            "conversationId": self.conversation_id,
        }
