class SupportRelayError(Exception):
    """Base class for errors reported back to a connection."""

    code = "error"

    def __init__(self, reason: str = "", conversation_id: str = None):
        super().__init__(reason or self.code)
        self.reason = reason or self.code
        self.conversation_id = conversation_id

    def to_dict(self) -> dict:
        data = {"error": self.code, "reason": self.reason}
        if self.conversation_id is not None:
            data["conversationId"] = self.conversation_id
        return data


class PayloadError(SupportRelayError):
    code = "invalidPayload"


class HandshakeError(SupportRelayError):
    code = "handshakeRefused"


class NotPermitted(SupportRelayError):
    code = "notPermitted"


class InvalidToken(SupportRelayError):
    code = "invalidToken"


class ConversationNotFound(SupportRelayError):
    code = "conversationNotFound"


class ConversationClosed(SupportRelayError):
    code = "conversationClosed"


class CollaboratorUnavailable(SupportRelayError):
    """A store or auth call failed or timed out; safe to retry for reads."""


class StoreUnavailable(CollaboratorUnavailable):
    code = "storeUnavailable"


class AuthUnavailable(CollaboratorUnavailable):
    code = "authUnavailable"


class DeliveryFailed(SupportRelayError):
    code = "deliveryFailed"
