import enum


class ConversationStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CLOSED = "closed"


OPEN_STATUSES = (ConversationStatus.PENDING, ConversationStatus.ACTIVE)


class Sender(str, enum.Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    SYSTEM = "system"


def enum_values(enum_cls) -> list[str]:
    # persist the lowercase wire values rather than the member names
    return [member.value for member in enum_cls]
