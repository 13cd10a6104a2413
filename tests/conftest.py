import threading

import pytest

from support_relay.app import create_app
from support_relay.chat import build_services
from support_relay.errors import AuthUnavailable, InvalidToken
from support_relay.models import db
from support_relay.utils.auth import AgentIdentity


class RecordingTransport:
    """Stands in for the socket layer: remembers every (connection, event, payload) sent."""

    def __init__(self):
        self._lock = threading.Lock()
        self.sent = []

    def __call__(self, connection_id, event, payload):
        with self._lock:
            self.sent.append((connection_id, event, payload))

    def events(self, connection_id=None, event=None):
        with self._lock:
            return [
                payload
                for conn, name, payload in self.sent
                if (connection_id is None or conn == connection_id)
                and (event is None or name == event)
            ]

    def clear(self):
        with self._lock:
            self.sent.clear()


class FakeAuthGateway:
    """Accepts tokens of the form 'token-<agent id>'; 'down' simulates an outage."""

    def __init__(self):
        self.calls = 0

    def verify_token(self, token):
        self.calls += 1
        if token == "down":
            raise AuthUnavailable("auth service timed out")
        if not token.startswith("token-"):
            raise InvalidToken("invalid token")
        return AgentIdentity(agent_id=token[len("token-"):])


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "DATABASE_URL": f"sqlite:///{tmp_path / 'support_relay.db'}",
            "MAX_RETRIES": 2,
            "RETRY_DELAY": 0,
            "LOG_LEVEL": "WARNING",
        }
    )
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def auth_gateway():
    return FakeAuthGateway()


@pytest.fixture
def chat(app_ctx, transport, auth_gateway):
    """Chat services wired to a recording transport instead of socket.io."""
    return build_services(transport, auth_gateway, app_ctx.config)


@pytest.fixture
def customer(chat):
    """A customer connection initialised on site-A as cust-1."""
    chat.registry.register("cust-conn")
    conversation = chat.registry.on_customer_init("cust-conn", "site-A", "cust-1")
    return conversation.id


@pytest.fixture
def agent(chat):
    """An authenticated agent connection for agent ag-1."""
    chat.registry.register("agent-conn")
    chat.registry.on_agent_connect("agent-conn", "token-ag-1")
    return "agent-conn"
