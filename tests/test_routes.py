import pytest

from support_relay.app import create_app


@pytest.fixture
def client(app):
    return app.test_client()


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_register_and_login(client, app):
    registered = client.post("/api/auth/register", json={"username": "alice", "password": "s3cret"})
    assert registered.status_code == 201
    body = registered.get_json()
    assert body["agentId"]
    assert body["token"]

    login = client.post("/api/auth/login", json={"username": "alice", "password": "s3cret"})
    assert login.status_code == 200
    data = login.get_json()
    assert data["agentId"] == body["agentId"]
    assert data["username"] == "alice"

    identity = app.extensions["support_relay"].auth.verify_token(data["token"])
    assert identity.agent_id == body["agentId"]


def test_register_duplicate_username(client):
    client.post("/api/auth/register", json={"username": "alice", "password": "s3cret"})

    response = client.post("/api/auth/register", json={"username": "alice", "password": "other"})

    assert response.status_code == 400


def test_register_requires_credentials(client):
    response = client.post("/api/auth/register", json={"username": "alice"})

    assert response.status_code == 400
    assert "password" in response.get_json()["error"]


def test_login_with_wrong_password(client):
    client.post("/api/auth/register", json={"username": "alice", "password": "s3cret"})

    response = client.post("/api/auth/login", json={"username": "alice", "password": "nope"})

    assert response.status_code == 401


def test_login_without_json_body(client):
    response = client.post("/api/auth/login", data="username=alice")

    assert response.status_code == 400


def test_auth_routes_disabled_with_remote_auth_service(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "DATABASE_URL": f"sqlite:///{tmp_path / 'remote.db'}",
            "AUTH_SERVICE_URL": "https://auth.example.com",
        }
    )

    response = app.test_client().post(
        "/api/auth/login", json={"username": "alice", "password": "s3cret"}
    )

    assert response.status_code == 404
