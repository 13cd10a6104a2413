from unittest.mock import MagicMock, patch

import pytest
import requests

from support_relay.errors import AuthUnavailable, InvalidToken, PayloadError
from support_relay.utils.auth import LocalAuthService, RemoteAuthGateway


class TestLocalAuthService:
    @pytest.fixture
    def auth(self, app_ctx):
        return LocalAuthService("test-secret", token_max_age=3600)

    def test_register_then_verify_credentials(self, auth):
        agent = auth.register_agent("alice", "s3cret")

        assert auth.verify_credentials("alice", "s3cret").id == agent.id
        assert auth.verify_credentials("alice", "wrong") is None
        assert auth.verify_credentials("bob", "s3cret") is None

    def test_duplicate_username_rejected(self, auth):
        auth.register_agent("alice", "s3cret")

        with pytest.raises(PayloadError):
            auth.register_agent("alice", "other")

    def test_issued_token_verifies_to_agent(self, auth):
        agent = auth.register_agent("alice", "s3cret")

        identity = auth.verify_token(auth.issue_token(agent))

        assert identity.agent_id == agent.id
        assert identity.username == "alice"

    def test_token_signed_with_other_secret_is_invalid(self, auth):
        agent = auth.register_agent("alice", "s3cret")
        forged = LocalAuthService("other-secret", 3600).issue_token(agent)

        with pytest.raises(InvalidToken):
            auth.verify_token(forged)

    def test_expired_token_is_invalid(self, auth):
        agent = auth.register_agent("alice", "s3cret")
        token = auth.issue_token(agent)
        expired = LocalAuthService("test-secret", token_max_age=-1)

        with pytest.raises(InvalidToken):
            expired.verify_token(token)


class TestRemoteAuthGateway:
    @pytest.fixture
    def gateway(self):
        return RemoteAuthGateway("https://auth.example.com/", timeout=2)

    def response(self, status_code, body=None):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = body or {}
        if status_code >= 400:
            mock.raise_for_status.side_effect = requests.exceptions.HTTPError(str(status_code))
        return mock

    def test_valid_token(self, gateway):
        with patch("support_relay.utils.util.requests.post") as post:
            post.return_value = self.response(200, {"agentId": "ag-1", "username": "alice"})
            identity = gateway.verify_token("tok")

        assert identity.agent_id == "ag-1"
        post.assert_called_once()
        assert post.call_args.args[0] == "https://auth.example.com/verify"
        assert post.call_args.kwargs["json"] == {"token": "tok"}
        assert post.call_args.kwargs["timeout"] == 2

    def test_unauthorized_is_invalid_token(self, gateway):
        with patch("support_relay.utils.util.requests.post") as post:
            post.return_value = self.response(401)
            with pytest.raises(InvalidToken):
                gateway.verify_token("tok")

    def test_server_error_is_unavailable(self, gateway):
        with patch("support_relay.utils.util.requests.post") as post:
            post.return_value = self.response(503)
            with pytest.raises(AuthUnavailable):
                gateway.verify_token("tok")

    def test_timeout_is_unavailable(self, gateway):
        with patch("support_relay.utils.util.requests.post") as post:
            post.side_effect = requests.exceptions.Timeout()
            with pytest.raises(AuthUnavailable):
                gateway.verify_token("tok")

    def test_connection_error_is_unavailable(self, gateway):
        with patch("support_relay.utils.util.requests.post") as post:
            post.side_effect = requests.exceptions.ConnectionError()
            with pytest.raises(AuthUnavailable):
                gateway.verify_token("tok")

    def test_malformed_body_is_invalid_token(self, gateway):
        with patch("support_relay.utils.util.requests.post") as post:
            post.return_value = self.response(200, ["ag-1"])
            with pytest.raises(InvalidToken):
                gateway.verify_token("tok")
