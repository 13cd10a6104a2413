from dataclasses import dataclass
from typing import Optional
import logging

import requests
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from support_relay.errors import AuthUnavailable, InvalidToken, PayloadError
from support_relay.models import Agent
from support_relay.utils.db_util import create_agent, find_agent_by_username
from support_relay.utils.util import post_json

logger = logging.getLogger("support_relay")

TOKEN_SALT = "support-relay-agent"


@dataclass(frozen=True)
class AgentIdentity:
    agent_id: str
    username: Optional[str] = None


class LocalAuthService:
    """
    Agent credentials kept in the conversation database, tokens signed with the app secret.

    verify_token only checks the signature and age of the token, it does not hit the
    database, so a deleted agent keeps a working token until it expires.
    """

    def __init__(self, secret_key: str, token_max_age: int):
        self.serializer = URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)
        self.token_max_age = token_max_age

    def register_agent(self, username: str, password: str) -> Agent:
        try:
            return create_agent(username, generate_password_hash(password))
        except IntegrityError:
            raise PayloadError(f"agent username already exists: {username}")

    def verify_credentials(self, username: str, password: str) -> Optional[Agent]:
        agent = find_agent_by_username(username)
        if agent is None or not check_password_hash(agent.password_hash, password):
            return None
        return agent

    def issue_token(self, agent: Agent) -> str:
        return self.serializer.dumps({"agentId": agent.id, "username": agent.username})

    def verify_token(self, token: str) -> AgentIdentity:
        try:
            data = self.serializer.loads(token, max_age=self.token_max_age)
        except SignatureExpired:
            raise InvalidToken("token expired")
        except BadSignature:
            raise InvalidToken("invalid token")
        return AgentIdentity(agent_id=data["agentId"], username=data.get("username"))


class RemoteAuthGateway:
    """
    Verifies agent tokens against an external auth service.

    The service is expected to answer POST {base_url}/verify {"token": ...} with
    200 {"agentId": ..., "username": ...} or 401/403 for a bad token.
    """

    def __init__(self, base_url: str, timeout: float):
        self.verify_url = f"{base_url.rstrip('/')}/verify"
        self.timeout = timeout

    def verify_token(self, token: str) -> AgentIdentity:
        try:
            response = post_json(self.verify_url, {"token": token}, self.timeout)
        except requests.exceptions.Timeout:
            raise AuthUnavailable(f"auth service timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            raise AuthUnavailable(f"auth service unreachable: {e.__class__.__name__}")

        if response.status_code in (401, 403):
            raise InvalidToken("invalid token")
        if response.status_code >= 500:
            raise AuthUnavailable(f"auth service error: {response.status_code}")

        try:
            response.raise_for_status()
            data = response.json()
            return AgentIdentity(agent_id=str(data["agentId"]), username=data.get("username"))
        except (requests.exceptions.HTTPError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"unexpected auth service response: {e}")
            raise InvalidToken("token could not be verified")
