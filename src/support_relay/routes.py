from flask import Blueprint, current_app, jsonify, request
import logging

from support_relay.errors import PayloadError, StoreUnavailable
from support_relay.utils.auth import LocalAuthService
from support_relay.utils.util import CREDENTIAL_FIELDS, validate_payload

logger = logging.getLogger("support_relay")

api_bp = Blueprint("api", __name__, url_prefix="/api")


def local_auth() -> LocalAuthService:
    auth = current_app.extensions["support_relay"].auth
    return auth if isinstance(auth, LocalAuthService) else None


@api_bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"}), 200


@api_bp.route("/auth/register", methods=["POST"])
def register_agent():
    logger.info("register_agent")

    auth = local_auth()
    if auth is None:
        return jsonify({"error": "agent accounts are managed by the external auth service"}), 404

    try:
        payload = validate_payload(request.get_json(silent=True), CREDENTIAL_FIELDS)
        agent = auth.register_agent(payload["username"], payload["password"])
        return jsonify({"agentId": agent.id, "token": auth.issue_token(agent)}), 201
    except PayloadError as e:
        logger.error(f"error registering agent: {e.reason}")
        return jsonify({"error": e.reason}), 400
    except StoreUnavailable as e:
        return jsonify({"error": e.reason}), 503


@api_bp.route("/auth/login", methods=["POST"])
def login_agent():
    logger.info("login_agent")

    auth = local_auth()
    if auth is None:
        return jsonify({"error": "agent accounts are managed by the external auth service"}), 404

    try:
        payload = validate_payload(request.get_json(silent=True), CREDENTIAL_FIELDS)
        agent = auth.verify_credentials(payload["username"], payload["password"])
    except PayloadError as e:
        return jsonify({"error": e.reason}), 400
    except StoreUnavailable as e:
        return jsonify({"error": e.reason}), 503

    if agent is None:
        logger.info(f"invalid credentials for {payload['username']}")
        return jsonify({"error": "invalid credentials"}), 401

    return (
        jsonify(
            {"agentId": agent.id, "username": agent.username, "token": auth.issue_token(agent)}
        ),
        200,
    )
