from flask import Flask
from waitress import serve
import logging
import os

from support_relay.chat import build_services
from support_relay.config import Config
from support_relay.events import send_to_connection, socketio
from support_relay.models import db
from support_relay.routes import api_bp
from support_relay.utils.auth import LocalAuthService, RemoteAuthGateway

logger = logging.getLogger("support_relay")


def create_app(config_overrides: dict = None) -> Flask:
    """
    Builds the Flask app with its database, socket events and chat services

    Args:
        config_overrides: values that replace the environment driven Config

    Returns:
        the configured Flask app
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    logging.basicConfig(level=app.config["LOG_LEVEL"])

    # configure the database
    db_url = app.config["DATABASE_URL"]
    if not db_url:
        os.makedirs(app.instance_path, exist_ok=True)
        db_url = f"sqlite:///{os.path.join(app.instance_path, 'support_relay.db')}"
    app.config["SQLALCHEMY_DATABASE_URI"] = db_url

    # bound every store call so a stuck database cannot stall a conversation's queue
    if db_url.startswith("sqlite"):
        engine_options = {"connect_args": {"timeout": app.config["STORE_TIMEOUT"]}}
    else:
        engine_options = {"pool_timeout": app.config["STORE_TIMEOUT"], "pool_pre_ping": True}
    app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", engine_options)

    # initialize the database
    db.init_app(app)
    with app.app_context():
        db.create_all()

    if app.config["AUTH_SERVICE_URL"]:
        auth_gateway = RemoteAuthGateway(app.config["AUTH_SERVICE_URL"], app.config["AUTH_TIMEOUT"])
    else:
        auth_gateway = LocalAuthService(app.config["SECRET_KEY"], app.config["TOKEN_MAX_AGE"])

    app.extensions["support_relay"] = build_services(send_to_connection, auth_gateway, app.config)

    app.register_blueprint(api_bp)
    socketio.init_app(
        app,
        async_mode="threading",
        cors_allowed_origins=[o.strip() for o in app.config["CORS_ORIGINS"].split(",") if o.strip()],
    )

    logger.info(f"support relay ready, database {db_url}")
    return app


def main():
    app = create_app()
    host, port = app.config["HOST"], app.config["PORT"]
    if app.config["DEV_SERVER"]:
        socketio.run(app, host=host, port=port, allow_unsafe_werkzeug=True)
    else:
        serve(app, host=host, port=port)


if __name__ == "__main__":
    main()
