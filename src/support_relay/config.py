import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev_key")
    # unset: a sqlite file in the instance folder
    DATABASE_URL = os.environ.get("DATABASE_URL")
    # unset: agents register and log in against this service
    AUTH_SERVICE_URL = os.environ.get("AUTH_SERVICE_URL")
    TOKEN_MAX_AGE = int(os.environ.get("TOKEN_MAX_AGE", 30 * 24 * 3600))
    STORE_TIMEOUT = float(os.environ.get("STORE_TIMEOUT", 5))
    AUTH_TIMEOUT = float(os.environ.get("AUTH_TIMEOUT", 5))
    MAX_RETRIES = int(os.environ.get("MAX_RETRIES", 3))
    RETRY_DELAY = float(os.environ.get("RETRY_DELAY", 0.5))
    MAX_MESSAGE_LENGTH = int(os.environ.get("MAX_MESSAGE_LENGTH", 5000))
    # seconds a closed connection still counts as the sender of its queued events
    DISCONNECT_GRACE = float(os.environ.get("DISCONNECT_GRACE", 30))
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    HOST = os.environ.get("HOST", "0.0.0.0")
    PORT = int(os.environ.get("PORT", 8080))
    # werkzeug supports the websocket transport; waitress serves long-polling only
    DEV_SERVER = os.environ.get("DEV_SERVER", "false").lower() in ("1", "true", "yes")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
