from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

from .enums import ConversationStatus, Sender
from .agent import Agent
from .conversation import Conversation
from .message import Message
