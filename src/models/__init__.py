# -*- coding: utf-8 -*-
from src.database import db

from .user import User
from .character import Character, CHARACTER_STYLES
from .chat import Chat, ChatMessage
from .merchandise import Merchandise, MERCHANDISE_CATEGORIES
from .purchase import Purchase, PurchaseItem, CreatorPayout
from .webhook import WebhookEvent

__all__ = [
    "db",
    "User",
    "Character",
    "CHARACTER_STYLES",
    "Chat",
    "ChatMessage",
    "Merchandise",
    "MERCHANDISE_CATEGORIES",
    "Purchase",
    "PurchaseItem",
    "CreatorPayout",
    "WebhookEvent",
]
