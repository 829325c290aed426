"""
Backend-side client for the AI service's chat endpoint.
"""
from typing import Optional

import requests

from src.services.errors import ExternalServiceError
from src.services.gateways.http import build_session, request_json
from src.services.structured_logging import get_logger

logger = get_logger('waifu.chat')

UNAVAILABLE_REPLY = "Sorry, I'm having trouble processing that right now. Can we talk about something else?"


class AIServiceClient:

    provider = "ai-service"

    def __init__(self, base_url: str, timeout: float = 30, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or build_session(retries=1)

    def reply(self, character_id: str, message: str) -> str:
        """Character reply to one user message; a canned apology when the AI service fails."""
        try:
            data = request_json(
                self.session, self.provider, "POST", f"{self.base_url}/api/chat",
                timeout=self.timeout, operation="chat",
                json={"message": message, "characterId": character_id},
            )
        except ExternalServiceError as e:
            logger.log_fallback("chat_reply", e.message, character_id=character_id)
            return UNAVAILABLE_REPLY
        response = data.get("response") if isinstance(data, dict) else None
        if not response:
            logger.log_fallback("chat_reply", "empty_response", character_id=character_id)
            return UNAVAILABLE_REPLY
        return response
