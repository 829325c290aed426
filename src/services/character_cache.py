# -*- coding: utf-8 -*-
"""
Character roster cache for the AI service.

A read-through cache over the backend's character API. The whole roster is
reloaded when older than the TTL; a character missing from the roster is
fetched individually and kept until the next full reload. A failed reload
is not retried until another TTL has passed. The clock is
injected so tests can move time without sleeping.
"""
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from src.services.errors import ExternalServiceError
from src.services.gateways.http import build_session, request_json
from src.services.structured_logging import get_logger

logger = get_logger("waifu.character_cache")

Character = Dict[str, Any]


class BackendCharacterClient:
    """Reads characters from the primary backend's public API"""

    provider = "backend"

    def __init__(self, base_url: str, timeout: float = 30, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or build_session(retries=2)

    def fetch_all(self) -> List[Character]:
        data = request_json(self.session, self.provider, "GET", f"{self.base_url}/api/characters",
                            timeout=self.timeout, operation="list_characters")
        if not isinstance(data, list):
            raise ExternalServiceError(self.provider, "character list is not an array")
        return data

    def fetch_one(self, character_id: str) -> Optional[Character]:
        """None when the backend does not know the character (or hides it)."""
        try:
            data = request_json(self.session, self.provider, "GET",
                                f"{self.base_url}/api/characters/{character_id}",
                                timeout=self.timeout, operation="get_character")
        except ExternalServiceError as e:
            if e.upstream_status in (403, 404):
                return None
            raise
        return data or None


class CharacterCache:
    """Read-through character cache with a fixed TTL"""

    def __init__(
        self,
        load_all: Callable[[], List[Character]],
        load_one: Callable[[str], Optional[Character]],
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._load_all = load_all
        self._load_one = load_one
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._characters: Dict[str, Character] = {}
        self._loaded_at: Optional[float] = None
        self._attempted_at: Optional[float] = None

    @classmethod
    def from_backend(cls, client: BackendCharacterClient, ttl_seconds: float = 300,
                     clock: Callable[[], float] = time.monotonic) -> "CharacterCache":
        return cls(client.fetch_all, client.fetch_one, ttl_seconds=ttl_seconds, clock=clock)

    @property
    def is_stale(self) -> bool:
        return self._loaded_at is None or self._clock() - self._loaded_at >= self.ttl_seconds

    @property
    def refresh_due(self) -> bool:
        """Whether a reload should be tried; failed attempts count towards the TTL."""
        return self._attempted_at is None or self._clock() - self._attempted_at >= self.ttl_seconds

    def refresh(self) -> bool:
        """Reload the roster. On failure the previous roster is kept; returns success."""
        self._attempted_at = self._clock()
        try:
            characters = self._load_all()
        except ExternalServiceError as e:
            logger.warning("Character roster refresh failed", error=e.message,
                           cached=len(self._characters))
            return False
        self._characters = {str(_id_of(c)): c for c in characters if _id_of(c) is not None}
        self._loaded_at = self._attempted_at
        logger.info("Character roster refreshed", count=len(self._characters))
        return True

    def all(self) -> List[Character]:
        if self.refresh_due:
            self.refresh()
        return list(self._characters.values())

    def get(self, character_id: str) -> Optional[Character]:
        """Cached character, falling back to a single fetch on a miss."""
        if self.refresh_due:
            self.refresh()
        key = str(character_id)
        if key in self._characters:
            return self._characters[key]
        try:
            character = self._load_one(key)
        except ExternalServiceError as e:
            logger.warning("Character fetch failed", character_id=key, error=e.message)
            return None
        if character is not None:
            self._characters[key] = character
        return character

    def peek(self, character_id: str) -> Optional[Character]:
        """Cached entry only; never loads."""
        return self._characters.get(str(character_id))

    def __len__(self):
        return len(self._characters)


def _id_of(character: Character) -> Any:
    return character.get("id", character.get("_id"))
