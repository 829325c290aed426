"""
Tests for the AI service's character cache.
"""
import json
from unittest.mock import MagicMock

import pytest
import requests

from src.services.character_cache import BackendCharacterClient, CharacterCache
from src.services.errors import ExternalServiceError


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    backend = MagicMock()
    backend.fetch_all.return_value = [
        {"id": "c1", "name": "Sakura"},
        {"_id": "c2", "name": "Yuki"},
    ]
    backend.fetch_one.return_value = None
    return backend


@pytest.fixture
def cache(backend, clock):
    return CharacterCache.from_backend(backend, ttl_seconds=300, clock=clock)


class TestCharacterCache:
    """Roster refresh and lookups."""

    def test_first_read_loads_roster(self, cache, backend):
        assert cache.get("c1")["name"] == "Sakura"
        assert cache.get("c2")["name"] == "Yuki"
        backend.fetch_all.assert_called_once()
        assert len(cache) == 2

    def test_fresh_roster_is_not_reloaded(self, cache, backend, clock):
        cache.all()
        clock.now += 299
        cache.all()
        assert backend.fetch_all.call_count == 1

    def test_stale_roster_is_reloaded(self, cache, backend, clock):
        cache.all()
        clock.now += 300
        backend.fetch_all.return_value = [{"id": "c3", "name": "Hana"}]

        assert [c["name"] for c in cache.all()] == ["Hana"]
        assert cache.peek("c1") is None

    def test_miss_fetches_single_character(self, cache, backend):
        backend.fetch_one.return_value = {"id": "c9", "name": "Mei"}

        assert cache.get("c9")["name"] == "Mei"
        assert cache.get("c9")["name"] == "Mei"
        backend.fetch_one.assert_called_once_with("c9")

    def test_unknown_character(self, cache, backend):
        assert cache.get("nobody") is None

    def test_failed_refresh_keeps_old_roster(self, cache, backend, clock):
        cache.all()
        clock.now += 301
        backend.fetch_all.side_effect = ExternalServiceError("backend", "down")

        assert cache.get("c1")["name"] == "Sakura"
        assert cache.is_stale

    def test_failed_refresh_waits_for_next_window(self, clock):
        """A backend outage costs one roster request per TTL, not one per lookup."""
        load_all = MagicMock(side_effect=ExternalServiceError("backend", "down"))
        load_one = MagicMock(return_value={"id": "c1", "name": "Sakura"})
        cache = CharacterCache(load_all, load_one, ttl_seconds=300, clock=clock)

        for _ in range(5):
            assert cache.get("c1")["name"] == "Sakura"
            cache.all()
            clock.now += 10
        assert load_all.call_count == 1

        clock.now += 300
        load_all.side_effect = None
        load_all.return_value = [{"id": "c2", "name": "Yuki"}]
        assert [c["name"] for c in cache.all()] == ["Yuki"]
        assert load_all.call_count == 2

    def test_failed_single_fetch(self, cache, backend):
        backend.fetch_one.side_effect = ExternalServiceError("backend", "down")
        assert cache.get("c9") is None

    def test_peek_never_loads(self, cache, backend):
        assert cache.peek("c1") is None
        backend.fetch_all.assert_not_called()


def _response(status, payload):
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.ok = status < 400
    response.json.return_value = payload
    response.text = json.dumps(payload)
    response.content = response.text.encode()
    return response


class TestBackendCharacterClient:

    def test_fetch_all(self):
        session = MagicMock()
        session.request.return_value = _response(200, [{"id": "c1"}])
        client = BackendCharacterClient("http://backend.test/", session=session)

        assert client.fetch_all() == [{"id": "c1"}]
        args, kwargs = session.request.call_args
        assert args[:2] == ("GET", "http://backend.test/api/characters")

    def test_fetch_all_rejects_non_list(self):
        session = MagicMock()
        session.request.return_value = _response(200, {"error": "nope"})
        with pytest.raises(ExternalServiceError):
            BackendCharacterClient("http://backend.test", session=session).fetch_all()

    def test_fetch_one_hidden_or_missing(self):
        session = MagicMock()
        client = BackendCharacterClient("http://backend.test", session=session)
        for status in (403, 404):
            session.request.return_value = _response(status, {"msg": "Character not found"})
            assert client.fetch_one("c1") is None

    def test_fetch_one_server_error_raises(self):
        session = MagicMock()
        session.request.return_value = _response(500, {"error": "boom"})
        with pytest.raises(ExternalServiceError):
            BackendCharacterClient("http://backend.test", session=session).fetch_one("c1")
