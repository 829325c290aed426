"""
Tests for the chat endpoints and the AI service client.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from src.services.ai_client import UNAVAILABLE_REPLY, AIServiceClient


@pytest.fixture
def chatting(make_user, make_character, auth_headers):
    user = make_user("alice")
    character = make_character(make_user("creator"))
    return user, character, auth_headers(user)


class TestChatEndpoints:
    """Conversations between a user and a character."""

    def test_get_creates_empty_chat(self, client, chatting):
        user, character, headers = chatting
        first = client.get(f"/api/chat/{character.id}", headers=headers).get_json()
        again = client.get(f"/api/chat/{character.id}", headers=headers).get_json()

        assert first["id"] == again["id"]
        assert first["messages"] == []
        assert first["character"]["name"] == "Sakura"

    @patch.object(AIServiceClient, "reply", return_value="*smiles* Hello Ada!")
    def test_send_message(self, mock_reply, client, chatting):
        user, character, headers = chatting
        response = client.post(f"/api/chat/{character.id}", headers=headers, json={"message": "Hello"})

        assert response.status_code == 200
        messages = response.get_json()["messages"]
        assert [(m["sender"], m["content"]) for m in messages] == [
            ("user", "Hello"), ("character", "*smiles* Hello Ada!")]
        mock_reply.assert_called_once_with(character.id, "Hello")

    @patch.object(AIServiceClient, "reply", side_effect=["one", "two"])
    def test_transcript_is_append_only(self, mock_reply, client, chatting):
        user, character, headers = chatting
        client.post(f"/api/chat/{character.id}", headers=headers, json={"message": "a"})
        body = client.post(f"/api/chat/{character.id}", headers=headers, json={"message": "b"}).get_json()

        assert [m["content"] for m in body["messages"]] == ["a", "one", "b", "two"]

    def test_empty_message_rejected(self, client, chatting):
        user, character, headers = chatting
        response = client.post(f"/api/chat/{character.id}", headers=headers, json={"message": ""})
        assert response.status_code == 400

    def test_private_character(self, client, make_user, make_character, auth_headers):
        character = make_character(make_user("creator"), is_public=False)
        response = client.get(f"/api/chat/{character.id}", headers=auth_headers(make_user("alice")))
        assert response.status_code == 403

    @patch.object(AIServiceClient, "reply", return_value="hi")
    def test_list_omits_messages(self, mock_reply, client, chatting):
        user, character, headers = chatting
        client.post(f"/api/chat/{character.id}", headers=headers, json={"message": "Hello"})

        chats = client.get("/api/chat", headers=headers).get_json()
        assert len(chats) == 1
        assert "messages" not in chats[0]

    def test_delete(self, client, chatting):
        user, character, headers = chatting
        chat = client.get(f"/api/chat/{character.id}", headers=headers).get_json()

        response = client.delete(f"/api/chat/{chat['id']}", headers=headers)
        assert response.get_json() == {"msg": "Chat deleted"}
        assert client.get("/api/chat", headers=headers).get_json() == []

    def test_delete_someone_elses_chat(self, client, chatting, make_user, auth_headers):
        user, character, headers = chatting
        chat = client.get(f"/api/chat/{character.id}", headers=headers).get_json()
        response = client.delete(f"/api/chat/{chat['id']}", headers=auth_headers(make_user("mallory")))
        assert response.status_code == 403


def _session_returning(status=200, payload=None, exc=None):
    session = MagicMock()
    if exc is not None:
        session.request.side_effect = exc
        return session
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.content = b"{}"
    response.text = "{}"
    response.json.return_value = payload
    session.request.return_value = response
    return session


class TestAIServiceClient:

    def test_posts_message_and_character(self):
        session = _session_returning(payload={"response": "Hello!"})
        client = AIServiceClient("http://ai.test/", session=session)

        assert client.reply("c1", "Hi") == "Hello!"
        args, kwargs = session.request.call_args
        assert args == ("POST", "http://ai.test/api/chat")
        assert kwargs["json"] == {"message": "Hi", "characterId": "c1"}

    def test_unreachable_service(self):
        session = _session_returning(exc=requests.exceptions.ConnectionError("refused"))
        assert AIServiceClient("http://ai.test", session=session).reply("c1", "Hi") == UNAVAILABLE_REPLY

    def test_error_status(self):
        session = _session_returning(status=500, payload={"error": "boom"})
        assert AIServiceClient("http://ai.test", session=session).reply("c1", "Hi") == UNAVAILABLE_REPLY

    def test_empty_response(self):
        session = _session_returning(payload={"response": ""})
        assert AIServiceClient("http://ai.test", session=session).reply("c1", "Hi") == UNAVAILABLE_REPLY
