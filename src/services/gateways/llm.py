"""
LLM gateway: chat completions and image generation via the OpenAI REST API.
Chat and images may use different API keys.
"""
from __future__ import annotations

import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from src.services.errors import ExternalServiceError
from src.services.gateways.http import build_session, request_json
from src.services.structured_logging import get_logger

logger = get_logger('waifu.ai')

PROVIDER = "openai"


class LLMGateway(ABC):
    name = PROVIDER

    @abstractmethod
    def chat_completion(self, system_prompt: str, user_message: str) -> str:
        ...

    @abstractmethod
    def generate_image(self, prompt: str) -> str:
        """Returns the generated image URL."""


class OpenAIGateway(LLMGateway):

    def __init__(
        self,
        chat_api_key: str,
        image_api_key: str = "",
        chat_model: str = "gpt-3.5-turbo",
        image_model: str = "dall-e-3",
        api_base: str = "https://api.openai.com/v1",
        timeout: float = 30,
    ):
        self.chat_api_key = chat_api_key
        self.image_api_key = image_api_key or chat_api_key
        self.chat_model = chat_model
        self.image_model = image_model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = build_session(retries=2)

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}"
        }

    def chat_completion(self, system_prompt, user_message):
        request_id = str(uuid.uuid4())
        start_time = time.time()
        payload = {
            "model": self.chat_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "max_tokens": 300,
            "temperature": 0.7,
        }
        data = request_json(self.session, PROVIDER, "POST", f"{self.api_base}/chat/completions",
                            timeout=self.timeout, operation="chat_completion",
                            headers=self._headers(self.chat_api_key), json=payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ExternalServiceError(PROVIDER, "chat completion response has no content") from e

        usage = data.get("usage", {})
        logger.info(
            "OpenAI chat success",
            request_id=request_id,
            model=self.chat_model,
            latency_ms=int((time.time() - start_time) * 1000),
            total_tokens=usage.get("total_tokens", 0),
        )
        return content.strip()

    def generate_image(self, prompt):
        payload = {
            "model": self.image_model,
            "prompt": prompt,
            "n": 1,
            "size": "1024x1024",
        }
        data = request_json(self.session, PROVIDER, "POST", f"{self.api_base}/images/generations",
                            timeout=self.timeout * 2, operation="generate_image",
                            headers=self._headers(self.image_api_key), json=payload)
        try:
            return data["data"][0]["url"]
        except (KeyError, IndexError, TypeError) as e:
            raise ExternalServiceError(PROVIDER, "image response has no url") from e


class StubLLMGateway(LLMGateway):
    """Deterministic replies; queue canned replies with `replies`."""

    def __init__(self):
        self.replies: List[str] = []
        self.prompts: List[Dict[str, str]] = []
        self.image_prompts: List[str] = []
        self.fail_next: Optional[str] = None

    def _maybe_fail(self, operation: str):
        if self.fail_next == operation:
            self.fail_next = None
            raise ExternalServiceError(PROVIDER, f"stub failure in {operation}")

    def chat_completion(self, system_prompt, user_message):
        self._maybe_fail("chat_completion")
        self.prompts.append({"system": system_prompt, "user": user_message})
        if self.replies:
            return self.replies.pop(0)
        return f"*smiles* You said: {user_message}"

    def generate_image(self, prompt):
        self._maybe_fail("generate_image")
        self.image_prompts.append(prompt)
        return f"https://images.stub.local/{len(self.image_prompts):06d}.png"
