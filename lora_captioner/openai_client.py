"""
Client for OpenAI-compatible chat-completion endpoints.
Used for OpenAI, OpenRouter, Together, Groq and Ollama.
"""

import base64
import logging
from typing import Optional

import requests

from .captions import image_mime_type
from .config import CAPTION_TIMEOUT_SECONDS
from .errors import InvalidResponseError
from .providers import ProviderConfig

MAX_TOKENS = 300
TEST_PROMPT = "Say 'API is working' in one sentence."

OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://github.com/lora-captioner/lora-captioner",
    "X-Title": "LoRA Captioner",
}


class OpenAICompatibleClient:
    """Posts multimodal chat completions to a provider's base URL."""

    def __init__(self, provider: ProviderConfig, base_url: str, api_key: Optional[str] = None,
                 timeout: float = CAPTION_TIMEOUT_SECONDS, session=None):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.provider.id == "openrouter":
            headers.update(OPENROUTER_HEADERS)
        return headers

    def _chat(self, model: str, content, max_tokens: int = MAX_TOKENS) -> str:
        url = f"{self.base_url}/chat/completions"
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": content}],
            "max_tokens": max_tokens,
        }

        try:
            response = self.session.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as e:
            raise TimeoutError(
                f"TIMEOUT: {self.provider.id} request exceeded {self.timeout:.0f}s"
            ) from e

        if not response.ok:
            raise RuntimeError(f"API request failed: {response.status_code} - {response.text}")

        data = response.json()
        choices = data.get("choices") or []
        message = (choices[0].get("message") or {}) if choices else {}
        text = (message.get("content") or "").strip()
        if not text:
            raise InvalidResponseError(f"Empty response from {self.provider.id} model {model}")
        return text

    def describe_image(self, image_bytes: bytes, prompt: str, model: str) -> str:
        """Send the image inline as a data URI and return the description text."""
        image_b64 = base64.b64encode(image_bytes).decode("ascii")
        content = [
            {"type": "text", "text": prompt},
            {
                "type": "image_url",
                "image_url": {"url": f"data:{image_mime_type(image_bytes)};base64,{image_b64}"},
            },
        ]
        text = self._chat(model, content)
        logging.debug(f"{self.provider.id}/{model} returned {len(text)} characters")
        return text

    def test_connection(self, model: str) -> str:
        return self._chat(model, TEST_PROMPT, max_tokens=50)
