"""
Gemini API client module.
Handles all interactions with the Google GenAI API: image descriptions,
connectivity tests and model listing.
"""

import logging
from typing import List

from google import genai
from google.genai import types

from .captions import SAFETY_FALLBACK_DESCRIPTION, image_mime_type
from .config import CAPTION_TIMEOUT_SECONDS, SAFETY_SETTINGS
from .errors import InvalidResponseError

TEST_PROMPT = "Say 'API is working' in one sentence."

_BLOCKED_FINISH_REASONS = ("SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "IMAGE_SAFETY")


def _reason_name(reason) -> str:
    return getattr(reason, "name", None) or str(reason or "")


class GeminiClient:
    """Thin wrapper over genai.Client with a per-request timeout."""

    def __init__(self, api_key, timeout=CAPTION_TIMEOUT_SECONDS):
        """Initialize with an API key and a timeout in seconds."""
        if not api_key:
            raise ValueError("GEMINI_API_KEY is not set")

        self.timeout = timeout
        # HttpOptions.timeout is in milliseconds and aborts the in-flight request
        self.client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )

    def _is_blocked(self, response, candidate) -> bool:
        if candidate is not None and _reason_name(candidate.finish_reason) in _BLOCKED_FINISH_REASONS:
            return True
        feedback = getattr(response, "prompt_feedback", None)
        return bool(feedback is not None and getattr(feedback, "block_reason", None))

    def describe_image(self, image_bytes: bytes, prompt: str, model: str) -> str:
        """Send the image with the prompt and return the raw description text."""
        image_part = types.Part.from_bytes(
            data=image_bytes,
            mime_type=image_mime_type(image_bytes),
        )

        response = self.client.models.generate_content(
            model=model,
            contents=[prompt, image_part],
            config=types.GenerateContentConfig(
                safety_settings=SAFETY_SETTINGS
            )
        )

        candidate = response.candidates[0] if response.candidates else None

        if self._is_blocked(response, candidate):
            logging.warning("🛡️  Content blocked by safety filters, using fallback description")
            return SAFETY_FALLBACK_DESCRIPTION

        if candidate is None:
            raise InvalidResponseError(f"No candidates returned by {model}")

        parts = candidate.content.parts if candidate.content and candidate.content.parts else []
        text = "".join(part.text for part in parts if getattr(part, "text", None)).strip()
        if not text:
            raise InvalidResponseError(
                f"Empty response from {model} (finish reason {_reason_name(candidate.finish_reason)})"
            )
        return text

    def test_connection(self, model: str) -> str:
        """Minimal text-only call used to validate the key and model."""
        response = self.client.models.generate_content(model=model, contents=TEST_PROMPT)
        text = (response.text or "").strip()
        if not text:
            raise InvalidResponseError(f"Empty response from {model}")
        return text

    def list_models(self) -> List[dict]:
        """List models that support generateContent, flash models first, then pro."""
        models = []
        for model in self.client.models.list():
            actions = getattr(model, "supported_actions", None) or []
            if "generateContent" not in actions or not model.name:
                continue
            name = model.name.replace("models/", "")
            models.append({
                "name": name,
                "displayName": model.display_name or name,
                "description": model.description or "Multimodal AI model",
                "inputTokenLimit": model.input_token_limit or 0,
                "outputTokenLimit": model.output_token_limit or 0,
            })

        def sort_key(entry):
            name = entry["name"]
            return ("flash" not in name, "pro" not in name, name)

        models.sort(key=sort_key)
        logging.info(f"📋 Gemini model listing returned {len(models)} generateContent models")
        return models
