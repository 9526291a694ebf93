"""
Caption generation across providers.

`generate` never raises: any provider failure is classified and turned into a
fallback caption so that every image in a batch still gets exactly one caption.
Each description call also has a total deadline, independent of the per-read
timeouts the transports apply.
"""

import concurrent.futures
import logging
import os
from typing import Mapping, Optional

from .captions import CaptionOptions, CaptionResult, build_caption, build_prompt, fallback_caption
from .config import CAPTION_TIMEOUT_SECONDS
from .errors import classify
from .gemini_client import GeminiClient
from .openai_client import OpenAICompatibleClient
from .providers import get_credential, lookup, provider_base_url


class CaptionGenerator:
    """Dispatches a caption request to the Gemini SDK or an OpenAI-compatible endpoint."""

    def __init__(self, env: Optional[Mapping[str, str]] = None, timeout: float = CAPTION_TIMEOUT_SECONDS):
        self.env = env
        self.timeout = timeout
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=4, thread_name_prefix="caption")

    @property
    def environment(self) -> Mapping[str, str]:
        return os.environ if self.env is None else self.env

    def client_for(self, provider_id: str, timeout: Optional[float] = None):
        """Build the transport client for a provider; raises on unknown provider or missing key."""
        provider = lookup(provider_id)
        timeout = self.timeout if timeout is None else timeout
        api_key = get_credential(provider, self.environment)

        if provider.id == "gemini":
            return GeminiClient(api_key, timeout=timeout)
        return OpenAICompatibleClient(
            provider,
            provider_base_url(provider, self.environment),
            api_key=api_key,
            timeout=timeout,
        )

    def describe(self, image_bytes: bytes, options: CaptionOptions, provider: str, model: str,
                 timeout: Optional[float] = None) -> str:
        """Raw description from the provider. Raises on failure or when the deadline passes."""
        timeout = self.timeout if timeout is None else timeout
        client = self.client_for(provider, timeout)

        future = self._executor.submit(client.describe_image, image_bytes, build_prompt(options), model)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            # The worker finishes on its own once the transport gives up
            future.cancel()
            raise TimeoutError(f"TIMEOUT: {provider}/{model} caption exceeded {timeout:g}s") from None

    def generate_result(self, image_bytes: bytes, options: CaptionOptions, provider: str, model: str,
                        timeout: Optional[float] = None) -> CaptionResult:
        try:
            raw_description = self.describe(image_bytes, options, provider, model, timeout)
        except Exception as e:
            app_error = classify(e, f"{provider} caption")
            logging.error(f"❌ {app_error.to_log(f'{provider}/{model}')}")
            return CaptionResult(fallback_caption(options.keyword, app_error), app_error)

        caption = build_caption(
            options.keyword,
            raw_description,
            options.checkpoint,
            options.negative_hints,
        )
        return CaptionResult(caption)

    def generate(self, image_bytes: bytes, options: CaptionOptions, provider: str, model: str,
                 timeout: Optional[float] = None) -> str:
        return self.generate_result(image_bytes, options, provider, model, timeout).caption
