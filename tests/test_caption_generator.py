"""
Unit tests for caption_generator module.
"""

import unittest
import threading
from unittest.mock import patch

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from lora_captioner.captions import SAFETY_FALLBACK_DESCRIPTION, CaptionOptions
from lora_captioner.caption_generator import CaptionGenerator
from lora_captioner.errors import ErrorCode, InvalidResponseError

IMAGE = b"\xff\xd8\xff\xe0fake"


class TestCaptionGenerator(unittest.TestCase):
    """Test CaptionGenerator class."""

    def setUp(self):
        """Set up test fixtures."""
        self.options = CaptionOptions(keyword="ohwx", negative_hints="blurry")
        self.generator = CaptionGenerator(env={'GEMINI_API_KEY': 'AIzaKey', 'OPENAI_API_KEY': 'sk-key'})

    @patch('lora_captioner.caption_generator.GeminiClient')
    def test_gemini_success(self, mock_gemini):
        """Test a Gemini description becomes a formatted caption."""
        mock_gemini.return_value.describe_image.return_value = "a cat sitting"

        result = self.generator.generate_result(IMAGE, self.options, "gemini", "gemini-2.5-flash")

        self.assertTrue(result.ok)
        self.assertEqual(result.caption, "ohwx, a cat sitting. (neg: blurry)")
        mock_gemini.assert_called_once_with('AIzaKey', timeout=30.0)
        args = mock_gemini.return_value.describe_image.call_args.args
        self.assertEqual(args[0], IMAGE)
        self.assertIn("Avoid mentioning: blurry", args[1])
        self.assertEqual(args[2], "gemini-2.5-flash")

    @patch('lora_captioner.caption_generator.GeminiClient')
    def test_safety_fallback_description_counts_as_success(self, mock_gemini):
        """Test a blocked Gemini response is captioned with the generic description."""
        mock_gemini.return_value.describe_image.return_value = SAFETY_FALLBACK_DESCRIPTION

        result = self.generator.generate_result(IMAGE, CaptionOptions(keyword="ohwx"), "gemini", "m")

        self.assertTrue(result.ok)
        self.assertEqual(result.caption, f"ohwx, {SAFETY_FALLBACK_DESCRIPTION}.")

    @patch('lora_captioner.caption_generator.OpenAICompatibleClient')
    def test_openai_dispatch(self, mock_openai):
        """Test OpenAI-compatible providers get their base URL and key."""
        mock_openai.return_value.describe_image.return_value = "a dog"

        caption = self.generator.generate(IMAGE, CaptionOptions(keyword="ohwx"), "openai", "gpt-4o", timeout=5)

        self.assertEqual(caption, "ohwx, a dog.")
        args, kwargs = mock_openai.call_args
        self.assertEqual(args[0].id, "openai")
        self.assertEqual(args[1], "https://api.openai.com/v1")
        self.assertEqual(kwargs, {'api_key': 'sk-key', 'timeout': 5})

    @patch('lora_captioner.caption_generator.OpenAICompatibleClient')
    def test_ollama_dispatch(self, mock_openai):
        """Test Ollama needs no key and honours OLLAMA_BASE_URL."""
        mock_openai.return_value.describe_image.return_value = "a tree"
        generator = CaptionGenerator(env={'OLLAMA_BASE_URL': 'http://gpu:11434'})

        result = generator.generate_result(IMAGE, CaptionOptions(keyword="kw"), "ollama", "llava:latest")

        self.assertTrue(result.ok)
        args, kwargs = mock_openai.call_args
        self.assertEqual(args[1], "http://gpu:11434/v1")
        self.assertIsNone(kwargs['api_key'])

    @patch('lora_captioner.caption_generator.GeminiClient')
    def test_rate_limit_fallback(self, mock_gemini):
        """Test a 429 becomes the rate limit fallback and never raises."""
        mock_gemini.return_value.describe_image.side_effect = Exception("429 Too Many Requests")

        with patch('logging.error') as mock_error:
            result = self.generator.generate_result(IMAGE, self.options, "gemini", "gemini-2.5-flash")

        self.assertFalse(result.ok)
        self.assertEqual(result.error.code, ErrorCode.RATE_LIMIT_EXCEEDED)
        self.assertEqual(result.caption, "ohwx, rate limit exceeded, please retry")
        mock_error.assert_called_once()

    @patch('lora_captioner.caption_generator.GeminiClient')
    def test_content_filtered_fallback(self, mock_gemini):
        """Test a safety error becomes the content filtered fallback."""
        mock_gemini.return_value.describe_image.side_effect = Exception("blocked by SAFETY")

        result = self.generator.generate_result(IMAGE, self.options, "gemini", "m")

        self.assertEqual(result.caption, "ohwx, content filtered by safety settings")

    @patch('lora_captioner.caption_generator.GeminiClient')
    def test_invalid_response_fallback(self, mock_gemini):
        """Test an empty provider response is classified as INVALID_RESPONSE."""
        mock_gemini.return_value.describe_image.side_effect = InvalidResponseError("Empty response")

        result = self.generator.generate_result(IMAGE, self.options, "gemini", "m")

        self.assertEqual(result.error.code, ErrorCode.INVALID_RESPONSE)
        self.assertEqual(result.caption, "ohwx, image description unavailable")

    @patch('lora_captioner.caption_generator.GeminiClient')
    def test_total_deadline_on_slow_provider(self, mock_gemini):
        """Test a provider that keeps the call open past the deadline gets the timeout fallback."""
        release = threading.Event()

        def slow_describe(*args):
            release.wait(5)
            return "too late"

        mock_gemini.return_value.describe_image.side_effect = slow_describe
        generator = CaptionGenerator(env={'GEMINI_API_KEY': 'AIzaKey'}, timeout=0.05)

        try:
            result = generator.generate_result(IMAGE, self.options, "gemini", "gemini-2.5-flash")
        finally:
            release.set()

        self.assertEqual(result.error.code, ErrorCode.REQUEST_TIMEOUT)
        self.assertEqual(result.caption, "ohwx, image description unavailable")
        mock_gemini.assert_called_once_with('AIzaKey', timeout=0.05)

    def test_missing_key_fallback(self):
        """Test a missing key yields the generic fallback without any network call."""
        generator = CaptionGenerator(env={})

        result = generator.generate_result(IMAGE, self.options, "groq", "llama-3.2-90b-vision-preview")

        self.assertEqual(result.error.code, ErrorCode.API_KEY_MISSING)
        self.assertEqual(result.caption, "ohwx, image description unavailable")

    def test_unknown_provider_fallback(self):
        """Test an unknown provider never raises."""
        result = self.generator.generate_result(IMAGE, self.options, "nope", "m")

        self.assertFalse(result.ok)
        self.assertEqual(result.error.code, ErrorCode.INVALID_INPUT)
        self.assertEqual(result.caption, "ohwx, image description unavailable")

    @patch('lora_captioner.caption_generator.GeminiClient')
    def test_client_for_custom_timeout(self, mock_gemini):
        """Test client_for forwards an explicit timeout."""
        self.generator.client_for("gemini", timeout=10.0)
        mock_gemini.assert_called_once_with('AIzaKey', timeout=10.0)

    def test_environment_defaults_to_os_environ(self):
        """Test the process environment is used when none is given."""
        self.assertIs(CaptionGenerator().environment, os.environ)


if __name__ == '__main__':
    unittest.main()
