"""
Unit tests for gemini_client module.
"""

import unittest
from unittest.mock import Mock, patch

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from google.genai import types

from lora_captioner.captions import SAFETY_FALLBACK_DESCRIPTION
from lora_captioner.errors import InvalidResponseError
from lora_captioner.gemini_client import GeminiClient, TEST_PROMPT

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def make_response(parts=("A cat on a mat",), finish_reason=types.FinishReason.STOP, block_reason=None):
    """Build a generate_content response mock."""
    candidate = Mock()
    candidate.finish_reason = finish_reason
    candidate.content.parts = [Mock(text=text) for text in parts]

    response = Mock()
    response.candidates = [candidate]
    response.prompt_feedback = Mock(block_reason=block_reason) if block_reason else None
    return response


def make_model(name, actions, display_name=None):
    model = Mock()
    model.name = name
    model.supported_actions = actions
    model.display_name = display_name
    model.description = None
    model.input_token_limit = 1000
    model.output_token_limit = 100
    return model


class TestGeminiClient(unittest.TestCase):
    """Test GeminiClient class."""

    @patch('lora_captioner.gemini_client.genai.Client')
    def test_init(self, mock_genai_client):
        """Test the SDK client is built with a millisecond timeout."""
        client = GeminiClient("AIzaKey", timeout=15)

        self.assertEqual(client.timeout, 15)
        kwargs = mock_genai_client.call_args.kwargs
        self.assertEqual(kwargs['api_key'], "AIzaKey")
        self.assertEqual(kwargs['http_options'].timeout, 15000)

    def test_init_without_key(self):
        """Test a missing key raises."""
        with self.assertRaisesRegex(ValueError, "GEMINI_API_KEY is not set"):
            GeminiClient("")

    @patch('lora_captioner.gemini_client.genai.Client')
    def test_describe_image(self, mock_genai_client):
        """Test a successful description joins text parts."""
        mock_models = mock_genai_client.return_value.models
        mock_models.generate_content.return_value = make_response(parts=("A cat ", "on a mat "))

        client = GeminiClient("AIzaKey")
        text = client.describe_image(PNG_BYTES, "Describe.", "gemini-2.5-flash")

        self.assertEqual(text, "A cat on a mat")
        kwargs = mock_models.generate_content.call_args.kwargs
        self.assertEqual(kwargs['model'], "gemini-2.5-flash")
        self.assertEqual(kwargs['contents'][0], "Describe.")
        self.assertEqual(kwargs['contents'][1].inline_data.mime_type, "image/png")
        self.assertEqual(len(kwargs['config'].safety_settings), 4)

    @patch('lora_captioner.gemini_client.genai.Client')
    def test_describe_image_safety_block(self, mock_genai_client):
        """Test a safety finish reason yields the fallback description."""
        mock_models = mock_genai_client.return_value.models
        mock_models.generate_content.return_value = make_response(
            parts=(), finish_reason=types.FinishReason.SAFETY
        )

        with patch('logging.warning') as mock_warning:
            text = GeminiClient("AIzaKey").describe_image(PNG_BYTES, "Describe.", "gemini-2.5-flash")

        self.assertEqual(text, SAFETY_FALLBACK_DESCRIPTION)
        mock_warning.assert_called_once()

    @patch('lora_captioner.gemini_client.genai.Client')
    def test_describe_image_prompt_blocked(self, mock_genai_client):
        """Test a prompt-level block yields the fallback description."""
        response = make_response(block_reason="PROHIBITED_CONTENT")
        response.candidates = []
        mock_genai_client.return_value.models.generate_content.return_value = response

        text = GeminiClient("AIzaKey").describe_image(PNG_BYTES, "Describe.", "gemini-2.5-flash")
        self.assertEqual(text, SAFETY_FALLBACK_DESCRIPTION)

    @patch('lora_captioner.gemini_client.genai.Client')
    def test_describe_image_empty(self, mock_genai_client):
        """Test empty or missing candidates raise InvalidResponseError."""
        mock_models = mock_genai_client.return_value.models
        client = GeminiClient("AIzaKey")

        mock_models.generate_content.return_value = make_response(parts=("",))
        with self.assertRaises(InvalidResponseError):
            client.describe_image(PNG_BYTES, "Describe.", "gemini-2.5-flash")

        response = make_response()
        response.candidates = []
        mock_models.generate_content.return_value = response
        with self.assertRaises(InvalidResponseError):
            client.describe_image(PNG_BYTES, "Describe.", "gemini-2.5-flash")

    @patch('lora_captioner.gemini_client.genai.Client')
    def test_describe_image_propagates_sdk_errors(self, mock_genai_client):
        """Test SDK exceptions are left for the caller to classify."""
        mock_genai_client.return_value.models.generate_content.side_effect = Exception("429 RESOURCE_EXHAUSTED")

        with self.assertRaisesRegex(Exception, "429"):
            GeminiClient("AIzaKey").describe_image(PNG_BYTES, "Describe.", "gemini-2.5-flash")

    @patch('lora_captioner.gemini_client.genai.Client')
    def test_test_connection(self, mock_genai_client):
        """Test the text-only connectivity call."""
        mock_models = mock_genai_client.return_value.models
        mock_models.generate_content.return_value = Mock(text=" API is working. ")

        self.assertEqual(GeminiClient("AIzaKey").test_connection("gemini-2.5-pro"), "API is working.")
        mock_models.generate_content.assert_called_once_with(model="gemini-2.5-pro", contents=TEST_PROMPT)

    @patch('lora_captioner.gemini_client.genai.Client')
    def test_list_models(self, mock_genai_client):
        """Test filtering and ordering of the model listing."""
        mock_genai_client.return_value.models.list.return_value = [
            make_model("models/gemini-1.0-ultra", ["generateContent"]),
            make_model("models/gemini-2.5-pro", ["generateContent"], "Gemini 2.5 Pro"),
            make_model("models/text-embedding-004", ["embedContent"]),
            make_model("models/gemini-2.5-flash", ["generateContent", "countTokens"]),
        ]

        models = GeminiClient("AIzaKey").list_models()

        self.assertEqual([m['name'] for m in models], ["gemini-2.5-flash", "gemini-2.5-pro", "gemini-1.0-ultra"])
        self.assertEqual(models[1]['displayName'], "Gemini 2.5 Pro")
        self.assertEqual(models[0]['displayName'], "gemini-2.5-flash")
        self.assertEqual(models[0]['description'], "Multimodal AI model")
        self.assertEqual(models[0]['inputTokenLimit'], 1000)


if __name__ == '__main__':
    unittest.main()
