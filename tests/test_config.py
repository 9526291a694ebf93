"""
Unit tests for config module.
"""

import unittest
from unittest.mock import patch

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from lora_captioner.config import (
    ALLOWED_EXTENSIONS, MAX_FILES, MAX_FILE_SIZE, RateLimitPreset,
    ConfigValidator, parse_arguments
)


class TestConstants(unittest.TestCase):
    """Test configuration constants."""

    def test_upload_limits(self):
        """Test upload limits match the documented values."""
        self.assertEqual(MAX_FILES, 100)
        self.assertEqual(MAX_FILE_SIZE, 10 * 1024 * 1024)
        self.assertEqual(ALLOWED_EXTENSIONS, ('.jpg', '.jpeg', '.png', '.webp'))

    def test_rate_limit_presets(self):
        """Test rate limit tiers."""
        self.assertEqual(RateLimitPreset.STRICT, (10, 60))
        self.assertEqual(RateLimitPreset.MODERATE, (30, 60))
        self.assertEqual(RateLimitPreset.RELAXED, (100, 60))


class TestConfigValidator(unittest.TestCase):
    """Test ConfigValidator class."""

    def test_no_provider_configured(self):
        """Test an empty environment is a blocking error."""
        validator = ConfigValidator({})
        self.assertTrue(validator.has_blocking_errors())
        self.assertIn("No AI provider configured", validator.errors[0])
        self.assertEqual(validator.configured_providers(), [])

    def test_valid_gemini_key(self):
        """Test a well-formed Gemini key passes without warnings."""
        validator = ConfigValidator({'GEMINI_API_KEY': 'AIzaSyTest'})
        self.assertFalse(validator.has_blocking_errors())
        self.assertFalse(validator.has_warnings())
        self.assertEqual(validator.configured_providers(), ['gemini'])

    def test_placeholder_warns(self):
        """Test placeholder values produce a warning but no error."""
        validator = ConfigValidator({'GEMINI_API_KEY': 'your_gemini_api_key_here'})
        self.assertFalse(validator.has_blocking_errors())
        self.assertTrue(validator.has_warnings())
        self.assertIn('GEMINI_API_KEY is set to placeholder value', validator.warnings[0])
        self.assertFalse(validator.is_usable('gemini'))

    def test_key_format_heuristics(self):
        """Test keys with unexpected prefixes warn."""
        validator = ConfigValidator({'GEMINI_API_KEY': 'abc', 'OPENAI_API_KEY': 'xyz'})
        self.assertEqual(len(validator.warnings), 2)
        self.assertTrue(any("start with 'AI'" in w for w in validator.warnings))
        self.assertTrue(any("start with 'sk-'" in w for w in validator.warnings))

    def test_ollama_counts_as_configured(self):
        """Test an Ollama base URL satisfies the provider requirement."""
        validator = ConfigValidator({'OLLAMA_BASE_URL': 'http://localhost:11434'})
        self.assertFalse(validator.has_blocking_errors())
        self.assertIn('ollama', validator.configured_providers())

    def test_to_dict(self):
        """Test the serialized status shape."""
        status = ConfigValidator({'OPENAI_API_KEY': 'sk-test'}).to_dict()
        self.assertEqual(status['configuredProviders'], ['openai'])
        self.assertEqual(status['warnings'], [])
        self.assertEqual(status['errors'], [])

    def test_status_report(self):
        """Test the rendered report lists providers and problems."""
        report = ConfigValidator({'GEMINI_API_KEY': 'AIzaTest'}).status_report()
        self.assertIn('✓ gemini', report)
        self.assertIn('Configuration looks good', report)

        report = ConfigValidator({}).status_report()
        self.assertIn('ERRORS', report)

    @patch('logging.error')
    @patch('logging.warning')
    @patch('logging.info')
    def test_log_status_levels(self, mock_info, mock_warning, mock_error):
        """Test the report is logged at a level matching its worst finding."""
        ConfigValidator({}).log_status()
        mock_error.assert_called_once()

        ConfigValidator({'GEMINI_API_KEY': 'bad'}).log_status()
        mock_warning.assert_called_once()

        ConfigValidator({'GEMINI_API_KEY': 'AIzaGood'}).log_status()
        mock_info.assert_called_once()


class TestParseArguments(unittest.TestCase):
    """Test parse_arguments function."""

    def test_defaults_to_serve(self):
        """Test no subcommand runs the server."""
        args = parse_arguments([])
        self.assertEqual(args.command, 'serve')
        self.assertIsInstance(args.port, int)

    def test_serve_options(self):
        """Test serve host and port."""
        args = parse_arguments(['serve', '--host', '127.0.0.1', '--port', '9000'])
        self.assertEqual(args.host, '127.0.0.1')
        self.assertEqual(args.port, 9000)

    def test_caption_arguments(self):
        """Test caption subcommand arguments."""
        args = parse_arguments([
            'caption', 'images', '--prefix', 'set', '--keyword', 'ohwx',
            '--provider', 'ollama', '--model', 'llava:latest', '--length', 'Short',
            '--strict-focus', '--delay', '0.5', '--negative-hints', 'blurry',
        ])
        self.assertEqual(args.command, 'caption')
        self.assertEqual(args.input_dir, 'images')
        self.assertEqual(args.prefix, 'set')
        self.assertEqual(args.keyword, 'ohwx')
        self.assertEqual(args.provider, 'ollama')
        self.assertEqual(args.model, 'llava:latest')
        self.assertEqual(args.length, 'Short')
        self.assertTrue(args.strict_focus)
        self.assertEqual(args.delay, 0.5)
        self.assertEqual(args.negative_hints, 'blurry')
        self.assertEqual(args.output, 'lora_dataset.zip')

    def test_caption_requires_keyword(self):
        """Test the keyword is mandatory for the caption subcommand."""
        with self.assertRaises(SystemExit):
            parse_arguments(['caption', 'images', '--prefix', 'set'])


if __name__ == '__main__':
    unittest.main()
