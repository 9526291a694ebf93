"""
Configuration module for the LoRA caption pipeline.
Contains all constants, provider credentials, limits and the startup credential validator.
"""

import os
import logging
import argparse
from typing import Dict, List, Mapping, Optional
from google.genai import types
from dotenv import load_dotenv

load_dotenv()

# ==============================================================================
# PROVIDER CREDENTIALS
# ==============================================================================

# One environment variable per provider; Ollama takes a base URL instead of a key
CREDENTIAL_ENV_VARS = {
    'gemini': 'GEMINI_API_KEY',
    'openai': 'OPENAI_API_KEY',
    'openrouter': 'OPENROUTER_API_KEY',
    'together': 'TOGETHER_API_KEY',
    'groq': 'GROQ_API_KEY',
    'ollama': 'OLLAMA_BASE_URL',
}

# Values shipped in .env.example that must be replaced before use
PLACEHOLDER_VALUES = {
    'GEMINI_API_KEY': 'your_gemini_api_key_here',
    'OPENAI_API_KEY': 'your_openai_api_key_here',
    'OPENROUTER_API_KEY': 'your_openrouter_api_key_here',
    'TOGETHER_API_KEY': 'your_together_api_key_here',
    'GROQ_API_KEY': 'your_groq_api_key_here',
}

# Expected key prefixes (format heuristic only)
CREDENTIAL_PREFIXES = {
    'GEMINI_API_KEY': ('AI', "Gemini keys typically start with 'AI'."),
    'OPENAI_API_KEY': ('sk-', "OpenAI keys typically start with 'sk-'."),
}

DEFAULT_PROVIDER = os.getenv('DEFAULT_PROVIDER', 'gemini')
DEFAULT_GEMINI_MODEL = os.getenv('DEFAULT_GEMINI_MODEL', 'gemini-2.5-flash')

# ==============================================================================
# STORAGE CONFIGURATION
# ==============================================================================

# Relative to the working directory of the process
UPLOAD_DIR = os.getenv('UPLOAD_DIR', 'uploads')
PROCESSED_DIR = os.getenv('PROCESSED_DIR', 'processed')
LOG_FILE = os.getenv('LOG_FILE', 'logs.txt')

CLEANUP_RETENTION_DAYS = 7
MAX_LOG_ENTRY_LENGTH = 1000

# ==============================================================================
# UPLOAD AND FORM LIMITS
# ==============================================================================

MAX_FILES = 100
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB per file
ALLOWED_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.webp')

MAX_PREFIX_LENGTH = 50
MAX_KEYWORD_LENGTH = 100
MAX_GUIDANCE_LENGTH = 1000
MAX_HINTS_LENGTH = 500

# ==============================================================================
# TIMEOUTS AND RATE LIMITING
# ==============================================================================

CAPTION_TIMEOUT_SECONDS = 30.0
TEST_TIMEOUT_SECONDS = 15.0
MODEL_LIST_TIMEOUT_SECONDS = 10.0

# Pause between consecutive provider calls within one batch
REQUEST_DELAY_SECONDS = float(os.getenv('REQUEST_DELAY_SECONDS', '2.0'))


class RateLimitPreset:
    """Per-client API limits: (max_calls, period_seconds)."""
    STRICT = (10, 60)      # AI calls
    MODERATE = (30, 60)    # uploads and cleanup
    RELAXED = (100, 60)    # read-only routes

# How often expired client windows are purged from the rate limiters
RATE_LIMIT_CLEANUP_SECONDS = 5 * 60


# Configure maximum relaxed safety settings
SAFETY_SETTINGS = [
    types.SafetySetting(
        category=types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        threshold=types.HarmBlockThreshold.BLOCK_NONE,
    ),
    types.SafetySetting(
        category=types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        threshold=types.HarmBlockThreshold.BLOCK_NONE,
    ),
    types.SafetySetting(
        category=types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        threshold=types.HarmBlockThreshold.BLOCK_NONE,
    ),
    types.SafetySetting(
        category=types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        threshold=types.HarmBlockThreshold.BLOCK_NONE,
    ),
]

# ==============================================================================
# SERVER
# ==============================================================================

HOST = os.getenv('HOST', '0.0.0.0')
PORT = int(os.getenv('PORT', '8000'))
CORS_ORIGINS = [origin.strip() for origin in
                os.getenv('CORS_ORIGINS', 'http://localhost:3000,http://127.0.0.1:3000').split(',')
                if origin.strip()]


class ConfigValidator:
    """Checks provider credentials found in the environment."""

    def __init__(self, env: Optional[Mapping[str, str]] = None):
        self.env = dict(os.environ if env is None else env)
        self.warnings: List[str] = []
        self.errors: List[str] = []
        self._validate()

    def credential(self, provider_id: str) -> Optional[str]:
        env_var = CREDENTIAL_ENV_VARS.get(provider_id)
        if not env_var:
            return None
        return self.env.get(env_var) or None

    def is_usable(self, provider_id: str) -> bool:
        """A provider is usable when its variable is set and not left at the placeholder."""
        value = self.credential(provider_id)
        if not value:
            return False
        env_var = CREDENTIAL_ENV_VARS[provider_id]
        return value != PLACEHOLDER_VALUES.get(env_var)

    def configured_providers(self) -> List[str]:
        return [provider_id for provider_id in CREDENTIAL_ENV_VARS if self.is_usable(provider_id)]

    def _validate(self):
        if not any(self.credential(provider_id) for provider_id in CREDENTIAL_ENV_VARS):
            self.errors.append(
                "No AI provider configured! Please set at least one API key in your .env file."
            )

        for env_var, placeholder in PLACEHOLDER_VALUES.items():
            if self.env.get(env_var) == placeholder:
                self.warnings.append(
                    f"{env_var} is set to placeholder value. Please update with your actual API key."
                )

        for env_var, (prefix, hint) in CREDENTIAL_PREFIXES.items():
            value = self.env.get(env_var)
            if value and value != PLACEHOLDER_VALUES.get(env_var) and not value.startswith(prefix):
                self.warnings.append(f"{env_var} format looks incorrect. {hint}")

    def has_blocking_errors(self) -> bool:
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            'configuredProviders': self.configured_providers(),
            'warnings': list(self.warnings),
            'errors': list(self.errors),
        }

    def status_report(self) -> str:
        """Render the human-readable configuration report."""
        lines = ["=== LoRA Captioner Configuration ==="]

        configured = self.configured_providers()
        if configured:
            lines.append("Configured Providers:")
            lines.extend(f"  ✓ {provider_id}" for provider_id in configured)

        if self.errors:
            lines.append("❌ ERRORS:")
            lines.extend(f"  {error}" for error in self.errors)

        if self.warnings:
            lines.append("⚠️  WARNINGS:")
            lines.extend(f"  {warning}" for warning in self.warnings)

        if not self.errors and not self.warnings:
            lines.append("✅ Configuration looks good!")

        lines.append("=" * 36)
        return "\n".join(lines)

    def log_status(self):
        """Write the report to the diagnostic log; never halts the process."""
        report = self.status_report()
        if self.errors:
            logging.error(report)
        elif self.warnings:
            logging.warning(report)
        else:
            logging.info(report)


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="LoRA dataset captioner using vision LLM providers")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=HOST, help="Bind address")
    serve.add_argument("--port", type=int, default=PORT, help="Bind port")

    caption = subparsers.add_parser("caption", help="Caption a local directory of images into a zip")
    caption.add_argument("input_dir", type=str, help="Directory containing images to caption")
    caption.add_argument("--output", type=str, default="lora_dataset.zip", help="Path of the zip archive to write")
    caption.add_argument("--provider", type=str, default=DEFAULT_PROVIDER, help="Provider id (gemini, openai, openrouter, together, groq, ollama)")
    caption.add_argument("--model", type=str, default=DEFAULT_GEMINI_MODEL, help="Model name for the provider")
    caption.add_argument("--prefix", type=str, required=True, help="Prefix for output filenames")
    caption.add_argument("--keyword", type=str, required=True, help="Trigger keyword placed at the start of every caption")
    caption.add_argument("--checkpoint", type=str, default="", help="Target base model (e.g. SDXL, FLUX, WAN-2.2)")
    caption.add_argument("--guidance", type=str, default="", help="Custom caption instruction")
    caption.add_argument("--negative-hints", type=str, default="", help="Things the description should not mention")
    caption.add_argument("--length", choices=["Short", "Medium", "Long"], default="Medium", help="Caption length")
    caption.add_argument("--strict-focus", action="store_true", help="Describe only the main subject")
    caption.add_argument("--delay", type=float, default=REQUEST_DELAY_SECONDS, help="Seconds between provider calls")

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "serve"
        args.host = HOST
        args.port = PORT
    return args
