"""
Prompt construction and caption formatting shared by every provider.
"""

import re
from dataclasses import dataclass
from typing import Optional

from .errors import AppError, ErrorCode

DEFAULT_INSTRUCTION = "Describe this image in detail for training a LoRA model."

LENGTH_INSTRUCTIONS = {
    "Short": "Keep the description concise (1-2 sentences).",
    "Medium": "Provide a moderate description (2-4 sentences).",
    "Long": "Provide a detailed, comprehensive description.",
}

STRICT_FOCUS_INSTRUCTION = "Focus only on the main subject, ignoring background details."

# Used when the provider blocks the text of an otherwise successful response
SAFETY_FALLBACK_DESCRIPTION = "A detailed image suitable for LoRA training"

_TRAILING_SEPARATORS = re.compile(r"[,;\s]+$")
_TERMINAL_PUNCTUATION = re.compile(r"[.!?]$")


@dataclass
class CaptionOptions:
    keyword: str
    caption_guidance: str = ""
    checkpoint: str = ""
    negative_hints: str = ""
    caption_length: str = "Medium"
    strict_focus: bool = False


@dataclass
class CaptionResult:
    """A caption plus the classified failure that produced it, if any."""
    caption: str
    error: Optional[AppError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_prompt(options: CaptionOptions) -> str:
    parts = [options.caption_guidance or DEFAULT_INSTRUCTION]
    parts.append(LENGTH_INSTRUCTIONS.get(options.caption_length, LENGTH_INSTRUCTIONS["Medium"]))

    if options.negative_hints:
        parts.append(f"Avoid mentioning: {options.negative_hints}")

    if options.strict_focus:
        parts.append(STRICT_FOCUS_INSTRUCTION)

    return " ".join(parts)


def build_caption(keyword: str, raw_description: str, checkpoint: str = "", negative_hints: str = "") -> str:
    """Assemble "{keyword}, {description}{negative-clause}".

    The checkpoint is accepted for every target base model but does not change
    the output shape.
    """
    core_subject = keyword.strip()

    desc = _TRAILING_SEPARATORS.sub("", raw_description.strip())
    if desc and not _TERMINAL_PUNCTUATION.search(desc):
        desc += "."

    neg = f" (neg: {negative_hints})" if negative_hints else ""

    return f"{core_subject}, {desc}{neg}".strip()


def fallback_caption(keyword: str, error: AppError) -> str:
    """Caption written in place of a description when the provider call failed."""
    if error.code == ErrorCode.CONTENT_FILTERED:
        return f"{keyword}, content filtered by safety settings"
    if error.code == ErrorCode.RATE_LIMIT_EXCEEDED:
        return f"{keyword}, rate limit exceeded, please retry"
    return f"{keyword}, image description unavailable"


def image_mime_type(image_bytes: bytes) -> str:
    """Sniff the MIME type of an uploaded image; JPEG unless the magic says otherwise."""
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"
