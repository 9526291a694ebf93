"""
Input validation for uploads, processing requests and connectivity tests.
Every check raises a CaptionerError before any expensive or mutating work starts.
"""

import os
import re
from collections import namedtuple
from typing import Dict, Sequence, Tuple

from .captions import CaptionOptions
from .config import (
    ALLOWED_EXTENSIONS, MAX_FILES, MAX_FILE_SIZE,
    MAX_PREFIX_LENGTH, MAX_KEYWORD_LENGTH, MAX_GUIDANCE_LENGTH, MAX_HINTS_LENGTH
)
from .errors import ErrorCode, invalid_input
from .providers import lookup

UploadedFile = namedtuple("UploadedFile", ["filename", "content_type", "data"])

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
ALLOWED_MODEL_PATTERN = re.compile(r"^[a-zA-Z0-9.\-:/_]+$")

_MB = 1024 * 1024


def sanitize_filename(filename: str) -> str:
    """Strip directories and replace anything outside [a-zA-Z0-9._-] with '_'."""
    base = os.path.basename((filename or "").replace("\\", "/"))
    name = _UNSAFE_FILENAME_CHARS.sub("_", base)
    if name.strip(".") == "":
        name = "image"
    return name


def unique_key(name: str, taken) -> str:
    """Return name, or name_1, name_2... so it does not collide with `taken`."""
    if name not in taken:
        return name
    stem, ext = os.path.splitext(name)
    counter = 1
    while f"{stem}_{counter}{ext}" in taken:
        counter += 1
    return f"{stem}_{counter}{ext}"


def check_file_count(count: int):
    if count == 0:
        raise invalid_input(
            "No files uploaded",
            "The upload request contains no files",
            "Please select at least one image file to upload.",
        )
    if count > MAX_FILES:
        raise invalid_input(
            "Too many files uploaded",
            f"Maximum {MAX_FILES} files allowed per batch, got {count}",
            f"Please reduce the number of files to {MAX_FILES} or less and upload in batches.",
            code=ErrorCode.TOO_MANY_FILES,
        )


def prepare_uploads(files: Sequence[UploadedFile]) -> Dict[str, bytes]:
    """Validate an upload batch and return it keyed by sanitized, de-duplicated filename."""
    check_file_count(len(files))

    images: Dict[str, bytes] = {}
    for upload in files:
        # Non-image parts are skipped rather than rejected
        if upload.content_type and not upload.content_type.startswith("image/"):
            continue

        if len(upload.data) > MAX_FILE_SIZE:
            raise invalid_input(
                "File is too large",
                f'File "{upload.filename}" is {len(upload.data) / _MB:.2f}MB, maximum is {MAX_FILE_SIZE // _MB}MB',
                f'Please compress or resize "{upload.filename}" to be under {MAX_FILE_SIZE // _MB}MB.',
                code=ErrorCode.FILE_TOO_LARGE,
            )

        ext = os.path.splitext(upload.filename or "")[1].lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise invalid_input(
                "Unsupported file type",
                f'File "{upload.filename}" has extension "{ext}", which is not supported',
                f"Please use only these formats: {', '.join(ALLOWED_EXTENSIONS)}",
                code=ErrorCode.UNSUPPORTED_FILE_TYPE,
            )

        key = unique_key(sanitize_filename(upload.filename), images)
        images[key] = upload.data

    if not images:
        raise invalid_input(
            "No valid image files found",
            "All uploaded files were either non-images or in unsupported formats",
            f"Please upload valid image files in these formats: {', '.join(ALLOWED_EXTENSIONS)}",
        )
    return images


def _check_length(label: str, value: str, limit: int):
    if value and len(value) > limit:
        raise invalid_input(
            f"{label} is too long",
            f"Maximum {limit} characters allowed, got {len(value)}",
            f"Please shorten your {label.lower()} to {limit} characters or less.",
        )


def validate_process_form(provider: str, prefix: str, keyword: str, checkpoint: str = "",
                          caption_guidance: str = "", negative_hints: str = "",
                          caption_length: str = "Medium", strict_focus: bool = False) -> Tuple[str, CaptionOptions]:
    """Check a processing request and build its CaptionOptions."""
    _check_length("Prefix", prefix, MAX_PREFIX_LENGTH)
    _check_length("Keyword", keyword, MAX_KEYWORD_LENGTH)
    _check_length("Caption guidance", caption_guidance, MAX_GUIDANCE_LENGTH)
    _check_length("Negative hints", negative_hints, MAX_HINTS_LENGTH)

    if not prefix or not prefix.strip():
        raise invalid_input(
            "Prefix is required",
            "Prefix field is empty or missing",
            "Please provide a prefix for the output filenames.",
        )
    if sanitize_filename(prefix.strip()) != prefix.strip():
        raise invalid_input(
            "Prefix contains invalid characters",
            f"Prefix {prefix!r} is not a safe filename",
            "Use only letters, digits, dots, dashes and underscores in the prefix.",
        )

    if not keyword or not keyword.strip():
        raise invalid_input(
            "Keyword is required",
            "Keyword field is empty or missing",
            "Please provide a keyword that describes the main subject.",
        )

    lookup(provider)

    options = CaptionOptions(
        keyword=keyword,
        caption_guidance=caption_guidance or "",
        checkpoint=checkpoint or "",
        negative_hints=negative_hints or "",
        caption_length=caption_length or "Medium",
        strict_focus=strict_focus,
    )
    return prefix.strip(), options


def validate_model_name(model: str) -> str:
    if not model or not ALLOWED_MODEL_PATTERN.match(model):
        raise invalid_input(
            "Invalid model name",
            f"Model name contains invalid characters: {model}",
            "Please use only alphanumeric characters, dots, colons, slashes, underscores and hyphens in model names.",
        )
    return model
