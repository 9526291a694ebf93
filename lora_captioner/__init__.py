"""
LoRA Captioner - batch captioning of training images with vision LLM providers.

This package uploads a set of images, asks Gemini or an OpenAI-compatible provider
to describe each one, formats the descriptions as LoRA dataset captions and exports
the image/caption pairs as a zip archive.
"""

__version__ = "1.0.0"

from .captions import CaptionOptions, CaptionResult, build_caption, build_prompt
from .caption_generator import CaptionGenerator
from .config import ConfigValidator, parse_arguments
from .errors import AppError, CaptionerError, ErrorCode, classify
from .file_manager import FileManager, ProcessedResult
from .image_processor import BatchProcessor, BatchSummary
from .providers import PROVIDERS, lookup

__all__ = [
    'CaptionOptions',
    'CaptionResult',
    'CaptionGenerator',
    'BatchProcessor',
    'BatchSummary',
    'FileManager',
    'ProcessedResult',
    'ConfigValidator',
    'AppError',
    'CaptionerError',
    'ErrorCode',
    'PROVIDERS',
    'build_caption',
    'build_prompt',
    'classify',
    'lookup',
    'parse_arguments',
]
