"""
External extraction backends (text and vision models).
"""

from .base import ConcurrencyLimiter, TextBackend, VisionBackend, parse_json_content
from .cache import ResponseCache
from .prompts import PROMPT_VERSION, InvoicePrompt, StatementPrompt
from .text_backend import OpenAICompatibleTextBackend
from .vision_backend import OllamaVisionBackend

__all__ = [
    "ConcurrencyLimiter",
    "TextBackend",
    "VisionBackend",
    "parse_json_content",
    "ResponseCache",
    "PROMPT_VERSION",
    "InvoicePrompt",
    "StatementPrompt",
    "OpenAICompatibleTextBackend",
    "OllamaVisionBackend",
]
