"""
Shared pieces of the extraction backends.

A backend turns (system prompt, user content) into a parsed JSON object.
Backends raise only ExtractionTimeout / ExtractionBackendError; strategies
normalize those into ExtractionFailure.
"""

from __future__ import annotations

import hashlib
import json
import re
import threading
from typing import Any, Protocol

from ..errors import ExtractionBackendError


class TextBackend(Protocol):
    """Text-in, JSON-out extraction capability."""

    def complete_json(self, system_prompt: str, user_message: str) -> dict[str, Any]: ...


class VisionBackend(Protocol):
    """Image-in, JSON-out extraction capability."""

    def complete_json_with_image(
        self,
        system_prompt: str,
        instruction: str,
        image_bytes: bytes,
        mime_type: str,
    ) -> dict[str, Any]: ...


class ConcurrencyLimiter:
    """Semaphore-based concurrency limiter for backend requests.

    Prevents overwhelming a shared model server with too many concurrent
    requests. Thread-safe for synchronous usage.
    """

    def __init__(self, max_concurrent: int = 2) -> None:
        self._semaphore = threading.Semaphore(max_concurrent)
        self._active_count = 0
        self._lock = threading.Lock()

    def acquire(self, timeout: float | None = None) -> bool:
        """Acquire a slot for a request.

        Args:
            timeout: Maximum time to wait (None = blocking)

        Returns:
            True if acquired, False if timeout
        """
        acquired = self._semaphore.acquire(blocking=True, timeout=timeout)
        if acquired:
            with self._lock:
                self._active_count += 1
        return acquired

    def release(self) -> None:
        """Release a slot after request completes."""
        with self._lock:
            self._active_count -= 1
        self._semaphore.release()

    @property
    def active_requests(self) -> int:
        """Current number of active requests."""
        with self._lock:
            return self._active_count


def build_cache_key(*parts: str | bytes) -> str:
    """SHA256 over all parts (prompt version, model, prompt, content)."""
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part if isinstance(part, bytes) else part.encode("utf-8"))
        digest.update(b"\x1f")
    return digest.hexdigest()


def parse_json_content(content: str | None) -> dict[str, Any]:
    """Parse a JSON object from a model response.

    Handles:
    - Markdown code blocks (```json ... ```)
    - Leading/trailing prose around the object
    - Trailing commas before } or ]

    Raises:
        ExtractionBackendError: If no JSON object can be recovered
    """
    if not content or not content.strip():
        raise ExtractionBackendError("Backend returned empty content")

    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    content = content.strip()

    candidates = [content]
    start, end = content.find("{"), content.rfind("}")
    if start != -1 and end > start:
        candidates.append(content[start : end + 1])

    for candidate in candidates:
        for text in (candidate, re.sub(r",\s*([}\]])", r"\1", candidate)):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                return parsed

    raise ExtractionBackendError(
        f"Backend response is not a JSON object (starts with {content[:40]!r})"
    )
