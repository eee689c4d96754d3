"""Vision extraction backend (Ollama-compatible chat completions).

Sends an image as a base64 data URI to POST {base_url}/v1/chat/completions
and returns the parsed JSON object.

Privacy Constraints:
- Never log image content or prompts at INFO level
- API keys are only sent as the Authorization header
"""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from ..config import VisionBackendConfig
from ..errors import ExtractionBackendError, ExtractionTimeout
from .base import ConcurrencyLimiter, build_cache_key, parse_json_content
from .cache import ResponseCache
from .prompts import PROMPT_VERSION

logger = logging.getLogger(__name__)


class OllamaVisionBackend:
    """Image extraction via an Ollama-compatible vision model.

    It implements:
    - Explicit httpx timeouts (read = configured timeout)
    - Concurrency limiting for remote/shared servers
    - Owned TTL response cache keyed by prompt version, model and image hash
    """

    def __init__(
        self,
        config: VisionBackendConfig,
        cache: ResponseCache | None = None,
        limiter: ConcurrencyLimiter | None = None,
    ) -> None:
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.cache = cache if cache is not None else ResponseCache(config.cache_ttl_seconds)
        self._limiter = limiter or ConcurrencyLimiter(max_concurrent=config.max_concurrent)

        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        # Use explicit timeout configuration:
        # - connect: 10 seconds for initial connection
        # - read: full timeout for waiting for the model
        # - write: 30 seconds for uploading the image
        # - pool: 10 seconds for getting connection from pool
        self._client = httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
            headers=headers,
        )

    @property
    def name(self) -> str:
        return f"vision:{self.config.model}"

    @property
    def active_requests(self) -> int:
        return self._limiter.active_requests

    def complete_json_with_image(
        self,
        system_prompt: str,
        instruction: str,
        image_bytes: bytes,
        mime_type: str,
    ) -> dict[str, Any]:
        """Run one vision completion and parse its JSON object.

        Raises:
            ExtractionBackendError: Not configured, HTTP error or unusable response
            ExtractionTimeout: Request (or waiting for a slot) exceeded the timeout
        """
        if not self.config.is_configured:
            raise ExtractionBackendError(
                f"Vision backend not configured: {self.base_url} is remote; set "
                "vision_backend.api_key or VISION_BACKEND_API_KEY"
            )

        cache_key = build_cache_key(
            PROMPT_VERSION, self.config.model, system_prompt, instruction, image_bytes
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Vision backend cache hit")
            return cached

        image_b64 = base64.b64encode(image_bytes).decode("ascii")
        body = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": instruction},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{mime_type};base64,{image_b64}"},
                        },
                    ],
                },
            ],
            "response_format": {"type": "json_object"},
        }

        if not self._limiter.acquire(timeout=float(self.config.timeout_seconds)):
            raise ExtractionTimeout("Timed out waiting for a free vision backend slot")

        try:
            url = f"{self.base_url}/v1/chat/completions"
            logger.debug("Calling vision model %s at %s", self.config.model, self.base_url)
            response = self._client.post(url, json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            logger.warning("Vision request timed out after %ds", self.config.timeout_seconds)
            raise ExtractionTimeout(
                f"Vision backend timed out after {self.config.timeout_seconds}s"
            )
        except httpx.HTTPStatusError as e:
            logger.error("Vision backend HTTP error %d", e.response.status_code)
            raise ExtractionBackendError(
                f"Vision backend error {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            )
        except httpx.RequestError as e:
            logger.error("Vision request failed: %s (URL: %s)", e, self.base_url)
            raise ExtractionBackendError(f"Vision backend request failed: {e}")
        except ValueError as e:
            raise ExtractionBackendError(f"Vision backend returned invalid JSON: {e}")
        finally:
            self._limiter.release()

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise ExtractionBackendError("Vision backend returned empty content")

        result = parse_json_content(content)
        self.cache.set(cache_key, result)
        return result

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> OllamaVisionBackend:
        return self

    def __exit__(self, *args) -> None:
        self.close()
