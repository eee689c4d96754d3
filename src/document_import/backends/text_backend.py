"""
Text extraction backend (OpenAI-compatible chat completions).

Sends a system prompt plus the document's text layer to
POST {base_url}/chat/completions with JSON output mode, and returns the
parsed JSON object. Defaults target DeepSeek ("deepseek-chat").
"""

import logging
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import TextBackendConfig
from ..errors import ExtractionBackendError, ExtractionTimeout
from .base import build_cache_key, parse_json_content
from .cache import ResponseCache
from .prompts import PROMPT_VERSION

logger = logging.getLogger(__name__)


class OpenAICompatibleTextBackend:
    """
    Client for an OpenAI-compatible chat completions API.

    Features:
    - Hard per-request timeout (timeout is fatal for the attempt)
    - Automatic retry with backoff for 429/5xx
    - Owned TTL response cache keyed by prompt version, model and content
    """

    def __init__(
        self,
        config: TextBackendConfig,
        cache: Optional[ResponseCache] = None,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize the text backend.

        Args:
            config: Text backend configuration
            cache: Response cache (defaults to one sized by config TTL)
            backoff_factor: Backoff factor for retries
        """
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.timeout = config.timeout_seconds
        self.cache = cache if cache is not None else ResponseCache(config.cache_ttl_seconds)

        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        if config.api_key:
            self.session.headers["Authorization"] = f"Bearer {config.api_key}"

        retry_strategy = Retry(
            total=config.max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @property
    def name(self) -> str:
        return f"text:{self.config.model}"

    def complete_json(self, system_prompt: str, user_message: str) -> dict[str, Any]:
        """
        Run one chat completion and parse its JSON object.

        Raises:
            ExtractionBackendError: Not configured, HTTP error or unusable response
            ExtractionTimeout: Request exceeded the configured timeout
        """
        if not self.config.is_configured:
            raise ExtractionBackendError(
                "Text backend not configured: set text_backend.api_key or TEXT_BACKEND_API_KEY"
            )

        cache_key = build_cache_key(PROMPT_VERSION, self.config.model, system_prompt, user_message)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Text backend cache hit")
            return cached

        body = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0,
        }
        url = f"{self.base_url}/chat/completions"
        logger.debug("Calling text model %s (%d chars)", self.config.model, len(user_message))

        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise ExtractionTimeout(f"Text backend timed out after {self.timeout}s: {e}")
        except requests.exceptions.ConnectionError as e:
            raise ExtractionBackendError(f"Failed to connect to text backend at {self.base_url}: {e}")
        except requests.exceptions.RequestException as e:
            raise ExtractionBackendError(f"Text backend request failed: {e}")

        if not response.ok:
            logger.error("Text backend returned HTTP %d", response.status_code)
            raise ExtractionBackendError(
                f"Text backend error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ExtractionBackendError(f"Unexpected text backend response shape: {e}")

        result = parse_json_content(content)
        self.cache.set(cache_key, result)
        return result

    def close(self) -> None:
        self.session.close()
