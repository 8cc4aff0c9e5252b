"""Token counting — a cheap heuristic plus an exact tokenizer collaborator.

The budget allocator picks candidate messages with the fast estimate and
only asks the exact tokenizer when the running total gets close to the
limit. Exact counters match the protocol:

    async def __call__(self, text: str) -> int: ...

Two implementations are provided:

    HttpTokenizer     — asks a running backend to count. Supports the
                        KoboldCpp and llama.cpp server endpoints.
    TiktokenTokenizer — counts locally with a tiktoken encoding.

Both raise TokenizerError on failure. TokenEstimator.estimate_exact catches
it and falls back to the fast estimate, so a dead tokenizer never aborts
prompt assembly.
"""

from __future__ import annotations

import logging
import math
from collections import OrderedDict
from typing import Literal, Protocol

import httpx
import tiktoken

from tavern_prompt.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_PADDING = 32
DEFAULT_CACHE_SIZE = 1024


# ---------------------------------------------------------------------------
# Protocol — every exact counter must match this signature
# ---------------------------------------------------------------------------

class Tokenizer(Protocol):
    async def __call__(self, text: str) -> int: ...


# ---------------------------------------------------------------------------
# HttpTokenizer — counts through a backend's tokenizer endpoint
# ---------------------------------------------------------------------------

TokenizerFormat = Literal["koboldcpp", "llamacpp"]


class HttpTokenizer:
    """Async HTTP client for backend token counting.

    Supported formats:
      "koboldcpp" — POST /api/extra/tokencount  {"prompt": ...}
                    Response: {"value": <int>}
      "llamacpp"  — POST /tokenize              {"content": ...}
                    Response: {"tokens": [...]}

    Args:
        base_url:  Base URL of the backend, e.g. "http://localhost:5001".
        api_key:   Bearer token, or empty string if not required.
        format:    Wire format to use. Defaults to "koboldcpp".
        timeout:   HTTP timeout in seconds. Defaults to 10.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        format: TokenizerFormat = "koboldcpp",
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._format = format
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, text: str) -> tuple[str, dict]:
        if self._format == "llamacpp":
            return f"{self._base_url}/tokenize", {"content": text}
        return f"{self._base_url}/api/extra/tokencount", {"prompt": text}

    def _parse_response(self, data: object) -> int:
        if self._format == "llamacpp":
            tokens = data.get("tokens") if isinstance(data, dict) else None
            if not isinstance(tokens, list):
                raise TokenizerError("Unexpected response format from llama.cpp tokenizer")
            return len(tokens)

        value = data.get("value") if isinstance(data, dict) else None
        if not isinstance(value, int):
            raise TokenizerError("Unexpected response format from KoboldCpp tokenizer")
        return value

    async def __call__(self, text: str) -> int:
        url, body = self._build_request(text)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise TokenizerError(f"Cannot connect to tokenizer at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise TokenizerError(
                f"Tokenizer returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise TokenizerError(f"Tokenizer timed out after {self._timeout}s") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TokenizerError(f"Tokenizer request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise TokenizerError("Tokenizer returned a non-JSON body") from e

        count = self._parse_response(data)
        logger.debug("tokenizer count url=%s len=%d tokens=%d", url, len(text), count)
        return count


# ---------------------------------------------------------------------------
# TiktokenTokenizer — local BPE counting, no network
# ---------------------------------------------------------------------------

class TiktokenTokenizer:
    """Counts tokens with a tiktoken encoding (cl100k_base by default)."""

    def __init__(self, encoding: str = "cl100k_base") -> None:
        self._encoding_name = encoding
        self._encoding: tiktoken.Encoding | None = None

    def _get_encoding(self) -> tiktoken.Encoding:
        if self._encoding is None:
            try:
                self._encoding = tiktoken.get_encoding(self._encoding_name)
            except ValueError as e:
                raise TokenizerError(f"Unknown tiktoken encoding {self._encoding_name!r}") from e
            except OSError as e:
                # the BPE file is fetched on first use
                raise TokenizerError(f"Cannot load tiktoken encoding {self._encoding_name!r}: {e}") from e
        return self._encoding

    async def __call__(self, text: str) -> int:
        return len(self._get_encoding().encode(text, disallowed_special=()))


def build_tokenizer(settings: Settings) -> Tokenizer:
    """Return the exact tokenizer selected by settings."""
    if settings.tokenizer_format == "tiktoken":
        return TiktokenTokenizer()
    if not settings.tokenizer_url:
        raise ValueError(f"TOKENIZER_URL is required for format {settings.tokenizer_format!r}")
    return HttpTokenizer(
        base_url=settings.tokenizer_url,
        format=settings.tokenizer_format,
        timeout=settings.tokenizer_timeout,
    )


# ---------------------------------------------------------------------------
# TokenEstimator — the two-tier counter used by the budget allocator
# ---------------------------------------------------------------------------

class TokenEstimator:
    """Fast heuristic and exact token counts for a piece of text.

    Both counts include `padding`, a flat allowance for the per-message
    wrapper the template adds later. Without a tokenizer the exact count is
    the fast estimate.

    Exact counts are cached per instance, keyed by the text itself. The
    cache keeps the `cache_size` most recently used texts; 0 disables it.
    """

    def __init__(
        self,
        tokenizer: Tokenizer | None = None,
        chars_per_token: float = 4.0,
        padding: int = DEFAULT_PADDING,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self._tokenizer = tokenizer
        self._chars_per_token = chars_per_token
        self._padding = padding
        self._cache_size = cache_size
        self._cache: OrderedDict[str, int] = OrderedDict()

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenEstimator:
        return cls(
            tokenizer=build_tokenizer(settings),
            chars_per_token=settings.chars_per_token,
            padding=settings.token_padding,
            cache_size=settings.token_cache_size,
        )

    def estimate_fast(self, text: str) -> int:
        return math.ceil(len(text) / self._chars_per_token) + self._padding

    async def estimate_exact(self, text: str) -> int:
        if self._tokenizer is None:
            return self.estimate_fast(text)

        cached = self._cache.get(text)
        if cached is not None:
            self._cache.move_to_end(text)
            return cached

        try:
            count = await self._tokenizer(text) + self._padding
        except TokenizerError as e:
            logger.warning("Exact token count failed, using estimate: %s", e)
            return self.estimate_fast(text)

        if self._cache_size > 0:
            self._cache[text] = count
            if len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return count


# ---------------------------------------------------------------------------
# TokenizerError — raised by exact counters for all backend failures
# ---------------------------------------------------------------------------

class TokenizerError(RuntimeError):
    """Raised when the tokenizer cannot be reached or returns an error."""
