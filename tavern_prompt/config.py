"""Environment-driven settings.

Values are read from the process environment after loading an optional
`.env` file from the working directory:

    TOKENIZER_FORMAT   koboldcpp | llamacpp | tiktoken   (default: tiktoken)
    TOKENIZER_URL      base URL of the tokenizer backend  (http formats only)
    TOKENIZER_TIMEOUT  seconds                             (default: 10)
    TOKEN_PADDING      per-message overhead in tokens      (default: 32)
    TOKEN_CACHE_SIZE   exact counts kept in memory         (default: 1024)
    CHARS_PER_TOKEN    fast-estimate ratio                 (default: 4)
    DEFAULT_MAX_CONTEXT / DEFAULT_MAX_TOKENS / DEFAULT_MAX_DEPTH
    LOG_LEVEL          (default: INFO)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel

from tavern_prompt.models import BudgetConfig

TokenizerFormat = Literal["koboldcpp", "llamacpp", "tiktoken"]


class Settings(BaseModel):
    tokenizer_format: TokenizerFormat = "tiktoken"
    tokenizer_url: str = ""
    tokenizer_timeout: float = 10.0
    token_padding: int = 32
    token_cache_size: int = 1024
    chars_per_token: float = 4.0
    default_budget: BudgetConfig = BudgetConfig()
    log_level: str = "INFO"


def load_settings(env_file: Path | None = None) -> Settings:
    """Build Settings from the environment, loading `.env` first if present."""
    load_dotenv(env_file or Path.cwd() / ".env")
    defaults = Settings()
    budget = defaults.default_budget
    return Settings(
        tokenizer_format=os.getenv("TOKENIZER_FORMAT", defaults.tokenizer_format),
        tokenizer_url=os.getenv("TOKENIZER_URL", defaults.tokenizer_url),
        tokenizer_timeout=float(os.getenv("TOKENIZER_TIMEOUT", defaults.tokenizer_timeout)),
        token_padding=int(os.getenv("TOKEN_PADDING", defaults.token_padding)),
        token_cache_size=int(os.getenv("TOKEN_CACHE_SIZE", defaults.token_cache_size)),
        chars_per_token=float(os.getenv("CHARS_PER_TOKEN", defaults.chars_per_token)),
        default_budget=BudgetConfig(
            max_context=int(os.getenv("DEFAULT_MAX_CONTEXT", budget.max_context)),
            max_tokens=int(os.getenv("DEFAULT_MAX_TOKENS", budget.max_tokens)),
            max_depth=int(os.getenv("DEFAULT_MAX_DEPTH", budget.max_depth)),
        ),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
