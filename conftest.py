import random
from datetime import datetime

import pytest

from tavern_prompt.tokens import TokenEstimator, TokenizerError


# ---------------------------------------------------------------------------
# Stub tokenizers — exact counters with no model behind them
# ---------------------------------------------------------------------------

class CharTokenizer:
    """Counts one token per character and records every call."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def __call__(self, text: str) -> int:
        self.calls.append(text)
        return len(text)


class BrokenTokenizer:
    """Always fails, like a tokenizer backend that is down."""

    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self, text: str) -> int:
        self.calls += 1
        raise TokenizerError("Cannot connect to tokenizer at http://localhost:5001")


@pytest.fixture
def char_tokenizer() -> CharTokenizer:
    return CharTokenizer()


@pytest.fixture
def broken_tokenizer() -> BrokenTokenizer:
    return BrokenTokenizer()


@pytest.fixture
def char_estimator(char_tokenizer: CharTokenizer) -> TokenEstimator:
    """One token per character plus 32 padding, for both fast and exact counts."""
    return TokenEstimator(tokenizer=char_tokenizer, chars_per_token=1, padding=32)


# ---------------------------------------------------------------------------
# Determinism
# ---------------------------------------------------------------------------

@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def fixed_now() -> datetime:
    """Monday, January 15, 2024, 2:30:45 PM."""
    return datetime(2024, 1, 15, 14, 30, 45)
