"""Tests for environment-driven settings."""

import os
from unittest.mock import patch

from tavern_prompt.config import Settings, configure_logging, load_settings
from tavern_prompt.tokens import TokenEstimator

_ENV_VARS = (
    "TOKENIZER_FORMAT", "TOKENIZER_URL", "TOKENIZER_TIMEOUT", "TOKEN_PADDING", "TOKEN_CACHE_SIZE",
    "CHARS_PER_TOKEN", "DEFAULT_MAX_CONTEXT", "DEFAULT_MAX_TOKENS",
    "DEFAULT_MAX_DEPTH", "LOG_LEVEL",
)


def _clear_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_env(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    settings = load_settings(tmp_path / "missing.env")
    assert settings == Settings()
    assert settings.token_padding == 32
    assert settings.default_budget.max_depth == 100


def test_reads_environment(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("TOKENIZER_FORMAT", "koboldcpp")
    monkeypatch.setenv("TOKENIZER_URL", "http://localhost:5001")
    monkeypatch.setenv("TOKEN_PADDING", "8")
    monkeypatch.setenv("TOKEN_CACHE_SIZE", "16")
    monkeypatch.setenv("DEFAULT_MAX_CONTEXT", "8192")
    settings = load_settings(tmp_path / "missing.env")
    assert settings.tokenizer_format == "koboldcpp"
    assert settings.tokenizer_url == "http://localhost:5001"
    assert settings.token_padding == 8
    assert settings.token_cache_size == 16
    assert settings.default_budget.max_context == 8192


def test_reads_dotenv_file(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    env_file = tmp_path / ".env"
    env_file.write_text("CHARS_PER_TOKEN=3.5\nDEFAULT_MAX_DEPTH=12\n")
    settings = load_settings(env_file)
    assert settings.chars_per_token == 3.5
    assert settings.default_budget.max_depth == 12
    # load_dotenv writes straight into os.environ
    for name in ("CHARS_PER_TOKEN", "DEFAULT_MAX_DEPTH"):
        os.environ.pop(name, None)


def test_estimator_from_settings():
    est = TokenEstimator.from_settings(Settings(chars_per_token=1, token_padding=0))
    assert est.estimate_fast("abc") == 3


def test_configure_logging_uppercases_level():
    with patch("logging.basicConfig") as basic_config:
        configure_logging("debug")
    assert basic_config.call_args.kwargs["level"] == "DEBUG"
