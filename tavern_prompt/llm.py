"""Inference collaborator protocol.

The pipeline never talks to a model provider itself. Callers inject an LLM
callable matching the protocol:

    async def __call__(self, request: FormattedPromptResult) -> str: ...

The request carries the wrapped messages, system prompt and stop strings;
the implementation decides how to send them (chat messages, or a single
text prompt via render_text_prompt()). Its errors propagate to the caller.

    EchoLLM — returns the rendered prompt unchanged. Useful for smoke-testing
              the assembly and sanitizing wiring without a running model.
"""

from __future__ import annotations

import logging
from typing import Protocol

from tavern_prompt.models import FormattedPromptResult
from tavern_prompt.pipeline.template import render_text_prompt

logger = logging.getLogger(__name__)


class LLM(Protocol):
    async def __call__(self, request: FormattedPromptResult) -> str: ...


class EchoLLM:
    """Returns the flattened prompt text as-is. No network calls."""

    async def __call__(self, request: FormattedPromptResult) -> str:
        prompt = render_text_prompt(request)
        logger.debug("EchoLLM prompt_len=%d stop=%d", len(prompt), len(request.custom_stop_strings))
        return prompt
