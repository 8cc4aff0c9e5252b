"""Pipeline orchestrator — prepares one inference request and cleans its reply.

Request flow:
  1. Chat entries → inference messages; custom prompts injected; same-role
     turns merged (format_chat only).
  2. System prompt assembled from template sections (format_chat only).
  3. Placeholders resolved over the system prompt and every message, then
     censorship and line collapsing when the format settings ask for them.
  4. History trimmed to the token budget.
  5. Instruct template applied and stop strings derived.
After generation, run_inference() passes the raw reply through the sanitizer.

The caller's message list is copied up front and never mutated.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import TYPE_CHECKING

from tavern_prompt.models import (
    BudgetConfig,
    ChatMessage,
    CustomPrompt,
    EntityContext,
    FormatSettings,
    FormattedPromptResult,
    FormatTemplate,
    Message,
    PromptAssembly,
    SanitizedResponse,
    TemplateConfig,
)
from tavern_prompt.pipeline.budget import ContextBudgetAllocator
from tavern_prompt.pipeline.history import (
    build_history,
    build_system_prompt,
    insert_custom_prompts,
    merge_messages_on_user,
    merge_subsequent_messages,
    unescape_newlines,
)
from tavern_prompt.pipeline.placeholders import PlaceholderResolver
from tavern_prompt.pipeline.response import collapse_lines, sanitize_response
from tavern_prompt.pipeline.template import format_template
from tavern_prompt.tokens import TokenEstimator

if TYPE_CHECKING:
    from tavern_prompt.llm import LLM

logger = logging.getLogger(__name__)


async def format_prompt(
    system_prompt: str,
    messages: list[Message],
    *,
    budget: BudgetConfig,
    estimator: TokenEstimator,
    template: TemplateConfig | None = None,
    settings: FormatSettings | None = None,
    context: EntityContext | None = None,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> PromptAssembly:
    """Resolve, budget and wrap an already-built conversation.

    Without a template the budgeted messages are returned unwrapped and no
    stop strings are derived.
    """
    settings = settings or FormatSettings()
    owned = [m.model_copy() for m in messages]

    resolver = PlaceholderResolver(context, rng=rng, now=now)
    system_prompt, owned = resolver.resolve_prompt(
        system_prompt, owned, censor=settings.apply_censorship
    )

    if settings.collapse_consecutive_lines:
        system_prompt = collapse_lines(system_prompt)
        owned = [m.model_copy(update={"text": collapse_lines(m.text)}) for m in owned]

    allocation = await ContextBudgetAllocator(estimator).allocate(system_prompt, owned, budget)
    retained = list(allocation.retained)

    if template is None:
        request = FormattedPromptResult(messages=tuple(retained), system_prompt=system_prompt)
    else:
        request = format_template(
            system_prompt,
            retained,
            template,
            prefix_policy=settings.prefix_messages,
            character=context.character if context else None,
            resolve=resolver.resolve_fields,
        )

    logger.debug(
        "prompt formatted messages=%d stop_strings=%d",
        len(request.messages), len(request.custom_stop_strings),
    )
    return PromptAssembly(request=request, statistics=allocation.statistics)


async def format_chat(
    chat: list[ChatMessage],
    *,
    budget: BudgetConfig,
    estimator: TokenEstimator,
    user_prompt: str | None = None,
    formatting: FormatTemplate | None = None,
    template: TemplateConfig | None = None,
    context: EntityContext | None = None,
    custom_prompts: list[CustomPrompt] | None = None,
    system_override: str | None = None,
    summary_template: str | None = None,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> PromptAssembly:
    """Build the conversation from stored chat entries, then run format_prompt()."""
    fmt = formatting or FormatTemplate()
    settings = fmt.settings

    messages = build_history(chat, user_prompt, settings.prefix_messages, summary_template)
    messages = insert_custom_prompts(messages, custom_prompts)
    if settings.merge_messages_on_user:
        messages = merge_messages_on_user(messages)
    elif settings.merge_subsequent_messages:
        messages = merge_subsequent_messages(messages, unescape_newlines(fmt.context_separator))

    system_prompt = build_system_prompt(fmt, context, custom_prompts, system_override)

    return await format_prompt(
        system_prompt,
        messages,
        budget=budget,
        estimator=estimator,
        template=template,
        settings=settings,
        context=context,
        rng=rng,
        now=now,
    )


async def run_inference(
    request: FormattedPromptResult,
    llm: LLM,
    formatting: FormatTemplate | None = None,
) -> SanitizedResponse:
    """Send a formatted request to the injected LLM and sanitize the reply."""
    raw = await llm(request)
    logger.debug("llm response len=%d", len(raw))
    return sanitize_response(raw, formatting)
