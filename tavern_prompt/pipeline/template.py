"""Instruct-template wrapping and stop-string derivation."""

from __future__ import annotations

import logging
from collections.abc import Callable

from tavern_prompt.models import (
    CharacterInfo,
    FormattedPromptResult,
    Message,
    PrefixPolicy,
    TemplateConfig,
)
from tavern_prompt.pipeline.history import unescape_newlines

logger = logging.getLogger(__name__)


def _identity(text: str) -> str:
    return text


def format_template(
    system_prompt: str,
    messages: list[Message],
    template: TemplateConfig,
    prefix_policy: PrefixPolicy = "never",
    character: CharacterInfo | None = None,
    resolve: Callable[[str], str] = _identity,
) -> FormattedPromptResult:
    """Wrap the system prompt and each message in its role's prefix/suffix.

    A trailing assistant turn is left open (no suffix) so the model continues
    it. Otherwise a new assistant turn is appended: the assistant prefix, then
    "Name: " when the prefix policy asks for it, then the prefill.

    `resolve` is applied to the role wrappers, so they may name entity fields
    such as {{char}}.
    """
    def wrapper(text: str) -> str:
        return resolve(unescape_newlines(text))

    system_prefix, system_suffix = wrapper(template.system.prefix), wrapper(template.system.suffix)
    user_prefix, user_suffix = wrapper(template.user.prefix), wrapper(template.user.suffix)
    asst_prefix, asst_suffix = wrapper(template.assistant.prefix), wrapper(template.assistant.suffix)

    formatted_system = f"{system_prefix}{system_prompt}{system_suffix}" if system_prompt else ""

    formatted: list[Message] = []
    last = len(messages) - 1
    for i, message in enumerate(messages):
        if message.role == "user":
            text = f"{user_prefix}{message.text}{user_suffix}"
        elif message.role == "assistant":
            suffix = "" if i == last else asst_suffix
            text = f"{asst_prefix}{message.text}{suffix}"
        else:
            logger.debug("no template wrapper for role %r, sending raw text", message.role)
            text = message.text
        formatted.append(message.model_copy(update={"text": text}))

    if not messages or messages[-1].role != "assistant":
        is_character = character is not None and character.type == "character"
        name_prefix = ""
        if character and (prefix_policy == "always" or (prefix_policy == "characters" and is_character)):
            name_prefix = f"{character.name}: "
        prefill = unescape_newlines(template.assistant.prefill)
        if template.assistant.prefill_only_characters and not is_character:
            prefill = ""
        formatted.append(Message(role="assistant", text=f"{asst_prefix}{name_prefix}{prefill}"))

    stop_strings: list[str] = []
    for stop in [*map(unescape_newlines, template.custom_stop_strings), user_suffix, asst_suffix]:
        if stop and stop not in stop_strings:
            stop_strings.append(stop)

    return FormattedPromptResult(
        messages=tuple(formatted),
        system_prompt=formatted_system,
        custom_stop_strings=tuple(stop_strings),
    )


def render_text_prompt(result: FormattedPromptResult) -> str:
    """Flatten a formatted result into one string for text-completion backends."""
    return result.system_prompt + "".join(m.text for m in result.messages)
