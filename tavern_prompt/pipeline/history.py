"""Conversation assembly before budgeting.

Turns stored chat entries into inference messages, injects custom prompts,
merges turns, and builds the system prompt from template sections. Every
function returns new lists; caller-owned inputs are left untouched.
"""

from __future__ import annotations

import logging

from tavern_prompt.models import (
    ChatMessage,
    CustomPrompt,
    EntityContext,
    FormatTemplate,
    Message,
    PrefixPolicy,
    SystemPromptSection,
)

logger = logging.getLogger(__name__)


def unescape_newlines(text: str) -> str:
    """Turn authored two-character `\\n` sequences into real newlines."""
    return text.replace("\\n", "\n")


# ── Chat history ────────────────────────────────────────


def _has_several_characters(chat: list[ChatMessage]) -> bool:
    ids = {m.character_id or m.character_name for m in chat if m.type == "character"}
    return len(ids) > 1


def build_history(
    chat: list[ChatMessage],
    user_prompt: str | None = None,
    prefix_policy: PrefixPolicy = "never",
    summary_template: str | None = None,
) -> list[Message]:
    """Convert stored chat entries into user/assistant inference messages.

    Disabled and empty entries are skipped. System entries are sent as user
    turns; a summary entry is wrapped in `summary_template` when one is given
    (its `{{summary}}` marks where the summary goes). Names are prefixed as
    "Name: text" when the policy is "always", or "characters" and more than
    one character speaks in the chat.
    """
    add_names = prefix_policy == "always" or (
        prefix_policy == "characters" and _has_several_characters(chat)
    )

    def named(entry: ChatMessage) -> str:
        if add_names and entry.character_name:
            return f"{entry.character_name}: {entry.text}"
        return entry.text

    messages: list[Message] = []
    for entry in chat:
        if entry.disabled or not entry.text:
            continue
        if entry.type == "user":
            messages.append(Message(role="user", text=named(entry)))
        elif entry.type == "character":
            messages.append(Message(role="assistant", text=named(entry)))
        elif entry.script == "summary" and summary_template:
            messages.append(Message(
                role="user",
                text=summary_template.replace("{{summary}}", entry.text),
            ))
        else:
            messages.append(Message(role="user", text=entry.text))

    if user_prompt:
        messages.append(Message(role="user", text=user_prompt))
    return messages


# ── Custom prompt injection ─────────────────────────────


def _last_user_index(messages: list[Message]) -> int:
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].role == "user":
            return i
    return -1


def insert_custom_prompts(
    messages: list[Message], prompts: list[CustomPrompt] | None
) -> list[Message]:
    """Insert enabled non-system custom prompts into the message list.

    depth N places the prompt N messages from the end; before/after_user_input
    anchor on the last user turn and append when there is none.
    """
    result = list(messages)
    for prompt in prompts or []:
        if not prompt.enabled or prompt.role == "system":
            continue

        injected = Message(
            role="assistant" if prompt.role == "character" else "user",
            text=prompt.prompt,
        )
        if prompt.position == "top":
            result.insert(0, injected)
        elif prompt.position == "bottom":
            result.append(injected)
        elif prompt.position == "depth":
            result.insert(max(0, len(result) - (prompt.depth or 1)), injected)
        else:
            anchor = _last_user_index(result)
            if anchor < 0:
                result.append(injected)
            elif prompt.position == "before_user_input":
                result.insert(anchor, injected)
            else:
                result.insert(anchor + 1, injected)
    return result


# ── Merging ─────────────────────────────────────────────


def merge_messages_on_user(messages: list[Message], separator: str = "\n\n") -> list[Message]:
    """Collapse the whole history into a single user turn."""
    if not messages:
        return []
    return [Message(role="user", text=separator.join(m.text for m in messages))]


def merge_subsequent_messages(messages: list[Message], separator: str = "\n\n") -> list[Message]:
    """Join adjacent messages that share a role."""
    merged: list[Message] = []
    for message in messages:
        if merged and merged[-1].role == message.role:
            if message.text:
                previous = merged[-1]
                text = f"{previous.text}{separator}{message.text}" if previous.text else message.text
                merged[-1] = previous.model_copy(update={"text": text})
        else:
            merged.append(message.model_copy())
    return [m for m in merged if m.text]


# ── System prompt ───────────────────────────────────────


def _place_system_prompts(
    sections: list[SystemPromptSection], prompts: list[CustomPrompt]
) -> list[SystemPromptSection]:
    top: list[SystemPromptSection] = []
    bottom: list[SystemPromptSection] = []
    by_depth: dict[int, list[SystemPromptSection]] = {}

    for prompt in prompts:
        if prompt.role != "system" or not prompt.enabled:
            continue
        section = SystemPromptSection(type="custom-field", content=prompt.prompt)
        if prompt.position == "top":
            top.append(section)
        elif prompt.position == "bottom":
            bottom.append(section)
        elif prompt.position == "depth":
            by_depth.setdefault(prompt.depth or 1, []).append(section)
        # before/after_user_input only make sense inside the history

    result = top + sections
    for depth in sorted(by_depth):
        at = max(0, len(result) - depth)
        result[at:at] = by_depth[depth]
    return result + bottom


def build_system_prompt(
    template: FormatTemplate | None,
    context: EntityContext | None = None,
    custom_prompts: list[CustomPrompt] | None = None,
    override: str | None = None,
) -> str:
    """Join the enabled template sections into one system prompt.

    Sections describing a character, user or chapter are dropped when the
    context has nothing to fill them with. An override replaces the
    "context" section, or is put first when there is none.
    """
    context = context or EntityContext()
    sections = [s.model_copy() for s in (template.prompts if template else []) if s.enabled]
    sections = _place_system_prompts(sections, custom_prompts or [])

    if override:
        replacement = SystemPromptSection(type="context", content=override)
        for i, section in enumerate(sections):
            if section.type == "context":
                sections[i] = replacement
                break
        else:
            sections.insert(0, replacement)

    character = context.character
    absent: set[str] = set()
    if not (character and character.type == "character"):
        absent.add("character-context")
    if not (context.chapter and context.chapter.scenario):
        absent.add("chapter-context")
    if not (context.user_character and context.user_character.personality):
        absent.add("user-context")
    sections = [s for s in sections if s.type not in absent]

    separator = unescape_newlines(template.context_separator if template else "\\n\\n")
    logger.debug("system prompt built from %d sections", len(sections))
    return separator.join(s.content for s in sections)
