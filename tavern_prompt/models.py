"""Core domain models.

Every pipeline stage consumes and produces these types. Pydantic validates
caller-supplied conversation state at the boundary; stages return fresh
instances and never mutate their inputs.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "tool"]
PrefixPolicy = Literal["never", "always", "characters"]


# ---------------------------------------------------------------------------
# Inference messages
# ---------------------------------------------------------------------------

class Message(BaseModel):
    """One turn of the conversation as sent to the model."""

    role: Role
    text: str
    tool_calls: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None


class ChatMessage(BaseModel):
    """A stored chat entry, before conversion into an inference message."""

    type: Literal["user", "character", "system"]
    text: str
    character_name: str | None = None
    character_id: str | None = None
    disabled: bool = False
    script: str | None = None  # "summary" marks a summary injection


# ---------------------------------------------------------------------------
# Budgeting
# ---------------------------------------------------------------------------

class BudgetConfig(BaseModel):
    """Token ceilings for one request.

    max_context >= max_tokens is expected but not enforced; a violation just
    leaves no room for history.
    """

    max_context: int = 4096
    max_tokens: int = 512  # reserved for the response
    max_depth: int = 100


class TokenStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    system_tokens: int
    history_tokens: int
    response_tokens: int


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

class RoleFormatting(BaseModel):
    prefix: str = ""
    suffix: str = ""


class AssistantFormatting(RoleFormatting):
    prefill: str = ""
    prefill_only_characters: bool = False


class TemplateConfig(BaseModel):
    """Instruct-style wrappers applied around each role's text.

    Strings are authored as escaped text: a literal backslash-n stands for
    a newline and is converted by the formatter.
    """

    system: RoleFormatting = Field(default_factory=RoleFormatting)
    user: RoleFormatting = Field(default_factory=RoleFormatting)
    assistant: AssistantFormatting = Field(default_factory=AssistantFormatting)
    custom_stop_strings: list[str] = Field(default_factory=list)


class FormatSettings(BaseModel):
    trim_assistant_incomplete: bool = False
    trim_double_spaces: bool = True
    collapse_consecutive_lines: bool = True
    prefix_messages: PrefixPolicy = "never"
    apply_censorship: bool = False
    merge_messages_on_user: bool = False
    merge_subsequent_messages: bool = True


class ReasoningFormatting(BaseModel):
    prefix: str = ""
    suffix: str = ""


SectionType = Literal[
    "context",
    "character-context",
    "user-context",
    "chapter-context",
    "custom-field",
]


class SystemPromptSection(BaseModel):
    type: SectionType = "custom-field"
    content: str
    enabled: bool = True


class FormatTemplate(BaseModel):
    """How the system prompt is assembled and how output is cleaned."""

    settings: FormatSettings = Field(default_factory=FormatSettings)
    reasoning: ReasoningFormatting = Field(default_factory=ReasoningFormatting)
    prompts: list[SystemPromptSection] = Field(default_factory=list)
    context_separator: str = "\\n\\n"


class CustomPrompt(BaseModel):
    """An extra prompt injected into the system prompt or the history."""

    role: Literal["system", "user", "character"] = "system"
    position: Literal[
        "top", "bottom", "depth", "before_user_input", "after_user_input"
    ] = "top"
    depth: int = 1
    prompt: str
    enabled: bool = True


# ---------------------------------------------------------------------------
# Placeholder context
# ---------------------------------------------------------------------------

class CharacterInfo(BaseModel):
    name: str
    type: Literal["character", "agent"] = "character"
    personality: str = ""


class UserInfo(BaseModel):
    name: str
    personality: str = ""


class ChapterInfo(BaseModel):
    title: str = ""
    scenario: str = ""


class EntityContext(BaseModel):
    """Values available to {{...}} field references."""

    character: CharacterInfo | None = None
    user_character: UserInfo | None = None
    chapter: ChapterInfo | None = None
    extra: dict[str, str] = Field(default_factory=dict)
    censored_words: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Pipeline outputs
# ---------------------------------------------------------------------------

class FormattedPromptResult(BaseModel):
    """The assembled request payload handed to the inference dispatcher."""

    model_config = ConfigDict(frozen=True)

    messages: tuple[Message, ...]
    system_prompt: str = ""
    custom_stop_strings: tuple[str, ...] = ()


class SanitizedResponse(BaseModel):
    text: str
    reasoning: str | None = None


class ContextAllocation(BaseModel):
    """Messages that fit the budget, oldest first, with their token accounting."""

    model_config = ConfigDict(frozen=True)

    retained: tuple[Message, ...]
    statistics: TokenStatistics


class PromptAssembly(BaseModel):
    """Everything the assembly half of the pipeline hands back to the caller."""

    model_config = ConfigDict(frozen=True)

    request: FormattedPromptResult
    statistics: TokenStatistics
