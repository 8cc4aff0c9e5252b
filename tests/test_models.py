"""Tests for tavern_prompt.models."""

import pytest
from pydantic import ValidationError

from tavern_prompt.models import (
    BudgetConfig,
    ChatMessage,
    FormatSettings,
    FormatTemplate,
    FormattedPromptResult,
    Message,
    SystemPromptSection,
    TemplateConfig,
    TokenStatistics,
)


class TestMessage:
    def test_required_fields(self) -> None:
        m = Message(role="user", text="Who goes there?")
        assert m.role == "user"
        assert m.text == "Who goes there?"
        assert m.tool_calls is None

    def test_invalid_role_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Message(role="narrator", text="x")

    def test_serialise_roundtrip(self) -> None:
        m = Message(role="tool", text="{}", tool_call_id="call_1")
        assert Message.model_validate(m.model_dump()) == m


class TestChatMessage:
    def test_defaults(self) -> None:
        m = ChatMessage(type="character", text="Rough night.")
        assert m.disabled is False
        assert m.script is None

    def test_invalid_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ChatMessage(type="gossip", text="x")


class TestDefaults:
    def test_budget(self) -> None:
        b = BudgetConfig()
        assert (b.max_context, b.max_tokens, b.max_depth) == (4096, 512, 100)

    def test_format_settings(self) -> None:
        s = FormatSettings()
        assert s.trim_assistant_incomplete is False
        assert s.trim_double_spaces is True
        assert s.collapse_consecutive_lines is True
        assert s.prefix_messages == "never"
        assert s.merge_subsequent_messages is True

    def test_template_sections_are_independent(self) -> None:
        a, b = FormatTemplate(), FormatTemplate()
        a.prompts.append(SystemPromptSection(content="x"))
        assert b.prompts == []

    def test_template_config_is_empty(self) -> None:
        t = TemplateConfig()
        assert t.user.prefix == t.assistant.suffix == ""
        assert t.custom_stop_strings == []


class TestFrozenResults:
    def test_statistics_immutable(self) -> None:
        stats = TokenStatistics(system_tokens=1, history_tokens=2, response_tokens=3)
        with pytest.raises(ValidationError):
            stats.history_tokens = 5  # type: ignore[misc]

    def test_result_from_lists(self) -> None:
        result = FormattedPromptResult(
            messages=[Message(role="user", text="x")], custom_stop_strings=["</s>"]
        )
        assert isinstance(result.messages, tuple)
        assert result.custom_stop_strings == ("</s>",)
