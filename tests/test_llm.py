"""Tests for tavern_prompt.llm — EchoLLM."""

from tavern_prompt.llm import EchoLLM
from tavern_prompt.models import FormattedPromptResult, Message


# ---------------------------------------------------------------------------
# EchoLLM
# ---------------------------------------------------------------------------

class TestEchoLLM:
    async def test_returns_rendered_prompt(self) -> None:
        request = FormattedPromptResult(
            messages=(Message(role="user", text="<user>hi</user>\n"), Message(role="assistant", text="<asst>")),
            system_prompt="<sys>rules</sys>\n",
        )
        assert await EchoLLM()(request) == "<sys>rules</sys>\n<user>hi</user>\n<asst>"

    async def test_stop_strings_ignored(self) -> None:
        plain = FormattedPromptResult(messages=(Message(role="user", text="x"),))
        stopped = plain.model_copy(update={"custom_stop_strings": ("x",)})
        assert await EchoLLM()(plain) == await EchoLLM()(stopped) == "x"

    async def test_empty_request(self) -> None:
        assert await EchoLLM()(FormattedPromptResult(messages=())) == ""
