"""Cleanup of generated text: reasoning extraction and shape repair."""

from __future__ import annotations

import re

from tavern_prompt.models import FormatTemplate, SanitizedResponse

_EXCESS_LINES = re.compile(r"\n{3,}")
_EXCESS_SPACES = re.compile(r" {2,}")

SENTENCE_ENDINGS = frozenset(
    '.!?*")}`]$_'
    "。！？”）】’」"
)


def collapse_lines(text: str) -> str:
    """Collapse runs of three or more newlines to a single blank line."""
    return _EXCESS_LINES.sub("\n\n", text)


def collapse_spaces(text: str) -> str:
    return _EXCESS_SPACES.sub(" ", text)


# Approximates the Unicode Extended_Pictographic property.
_PICTOGRAPH_RANGES = (
    (0x1F000, 0x1FAFF),  # emoji blocks
    (0x2600, 0x27BF),    # dingbats and miscellaneous symbols
    (0x231A, 0x231B),
    (0x23E9, 0x23FA),
    (0x2B05, 0x2B07),
    (0x2B1B, 0x2B1C),
)
_PICTOGRAPH_CHARS = frozenset(
    "©®‼⁉™ℹ⭐⭕〰〽㊗㊙"
)


def _is_emoji(char: str) -> bool:
    if char in _PICTOGRAPH_CHARS:
        return True
    code = ord(char)
    return any(low <= code <= high for low, high in _PICTOGRAPH_RANGES)


def trim_to_end_sentence(text: str) -> str:
    """Drop whatever follows the last sentence-ending mark.

    A mark preceded by whitespace ("word .") cuts before the whitespace.
    Text without any ending mark is returned with trailing space removed.
    """
    if not text:
        return ""

    last = -1
    for i in range(len(text) - 1, -1, -1):
        char = text[i]
        emoji = _is_emoji(char)
        if char in SENTENCE_ENDINGS or emoji:
            if not emoji and i > 0 and text[i - 1].isspace():
                last = i - 1
            else:
                last = i
            break

    if last == -1:
        return text.rstrip()
    return text[: last + 1].rstrip()


def extract_reasoning(text: str, prefix: str, suffix: str) -> tuple[str, str | None]:
    """Split delimited reasoning blocks out of text.

    Returns (visible text, joined reasoning); reasoning is None when no
    complete block is present.
    """
    if not prefix or not suffix:
        return text, None
    block = re.compile(f"{re.escape(prefix)}(.*?){re.escape(suffix)}", re.DOTALL)
    blocks = block.findall(text)
    if not blocks:
        return text, None
    return block.sub("", text), "\n\n".join(blocks).strip()


def sanitize_response(raw: str, template: FormatTemplate | None = None) -> SanitizedResponse:
    """Clean a raw completion according to the format template's settings.

    Without a template every cleanup step runs and no reasoning is extracted.
    """
    if template is None:
        text = collapse_spaces(collapse_lines(trim_to_end_sentence(raw)))
        return SanitizedResponse(text=text.strip())

    settings = template.settings
    text, reasoning = extract_reasoning(raw, template.reasoning.prefix, template.reasoning.suffix)

    if settings.trim_assistant_incomplete:
        text = trim_to_end_sentence(text)
    if settings.collapse_consecutive_lines:
        text = collapse_lines(text)
    if settings.trim_double_spaces:
        text = collapse_spaces(text)

    return SanitizedResponse(text=text.strip(), reasoning=reasoning)
