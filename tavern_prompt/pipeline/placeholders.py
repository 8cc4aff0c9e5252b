"""{{...}} placeholder resolution for prompt text.

Grammar (each span is resolved once, left to right, never re-scanned):

  {{// note}}              removed, authoring notes never reach the model
  {{char}} {{user}}        entity fields, see _entity_fields()
  {{roll:2d6+1}}           dice: 1-100 dice, 1-1000 sides, optional +/-K
  {{time}} {{date}} {{weekday}} {{isotime}} {{isodate}}
  {{a|b|c}}                one option, chosen uniformly
  {{2$$a|b|c}}             two distinct options joined with ", "

Anything that does not resolve (unknown names, fields with no data, malformed
dice, impossible pick counts) is left verbatim.
"""

from __future__ import annotations

import logging
import random
import re
from datetime import datetime

from tavern_prompt.models import EntityContext, Message

logger = logging.getLogger(__name__)

# A comment may contain braces; any other span may not.
_SPAN = re.compile(r"\{\{(//.*?|[^{}]*)\}\}")
_DICE = re.compile(r"^\s*(\d+)\s*d\s*(\d+)\s*([+-]\s*\d+)?\s*$", re.IGNORECASE)
_COUNTED_PICK = re.compile(r"^(\d+)\$\$(.*)$", re.DOTALL)

MAX_DICE = 100
MAX_SIDES = 1000
PICK_SEPARATOR = ", "


def _entity_fields(context: EntityContext) -> dict[str, str]:
    """Field name → value, for every field the context actually has data for."""
    fields: dict[str, str] = {}
    character, user, chapter = context.character, context.user_character, context.chapter

    if character and character.name:
        fields["char"] = character.name
        fields["character.name"] = character.name
    if character and character.type == "character" and character.personality:
        fields["character.personality"] = character.personality
    if user and user.name:
        fields["user"] = user.name
        fields["user.name"] = user.name
    if user and user.personality:
        fields["user.personality"] = user.personality
    if chapter and chapter.scenario:
        fields["chapter.scenario"] = chapter.scenario
    if chapter and chapter.title:
        fields["chapter.title"] = chapter.title

    for key, value in context.extra.items():
        fields[key] = str(value)
    return fields


def _date_time_values(now: datetime) -> dict[str, str]:
    hour = now.hour % 12 or 12
    meridiem = "AM" if now.hour < 12 else "PM"
    return {
        "time": f"{hour}:{now.minute:02d} {meridiem}",
        "date": f"{now:%B} {now.day}, {now.year}",
        "weekday": f"{now:%A}",
        "isotime": f"{now:%H:%M:%S}",
        "isodate": f"{now:%Y-%m-%d}",
    }


def roll_dice(expression: str, rng: random.Random) -> int | None:
    """Roll an NdM[+/-K] expression. Returns None if it is malformed or out of range."""
    match = _DICE.match(expression)
    if not match:
        return None
    try:
        count, sides = int(match.group(1)), int(match.group(2))
        modifier = int(re.sub(r"\s", "", match.group(3))) if match.group(3) else 0
    except ValueError:
        # digit runs past the interpreter's int conversion limit
        return None
    if not (1 <= count <= MAX_DICE and 1 <= sides <= MAX_SIDES):
        return None
    return sum(rng.randint(1, sides) for _ in range(count)) + modifier


def pick_random(content: str, rng: random.Random) -> str | None:
    """Resolve `a|b|c` or `N$$a|b|c`. Returns None when content is not a randomizer."""
    options = content.split("|")
    counted = _COUNTED_PICK.match(options[0])
    if counted:
        try:
            wanted = int(counted.group(1))
        except ValueError:
            return None
        options[0] = counted.group(2)
        if not 1 <= wanted <= len(options):
            return None
        return PICK_SEPARATOR.join(rng.sample(options, wanted))
    if len(options) > 1:
        return rng.choice(options)
    return None


def apply_censorship(text: str, words: list[str], replacer: str = "***") -> str:
    """Replace every case-insensitive occurrence of any listed word, even inside other words."""
    words = [w for w in words if w]
    if not words:
        return text
    pattern = re.compile("|".join(re.escape(w) for w in words), re.IGNORECASE)
    return pattern.sub(replacer, text)


class PlaceholderResolver:
    """Resolves placeholder spans against one request's entity context.

    `rng` and `now` are injectable for deterministic tests; production
    callers leave them unset to get a fresh RNG and the local clock.
    """

    def __init__(
        self,
        context: EntityContext | None = None,
        rng: random.Random | None = None,
        now: datetime | None = None,
    ) -> None:
        self._context = context or EntityContext()
        self._rng = rng or random.Random()
        self._now = now or datetime.now().astimezone()
        self._fields = self._normalized_fields()
        self._date_time = _date_time_values(self._now)

    def _normalized_fields(self) -> dict[str, str]:
        # Field values may themselves mention fields ("{{user}}'s sister");
        # those are resolved once here against the raw values.
        raw = _entity_fields(self._context)

        def substitute(match: re.Match) -> str:
            return raw.get(match.group(1), match.group(0))

        return {key: _SPAN.sub(substitute, value) for key, value in raw.items()}

    def _resolve_span(self, match: re.Match) -> str:
        content = match.group(1)
        if content.startswith("//"):
            return ""
        if content in self._fields:
            return self._fields[content]
        if content.startswith("roll:"):
            total = roll_dice(content[len("roll:"):], self._rng)
            return match.group(0) if total is None else str(total)
        if content in self._date_time:
            return self._date_time[content]
        picked = pick_random(content, self._rng)
        return match.group(0) if picked is None else picked

    def resolve(self, text: str) -> str:
        if "{{" not in text:
            return text
        return _SPAN.sub(self._resolve_span, text)

    def resolve_fields(self, text: str) -> str:
        """Substitute entity fields only. Dice, randomizers, dates and notes stay as written."""
        if "{{" not in text:
            return text
        return _SPAN.sub(lambda m: self._fields.get(m.group(1), m.group(0)), text)

    def resolve_prompt(
        self, system_prompt: str, messages: list[Message], censor: bool = False
    ) -> tuple[str, list[Message]]:
        """Resolve the system prompt and every message text into new objects."""
        def process(text: str) -> str:
            text = self.resolve(text)
            if censor:
                text = apply_censorship(text, self._context.censored_words)
            return text

        resolved = [m.model_copy(update={"text": process(m.text)}) for m in messages]
        logger.debug("resolved placeholders in %d messages", len(resolved))
        return process(system_prompt), resolved
