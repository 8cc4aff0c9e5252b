"""Prompt assembly and response cleanup pipeline.

Stages, in the order a request passes through them:
  placeholders — {{...}} resolution: entity fields, dates, dice, randomizers, notes
  history      — chat entries → messages, custom prompts, merging, system prompt
  budget       — newest-first history packing under the token ceiling
  template     — role prefix/suffix wrapping, assistant prefill, stop strings
  response     — reasoning extraction, sentence trimming, whitespace collapse

orchestrator.format_chat() / format_prompt() run the assembly half and
return a PromptAssembly; run_inference() hands the request to an injected
LLM and sanitizes what comes back.
"""

from .budget import ContextBudgetAllocator  # noqa: F401
from .history import (  # noqa: F401
    build_history,
    build_system_prompt,
    insert_custom_prompts,
    merge_messages_on_user,
    merge_subsequent_messages,
)
from .orchestrator import format_chat, format_prompt, run_inference  # noqa: F401
from .placeholders import PlaceholderResolver, apply_censorship  # noqa: F401
from .response import sanitize_response, trim_to_end_sentence  # noqa: F401
from .template import format_template, render_text_prompt  # noqa: F401
