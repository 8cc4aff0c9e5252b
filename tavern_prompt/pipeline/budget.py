"""Context budgeting — keep as much recent history as the token ceiling allows.

The system prompt is frozen: it is always sent and its exact size comes off
the top. From what is left after reserving the response, history is packed
newest-first with the fast estimate until the next message would overflow or
max_depth messages are in. Messages are kept or dropped whole.

Only when the packed total lands within 10% of the budget are the chosen
messages re-counted with the exact tokenizer; if that shows an overflow the
oldest are dropped until it fits.
"""

from __future__ import annotations

import asyncio
import logging

from tavern_prompt.models import BudgetConfig, ContextAllocation, Message, TokenStatistics
from tavern_prompt.tokens import TokenEstimator

logger = logging.getLogger(__name__)

EXACT_RECOUNT_THRESHOLD = 0.9


class ContextBudgetAllocator:
    def __init__(self, estimator: TokenEstimator) -> None:
        self._estimator = estimator

    async def _count_system(self, system_prompt: str) -> int:
        if not system_prompt:
            return 0
        return await self._estimator.estimate_exact(system_prompt)

    async def allocate(
        self,
        system_prompt: str,
        messages: list[Message],
        budget: BudgetConfig,
    ) -> ContextAllocation:
        """Select the longest suffix of `messages` that fits the budget."""
        frozen_tokens = await self._count_system(system_prompt)
        available = max(0, budget.max_context - budget.max_tokens - frozen_tokens)

        # Newest first: (message, tokens)
        accepted: list[tuple[Message, int]] = []
        total = 0
        for message in reversed(messages):
            if len(accepted) >= budget.max_depth:
                break
            tokens = self._estimator.estimate_fast(message.text)
            if total + tokens > available:
                break
            accepted.append((message, tokens))
            total += tokens

        if accepted and total > available * EXACT_RECOUNT_THRESHOLD:
            exact = await asyncio.gather(
                *(self._estimator.estimate_exact(m.text) for m, _ in accepted)
            )
            accepted = [(m, t) for (m, _), t in zip(accepted, exact)]
            total = sum(exact)
            while accepted and total > available:
                _, dropped = accepted.pop()  # oldest is last
                total -= dropped
            logger.debug("exact recount kept %d messages (%d tokens)", len(accepted), total)

        retained = tuple(m.model_copy() for m, _ in reversed(accepted))
        if messages and not retained:
            logger.warning(
                "No history fits the context: max_context=%d max_tokens=%d system=%d",
                budget.max_context, budget.max_tokens, frozen_tokens,
            )

        history_text = "\n".join(m.text for m in retained)
        history_tokens = await self._estimator.estimate_exact(history_text) if retained else 0

        logger.debug(
            "context budget available=%d kept=%d/%d system=%d history=%d",
            available, len(retained), len(messages), frozen_tokens, history_tokens,
        )
        return ContextAllocation(
            retained=retained,
            statistics=TokenStatistics(
                system_tokens=frozen_tokens,
                history_tokens=history_tokens,
                response_tokens=budget.max_tokens,
            ),
        )
