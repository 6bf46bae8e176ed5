"""
Retrieval sufficiency check.

Asks the chat capability whether the content retrieved so far answers the
user's query.  The model is told to reply with
``<decision>RETRIEVE</decision>`` (more needed) or
``<decision>NO_RETRIEVE</decision>``; replies without the tag fall back to a
keyword scan of the whole text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from memrecall.llm import ChatMessage, LLMClient

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = """
# Task Objective
Determine whether the current retrieved content is sufficient to answer the user's query.

# Rules
Return RETRIEVE if more information is needed, otherwise return NO_RETRIEVE.

# Output Format
<decision>RETRIEVE or NO_RETRIEVE</decision>
"""

DEFAULT_USER_PROMPT = """
User Query: {query}

Retrieved Content:
{retrieved_content}
"""

_OPEN_TAG = "<decision>"
_CLOSE_TAG = "</decision>"


@dataclass
class SufficiencyResult:
    needs_more: bool
    rewritten_query: str


def _decide(text: str) -> bool:
    if "no_retrieve" in text or "no retrieve" in text:
        return False
    return "retrieve" in text


def parse_decision(response: str) -> bool:
    """True if the reply asks for more retrieval."""
    lower = response.lower()
    start = lower.find(_OPEN_TAG)
    end = lower.find(_CLOSE_TAG)
    if start != -1 and end != -1:
        return _decide(lower[start + len(_OPEN_TAG):end])
    return _decide(lower)


class SufficiencyChecker:
    """LLM-backed check of retrieved content against a query."""

    def __init__(
        self,
        client: LLMClient,
        model: Optional[str] = None,
        *,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        user_prompt_template: str = DEFAULT_USER_PROMPT,
    ):
        self.client = client
        self.model = model
        self.system_prompt = system_prompt
        self.user_prompt_template = user_prompt_template

    def check(self, query: str, retrieved_content: str) -> SufficiencyResult:
        """Empty content always needs more; otherwise the model decides."""
        if not retrieved_content.strip():
            logger.debug("No retrieved content, more retrieval needed")
            return SufficiencyResult(needs_more=True, rewritten_query=query)

        prompt = (self.user_prompt_template
                  .replace("{query}", query)
                  .replace("{retrieved_content}", retrieved_content))
        response = self.client.chat(
            [
                ChatMessage("system", self.system_prompt),
                ChatMessage("user", prompt),
            ],
            self.model,
        )
        logger.debug(f"Sufficiency response: {response.content!r}")
        return SufficiencyResult(
            needs_more=parse_decision(response.content),
            rewritten_query=query,
        )
