"""
LLM client capabilities consumed by the engine.

The engine never talks to a network endpoint itself.  A host application
supplies an ``LLMClient`` implementing two capabilities:

- ``embed(text) -> vector``
- ``chat(messages, model) -> ChatResponse`` (text plus token usage)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

Role = Literal["system", "user", "assistant"]

EmbedFn = Callable[[str], List[float]]


@dataclass
class ChatMessage:
    role: Role
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class ChatResponse:
    """Text completion plus token accounting."""
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)


class LLMClient(ABC):
    """Abstract client for embedding and chat backends."""

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Return the embedding vector of *text*."""

    @abstractmethod
    def chat(
        self, messages: List[ChatMessage], model: Optional[str] = None,
    ) -> ChatResponse:
        """Return the completion for *messages*.

        Args:
            messages: Conversation, system prompt first when present.
            model: Backend model name; None selects the client default.
        """
