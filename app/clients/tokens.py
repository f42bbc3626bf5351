"""Token estimation and context-window budgeting for model requests."""

from collections.abc import Sequence
from typing import Protocol, TypeVar

import tiktoken

from app.utils.logging import get_logger

logger = get_logger(__name__)

# Claude has no public tokenizer; cl100k is close enough for budgeting
ENCODING_NAME = "cl100k_base"
CHARS_PER_TOKEN = 4


class HasContent(Protocol):
    content: str


M = TypeVar("M", bound=HasContent)


def load_encoding() -> tiktoken.Encoding | None:
    try:
        return tiktoken.get_encoding(ENCODING_NAME)
    except Exception as e:
        logger.warning(f"Tokenizer {ENCODING_NAME} unavailable, estimating by characters: {e}")
        return None


class TokenBudget:
    """Counts tokens and keeps requests inside the context window.

    Attributes:
        max_message_tokens: Largest user message accepted
        max_context_tokens: Context window of the model
        response_headroom: Tokens kept free for the response
    """

    def __init__(
        self,
        max_message_tokens: int,
        max_context_tokens: int,
        response_headroom: int,
        encoding: tiktoken.Encoding | None = None,
    ):
        self.max_message_tokens = max_message_tokens
        self.max_context_tokens = max_context_tokens
        self.response_headroom = response_headroom
        self.encoding = encoding

    def count(self, text: str) -> int:
        if self.encoding is not None:
            try:
                return len(self.encoding.encode(text))
            except Exception:
                logger.debug("Tokenizer failed, estimating by characters")
        return len(text) // CHARS_PER_TOKEN

    def check_message(self, text: str) -> None:
        """Reject a single message that is too long.

        Raises:
            ValueError: If the message exceeds the per-message limit
        """
        tokens = self.count(text)
        if tokens > self.max_message_tokens:
            raise ValueError(f"Message exceeds token limit: {tokens} tokens > {self.max_message_tokens} limit")

    def fit(self, messages: Sequence[M], fixed_text: str = "") -> list[M]:
        """Keep the newest messages that fit next to the fixed part of the request.

        Args:
            messages: Conversation, oldest first
            fixed_text: System prompt and tool schemas, always sent

        Returns:
            A suffix of the messages
        """
        budget = self.max_context_tokens - self.response_headroom - self.count(fixed_text)

        kept = 0
        used = 0
        for message in reversed(messages):
            tokens = self.count(message.content)
            if used + tokens > budget:
                break
            used += tokens
            kept += 1

        if kept < len(messages):
            logger.warning(
                f"Dropped {len(messages) - kept} oldest of {len(messages)} messages "
                f"to fit a {budget}-token budget"
            )
        return list(messages[len(messages) - kept :])
