"""Streaming Anthropic client behind the model boundary of the conversation loop."""

import asyncio
import os
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal, Protocol, TypeVar

from anthropic import APIConnectionError, APIError, APIStatusError, AsyncAnthropic
from anthropic.types import Message
from limits import RateLimitItem, parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from pydantic import BaseModel

from app.clients.tokens import TokenBudget, load_encoding
from app.models.llm import LLMMessage, LLMTool
from app.utils.logging import get_logger
from app.utils.response_parser import format_tool_calls_block

logger = get_logger(__name__)

T = TypeVar("T")


class ModelTransportError(Exception):
    """Raised when the model provider cannot be reached or rejects a request."""


class ModelClient(Protocol):
    """Interface for the streaming chat model used by the conversation loop."""

    def stream_chat(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMTool] | None = None,
    ) -> AsyncIterator[str]:
        """Stream raw text chunks for one model response.

        Tool calls requested by the model arrive as a trailing sentinel block in the text.

        Raises:
            ModelTransportError: If the provider fails
        """
        ...

    async def complete(self, prompt: str, system_prompt: str = "", max_tokens: int = 64) -> str:
        """Return a short, non-streamed completion."""
        ...

    def validate_message_tokens(self, message: str) -> None:
        """Reject a user message that is too long.

        Raises:
            ValueError: If the message exceeds the token limit
        """
        ...


class CacheControl(BaseModel):
    """Prompt cache breakpoint."""

    type: Literal["ephemeral"] = "ephemeral"


class AnthropicMessage(BaseModel):
    """A message in the shape the Messages API accepts."""

    role: Literal["user", "assistant"]
    content: str


class AnthropicTool(BaseModel):
    """A tool in the shape the Messages API accepts."""

    name: str
    description: str
    input_schema: dict[str, Any]
    cache_control: CacheControl | None = None


@dataclass
class StreamUsage:
    """Token counts reported while a response streams."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0


@dataclass
class AnthropicConfig:
    """Configuration for the Anthropic client."""

    model: str = "claude-sonnet-4-5"
    max_tokens: int = 8192
    temperature: float = 0.3
    max_retries: int = 3
    retry_delay: float = 1.0
    max_retry_after: float = 120.0

    max_message_tokens: int = 8000
    max_conversation_tokens: int = 200_000
    token_headroom: int = 8192

    requests_per_minute: int = 50
    tokens_per_minute: int = 400_000

    @classmethod
    def from_env(cls) -> "AnthropicConfig":
        """Build the configuration from environment variables."""
        return cls(
            model=os.getenv("ANTHROPIC_MODEL", cls.model),
            max_tokens=int(os.getenv("ANTHROPIC_MAX_TOKENS", cls.max_tokens)),
            temperature=float(os.getenv("ANTHROPIC_TEMPERATURE", cls.temperature)),
            max_message_tokens=int(os.getenv("MAX_MESSAGE_TOKENS", cls.max_message_tokens)),
            requests_per_minute=int(os.getenv("ANTHROPIC_REQUESTS_PER_MINUTE", cls.requests_per_minute)),
            tokens_per_minute=int(os.getenv("ANTHROPIC_TOKENS_PER_MINUTE", cls.tokens_per_minute)),
        )


class AnthropicRateLimiter:
    """Client-side request and token windows, so bursts wait instead of failing upstream."""

    def __init__(self, requests_per_minute: int, tokens_per_minute: int, key: str = "anthropic"):
        self.limiter = MovingWindowRateLimiter(MemoryStorage())
        self.windows: list[tuple[str, RateLimitItem, bool]] = [
            ("requests", parse(f"{requests_per_minute}/minute"), False),
            ("tokens", parse(f"{tokens_per_minute}/minute"), True),
        ]
        self.key = key

    async def acquire(self, tokens: int) -> None:
        """Take one request and the estimated tokens, waiting for whichever window is full."""
        for name, window, weighted in self.windows:
            cost = max(tokens, 1) if weighted else 1
            identifier = f"{self.key}:{name}"
            if self.limiter.hit(window, identifier, cost=cost):
                continue

            stats = self.limiter.get_window_stats(window, identifier)
            wait = max(0.0, stats.reset_time - time.time())
            if wait > 0:
                logger.warning(f"Anthropic {name} window full, waiting {wait:.1f}s")
                await asyncio.sleep(wait)


def convert_tools(tools: list[LLMTool] | None) -> list[AnthropicTool]:
    """Convert tool schemas; the last one is the prompt cache breakpoint."""
    converted = [
        AnthropicTool(name=tool.name, description=tool.description, input_schema=tool.input_schema)
        for tool in tools or []
    ]
    if converted:
        converted[-1].cache_control = CacheControl()
    return converted


def merge_consecutive_messages(messages: list[LLMMessage]) -> list[AnthropicMessage]:
    """Merge runs of same-role messages, which the API rejects."""
    merged: list[AnthropicMessage] = []
    for message in messages:
        content = message.content if message.content.strip() else "(empty)"
        if merged and merged[-1].role == message.role:
            merged[-1].content = f"{merged[-1].content}\n\n{content}"
        else:
            merged.append(AnthropicMessage(role=message.role, content=content))
    return merged


class AnthropicClient:
    """Anthropic Messages API client with streaming, retries and rate limiting."""

    def __init__(self, api_key: str | None = None, config: AnthropicConfig | None = None):
        """Initialize the client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Client configuration (defaults from environment)
        """
        api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")

        self.config = config or AnthropicConfig.from_env()
        # Retries are handled here so that they also cover the rate limiter
        self.client = AsyncAnthropic(api_key=api_key, max_retries=0)
        self.rate_limiter = AnthropicRateLimiter(self.config.requests_per_minute, self.config.tokens_per_minute)
        self.budget = TokenBudget(
            max_message_tokens=self.config.max_message_tokens,
            max_context_tokens=self.config.max_conversation_tokens,
            response_headroom=self.config.token_headroom,
            encoding=load_encoding(),
        )

    def validate_message_tokens(self, message: str) -> None:
        self.budget.check_message(message)

    def prepare_messages(
        self, messages: list[LLMMessage], system_prompt: str, tools: list[AnthropicTool] | None = None
    ) -> list[AnthropicMessage]:
        """Merge roles, drop the oldest messages past the budget, and start on a user turn."""
        fixed = system_prompt + "".join(tool.model_dump_json() for tool in tools or [])
        prepared = self.budget.fit(merge_consecutive_messages(messages), fixed)
        while prepared and prepared[0].role != "user":
            prepared.pop(0)
        return prepared

    async def stream_chat(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMTool] | None = None,
    ) -> AsyncIterator[str]:
        """Stream one response as text chunks.

        Tool use blocks are reassembled by block index and emitted once, after the
        text, as a sentinel block.

        Raises:
            ModelTransportError: If the request or the stream fails
        """
        anthropic_tools = convert_tools(tools)
        prepared = self.prepare_messages(messages, system_prompt, anthropic_tools)

        params: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "system": system_prompt,
            "messages": [message.model_dump() for message in prepared],
            "stream": True,
        }
        if anthropic_tools:
            params["tools"] = [tool.model_dump(exclude_none=True) for tool in anthropic_tools]

        await self.rate_limiter.acquire(self.budget.count(system_prompt + "".join(m.content for m in prepared)))
        logger.debug(f"Streaming {self.config.model}: {len(prepared)} messages, {len(anthropic_tools)} tools")
        stream = await self._call(lambda: self.client.messages.create(**params))

        tool_blocks: dict[int, dict[str, str]] = {}
        usage = StreamUsage()
        try:
            async for event in stream:
                match event.type:
                    case "message_start":
                        usage.input_tokens = event.message.usage.input_tokens
                        usage.cache_read_tokens = event.message.usage.cache_read_input_tokens or 0
                    case "content_block_start" if event.content_block.type == "tool_use":
                        block = event.content_block
                        tool_blocks[event.index] = {"id": block.id, "name": block.name, "arguments": ""}
                    case "content_block_delta" if event.delta.type == "text_delta":
                        yield event.delta.text
                    case "content_block_delta" if event.delta.type == "input_json_delta":
                        if event.index in tool_blocks:
                            tool_blocks[event.index]["arguments"] += event.delta.partial_json
                    case "message_delta":
                        usage.output_tokens = event.usage.output_tokens
        except APIError as e:
            raise ModelTransportError(f"Model stream failed: {e}") from e
        finally:
            await stream.close()

        logger.debug(
            f"Stream done: {usage.input_tokens} in ({usage.cache_read_tokens} cached), "
            f"{usage.output_tokens} out, {len(tool_blocks)} tool calls"
        )
        if tool_blocks:
            yield format_tool_calls_block([tool_blocks[index] for index in sorted(tool_blocks)])

    async def complete(self, prompt: str, system_prompt: str = "", max_tokens: int = 64) -> str:
        """Short non-streamed completion, used for project names."""
        params: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": max_tokens,
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            params["system"] = system_prompt

        await self.rate_limiter.acquire(self.budget.count(system_prompt + prompt))
        response: Message = await self._call(lambda: self.client.messages.create(**params))
        return "".join(block.text for block in response.content if block.type == "text").strip()

    async def _call(self, request: Callable[[], Awaitable[T]]) -> T:
        """Send a request, retrying connection errors, 429s and 5xx with backoff.

        Raises:
            ModelTransportError: When the request fails for good
        """
        attempts = max(self.config.max_retries, 1)
        for attempt in range(1, attempts + 1):
            try:
                return await request()
            except APIError as e:
                delay = self._retry_delay(e, attempt)
                if delay is None or attempt == attempts:
                    logger.error(f"Anthropic request failed after {attempt} attempts: {e}")
                    raise ModelTransportError(f"Model request failed: {e}") from e
                logger.warning(f"Anthropic request failed ({e.__class__.__name__}), retry {attempt} in {delay:g}s")
                await asyncio.sleep(delay)

        raise ModelTransportError(f"Model request failed after {attempts} attempts")

    def _retry_delay(self, error: APIError, attempt: int) -> float | None:
        """Seconds to wait before retrying, or None when the error is final."""
        backoff = self.config.retry_delay * 2 ** (attempt - 1)
        if isinstance(error, APIConnectionError):
            return backoff
        if not isinstance(error, APIStatusError):
            return None
        if error.status_code == 429:
            retry_after = float(error.response.headers.get("retry-after", 60))
            return retry_after if retry_after < self.config.max_retry_after else None
        if error.status_code >= 500:
            return backoff
        return None


_anthropic_client: AnthropicClient | None = None


def get_anthropic_client() -> AnthropicClient:
    """Get or create Anthropic client instance."""
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = AnthropicClient()
    return _anthropic_client
