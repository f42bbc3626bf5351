"""Extraction of tool calls and reasoning from raw model output.

Model output reaches the loop as plain text. Tool calls travel inside it as a trailing
sentinel comment, ``<!--TOOL_CALLS:[{"id": ..., "name": ..., "arguments": "..."}]-->``,
or, for providers that emit them inline, as a ``<tools>[...]</tools>`` block.
Reasoning arrives in ``<think>`` or ``<thinking>`` tags. None of these are meant
for the user.
"""

import json
import re
from typing import Any

from cuid2 import cuid_wrapper

from app.models.llm import ParsedResponse, ParsedToolCall
from app.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

TOOL_CALLS_MARKER = "<!--TOOL_CALLS:"
TOOL_CALLS_END = "-->"
RAW_ARGUMENTS_KEY = "_raw"

_TOOLS_BLOCK = re.compile(r"<tools>(.*?)</tools>", re.DOTALL | re.IGNORECASE)
_REASONING_BLOCK = re.compile(r"<(think|thinking)>(.*?)</\1>", re.DOTALL | re.IGNORECASE)
_REASONING_OPEN = re.compile(r"<(think|thinking)>", re.IGNORECASE)
_TOOLS_OPEN = re.compile(r"<tools>", re.IGNORECASE)

_HIDDEN_OPENINGS = (TOOL_CALLS_MARKER, "<tools>", "<think>", "<thinking>")

_decoder = json.JSONDecoder()


def format_tool_calls_block(tool_calls: list[dict[str, str]]) -> str:
    """Render completed tool calls as the trailing sentinel block."""
    return f"\n{TOOL_CALLS_MARKER}{json.dumps(tool_calls, ensure_ascii=False)}{TOOL_CALLS_END}"


def decode_arguments(raw_arguments: str) -> dict[str, Any]:
    """Decode a JSON argument string.

    Anything that is not a JSON object is kept under ``_raw`` so the executor can
    report the malformed call back to the model instead of dropping it.
    """
    if not raw_arguments or not raw_arguments.strip():
        return {}
    try:
        decoded = json.loads(raw_arguments)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse tool call arguments: {e}")
        return {RAW_ARGUMENTS_KEY: raw_arguments}
    if not isinstance(decoded, dict):
        return {RAW_ARGUMENTS_KEY: raw_arguments}
    return decoded


def _normalise_call(item: Any) -> ParsedToolCall | None:
    """Turn one vendor-shaped tool call into a ParsedToolCall."""
    if not isinstance(item, dict):
        return None

    function = item.get("function")
    if isinstance(function, dict):
        name = function.get("name")
        arguments = function.get("arguments")
    else:
        name = item.get("name")
        arguments = next(
            (item[key] for key in ("arguments", "input", "parameters") if key in item),
            None,
        )

    if not name:
        return None

    if isinstance(arguments, str):
        raw_arguments = arguments
    else:
        raw_arguments = json.dumps(arguments if arguments is not None else {}, ensure_ascii=False)

    return ParsedToolCall(
        id=str(item.get("id") or f"call_{cuid()}"),
        name=str(name),
        raw_arguments=raw_arguments,
        arguments=decode_arguments(raw_arguments),
    )


def _normalise_calls(data: Any) -> list[ParsedToolCall]:
    items = data if isinstance(data, list) else [data]
    calls = []
    for item in items:
        call = _normalise_call(item)
        if call is None:
            logger.warning(f"Skipping tool call without a name: {str(item)[:100]}")
            continue
        calls.append(call)
    return calls


def _decode_sentinel(text: str, start: int) -> tuple[Any, int] | None:
    """Decode the sentinel block opening at ``start``.

    Returns:
        (decoded payload, index just past the closing marker), or None when the
        block is incomplete or malformed
    """
    payload_start = start + len(TOOL_CALLS_MARKER)
    while payload_start < len(text) and text[payload_start].isspace():
        payload_start += 1

    try:
        data, payload_end = _decoder.raw_decode(text, payload_start)
    except json.JSONDecodeError:
        return None

    close = text.find(TOOL_CALLS_END, payload_end)
    if close == -1 or text[payload_end:close].strip():
        return None
    return data, close + len(TOOL_CALLS_END)


def _cut_block(text: str, start: int, end: int) -> str:
    before = text[:start]
    if before.endswith("\n"):
        before = before[:-1]
    return before + text[end:]


def _extract_sentinel(text: str) -> tuple[str, list[ParsedToolCall] | None]:
    """Strip sentinel blocks, parsing the first one.

    Returns None for the calls when no sentinel is present at all.
    """
    start = text.find(TOOL_CALLS_MARKER)
    if start == -1:
        return text, None

    calls: list[ParsedToolCall] = []
    first = True
    while start != -1:
        decoded = _decode_sentinel(text, start)
        if decoded is None:
            if first:
                logger.warning("Malformed tool call block, ignoring its calls")
            close = text.find(TOOL_CALLS_END, start)
            end = len(text) if close == -1 else close + len(TOOL_CALLS_END)
        else:
            data, end = decoded
            if first:
                calls = _normalise_calls(data)
        text = _cut_block(text, start, end)
        first = False
        start = text.find(TOOL_CALLS_MARKER)

    return text, calls


def _extract_tools_block(text: str) -> tuple[str, list[ParsedToolCall]]:
    match = _TOOLS_BLOCK.search(text)
    if not match:
        return text, []

    calls: list[ParsedToolCall] = []
    try:
        calls = _normalise_calls(json.loads(match.group(1).strip()))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse <tools> block: {e}")

    return _TOOLS_BLOCK.sub("", text), calls


def _extract_reasoning(text: str) -> tuple[str, str | None]:
    parts: list[str] = []

    def _collect(match: re.Match[str]) -> str:
        parts.append(match.group(2).strip())
        return ""

    visible = _REASONING_BLOCK.sub(_collect, text)

    opening = _REASONING_OPEN.search(visible)
    if opening:
        parts.append(visible[opening.end() :].strip())
        visible = visible[: opening.start()]

    reasoning = "\n\n".join(part for part in parts if part)
    return visible, reasoning or None


def parse_response(text: str) -> ParsedResponse:
    """Parse a complete model response.

    Only one tool call encoding is honoured: the sentinel block if present, else the
    ``<tools>`` block. Reasoning is extracted from what remains.

    Args:
        text: Raw model output, including any trailing sentinel block

    Returns:
        Visible text, reasoning and the tool calls in emission order
    """
    visible, calls = _extract_sentinel(text)
    if calls is None:
        visible, calls = _extract_tools_block(visible)
    else:
        visible = _TOOLS_BLOCK.sub("", visible)

    visible, reasoning = _extract_reasoning(visible)

    return ParsedResponse(visible_text=visible.strip(), reasoning=reasoning, tool_calls=calls)


def clean_partial(text: str) -> str:
    """Project in-flight model output onto what may be displayed.

    Completed blocks are removed; everything from an unterminated opening marker
    onwards is held back, as is a trailing fragment that could still grow into
    one of the opening markers.
    """
    start = text.find(TOOL_CALLS_MARKER)
    while start != -1:
        decoded = _decode_sentinel(text, start)
        if decoded is None:
            text = text[:start]
            break
        text = _cut_block(text, start, decoded[1])
        start = text.find(TOOL_CALLS_MARKER)

    text = _TOOLS_BLOCK.sub("", text)
    text = _REASONING_BLOCK.sub("", text)

    cut = len(text)
    for pattern in (_TOOLS_OPEN, _REASONING_OPEN):
        match = pattern.search(text)
        if match:
            cut = min(cut, match.start())
    text = text[:cut]

    lowered = text.lower()
    longest = max(len(opening) for opening in _HIDDEN_OPENINGS)
    for size in range(min(longest, len(text)), 0, -1):
        suffix = lowered[-size:]
        if suffix.startswith("<") and any(opening.lower().startswith(suffix) for opening in _HIDDEN_OPENINGS):
            text = text[:-size]
            break

    return text.strip()
