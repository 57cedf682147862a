"""Reduce inbound request payloads to a size-bounded, loggable projection."""

from typing import Any

from .config import RequestLoggerOptions
from .models import SanitizedRequest

IMAGE_PLACEHOLDER = "[IMAGE_DATA_OMITTED]"


def truncate(text: str, max_length: int) -> str:
    """Cut text to max_length characters, noting how many were dropped.

    A max_length of 0 means unlimited.
    """
    if max_length == 0 or len(text) <= max_length:
        return text
    return f"{text[:max_length]}... [truncated, {len(text) - max_length} more chars]"


def _sanitize_block(block: Any, max_length: int) -> Any:
    if not isinstance(block, dict):
        return block

    block_type = block.get("type")
    if block_type == "text" and isinstance(block.get("text"), str) and block["text"]:
        return {"type": "text", "text": truncate(block["text"], max_length)}
    if block_type == "image":
        return {"type": "image", "source": IMAGE_PLACEHOLDER}
    if block_type == "tool_use":
        return {"type": "tool_use", "name": block.get("name"), "id": block.get("id")}
    if block_type == "tool_result":
        return {"type": "tool_result", "tool_use_id": block.get("tool_use_id")}
    # Unknown block types are logged as-is
    return block


def sanitize_messages(messages: list[Any] | None, options: RequestLoggerOptions) -> list[Any]:
    """Project a message list according to the logging options."""
    if not options.include_messages or not isinstance(messages, list):
        return []

    sanitized = []
    for msg in messages:
        if not isinstance(msg, dict):
            sanitized.append(msg)
            continue

        item: dict[str, Any] = {"role": msg.get("role")}
        content = msg.get("content")
        if isinstance(content, str):
            item["content"] = truncate(content, options.max_message_length)
        elif isinstance(content, list):
            item["content"] = [
                _sanitize_block(block, options.max_message_length) for block in content
            ]
        sanitized.append(item)
    return sanitized


def sanitize_request(body: dict[str, Any], options: RequestLoggerOptions) -> SanitizedRequest:
    """Build the loggable projection of a generation request body.

    Binary payloads are replaced by a placeholder, long text is truncated and
    tool definitions are reduced to name and description. Missing fields
    simply stay absent. The input is never modified.
    """
    request = SanitizedRequest(
        model=body.get("model"),
        max_tokens=body.get("max_tokens"),
        temperature=body.get("temperature"),
        stream=body.get("stream"),
        messages=sanitize_messages(body.get("messages"), options),
    )

    system = body.get("system")
    if options.include_system_prompt and system:
        if isinstance(system, str):
            # System prompts get twice the per-message budget
            request.system = truncate(system, options.max_message_length * 2)
        else:
            request.system = system

    tools = body.get("tools")
    if options.include_tools and isinstance(tools, list) and tools:
        request.tools = [
            {"name": tool.get("name"), "description": tool.get("description")}
            for tool in tools
            if isinstance(tool, dict)
        ]

    return request
