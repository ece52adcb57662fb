from __future__ import annotations

import json
from typing import Any

from agent_logs.models import (
    ContentBlock,
    ImageBlock,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
)


def extract_text(raw_content: Any) -> str | None:
    """Join the text of a string or a mixed array of strings and ``{text}`` objects.

    Array members that carry no text are ignored. Returns None when the value
    is neither a string nor an array.
    """
    if isinstance(raw_content, str):
        return raw_content

    if isinstance(raw_content, list):
        parts: list[str] = []
        for item in raw_content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
        return "\n".join(parts)

    return None


def _tool_result_text(raw_content: Any) -> str | None:
    text = extract_text(raw_content)
    if isinstance(raw_content, list) and not text:
        return None
    return text


def parse_content_block(raw: Any) -> ContentBlock | None:
    if not isinstance(raw, dict):
        return None

    block_type = raw.get("type")
    if block_type == "text":
        text = raw.get("text")
        return TextBlock(text=text) if isinstance(text, str) and text else None

    if block_type == "tool_use":
        name = raw.get("name")
        if not isinstance(name, str) or not name:
            return None
        raw_input = raw.get("input")
        return ToolUseBlock(
            tool_use_id=str(raw.get("id") or ""),
            name=name,
            input_json=json.dumps(raw_input) if raw_input is not None else None,
        )

    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=str(raw.get("tool_use_id") or ""),
            content=_tool_result_text(raw.get("content")),
            is_error=bool(raw.get("is_error", False)),
        )

    if block_type == "thinking":
        text = raw.get("thinking") or raw.get("text") or ""
        if not isinstance(text, str) or not text:
            return None
        signature = raw.get("signature")
        return ThinkingBlock(text=text, signature=signature if isinstance(signature, str) else None)

    if block_type == "image":
        source = raw.get("source")
        if not isinstance(source, dict):
            return None
        media_type = source.get("media_type")
        data = source.get("data")
        return ImageBlock(
            media_type=media_type if isinstance(media_type, str) else "image/png",
            source=data if isinstance(data, str) else "",
        )

    return None


def parse_content_blocks(raw_content: Any) -> tuple[ContentBlock, ...]:
    if not isinstance(raw_content, list):
        return ()
    blocks = (parse_content_block(item) for item in raw_content)
    return tuple(block for block in blocks if block is not None)
