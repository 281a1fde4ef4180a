"""Request body inspection for dispatch headers.

Request bodies are sorted into explicit shapes before any detection runs:

- ``ChatMessages``: a ``messages`` array (chat completions or messages API)
- ``InputItems``: an ``input`` array (responses API)
- ``UnknownBody``: anything else, including non-JSON bodies

Unknown bodies always take the conservative branch: no vision header and
a user-initiated call.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import orjson


VISION_PART_TYPES = frozenset({"image_url", "image"})
INPUT_IMAGE_PART_TYPE = "input_image"
TOOL_RESULT_PART_TYPE = "tool_result"


class Initiator(StrEnum):
    """Who started a request, for downstream premium-request accounting."""

    USER = "user"
    AGENT = "agent"


@dataclass(frozen=True)
class ChatMessages:
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class InputItems:
    items: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class UnknownBody:
    pass


RequestBody = ChatMessages | InputItems | UnknownBody


def _dicts(value: list[Any]) -> list[dict[str, Any]]:
    return [item for item in value if isinstance(item, dict)]


def classify_body(content: bytes | str | None) -> RequestBody:
    """Parse raw request content into one of the known body shapes."""
    if not content:
        return UnknownBody()
    try:
        data = orjson.loads(content)
    except orjson.JSONDecodeError:
        return UnknownBody()
    if not isinstance(data, dict):
        return UnknownBody()

    messages = data.get("messages")
    if isinstance(messages, list):
        return ChatMessages(_dicts(messages))
    items = data.get("input")
    if isinstance(items, list):
        return InputItems(_dicts(items))
    return UnknownBody()


def _content_parts(entry: dict[str, Any]) -> list[dict[str, Any]] | None:
    content = entry.get("content")
    return _dicts(content) if isinstance(content, list) else None


def has_vision_content(body: RequestBody) -> bool:
    """True if any message or input item carries an image part."""
    if isinstance(body, ChatMessages):
        return any(
            part.get("type") in VISION_PART_TYPES
            for message in body.messages
            for part in _content_parts(message) or ()
        )
    if isinstance(body, InputItems):
        return any(
            part.get("type") == INPUT_IMAGE_PART_TYPE
            for item in body.items
            for part in _content_parts(item) or ()
        )
    return False


def detect_initiator(body: RequestBody, url: str) -> Initiator:
    """Classify a request as user- or agent-initiated from its last entry.

    Chat completions: agent unless the last message comes from the user.
    Messages API: a user turn holding only tool results is the agent
    continuing its own loop.
    Responses API: agent unless the last input item comes from the user.

    Plain string user content and empty or unrecognized bodies are treated
    as user-initiated on purpose, since that is the conservative billing tag.
    """
    if isinstance(body, ChatMessages) and body.messages:
        last = body.messages[-1]
        if "completions" in url:
            return _by_role(last)
        if last.get("role") != "user":
            return Initiator.AGENT
        parts = _content_parts(last)
        if parts is None:
            # Plain string content is typed by a person
            return Initiator.USER
        if any(part.get("type") != TOOL_RESULT_PART_TYPE for part in parts):
            return Initiator.USER
        return Initiator.AGENT

    if isinstance(body, InputItems) and body.items:
        return _by_role(body.items[-1])

    return Initiator.USER


def _by_role(entry: dict[str, Any]) -> Initiator:
    return Initiator.USER if entry.get("role") == "user" else Initiator.AGENT
