"""Chat transcript data model and OpenAI chat-completions wire mapping.

A Message is one flat record tagged by ``role``. Role-specific fields sit on
the same record: ``tool_calls`` is only meaningful for assistant turns and
``tool_call_id`` only for tool results.
"""
import json
from dataclasses import dataclass, field
from typing import Any

SYSTEM = "system"
USER = "user"
ASSISTANT = "assistant"
TOOL = "tool"

ROLES = (SYSTEM, USER, ASSISTANT, TOOL)


class MessageFormatError(ValueError):
    """A wire message could not be decoded."""


def _expect_str(value, what: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MessageFormatError(f"{what} must be a string, got {type(value).__name__}")
    return value


@dataclass
class ToolCall:
    id: str
    name: str = ""
    arguments: str = "{}"
    type: str = "function"
    # Unknown keys of the call and of its "function" object, written back as-is
    extra: dict[str, Any] = field(default_factory=dict)
    function_extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: dict) -> "ToolCall":
        if not isinstance(d, dict):
            raise MessageFormatError(f"tool call must be an object, got {type(d).__name__}")
        func = d.get("function")
        if func is None:
            func = {}
        elif not isinstance(func, dict):
            raise MessageFormatError(f"tool call 'function' must be an object, got {type(func).__name__}")
        args = func.get("arguments", "{}")
        if not isinstance(args, str):
            args = json.dumps(args, ensure_ascii=False)
        return cls(
            id=_expect_str(d.get("id"), "tool call 'id'"),
            name=_expect_str(func.get("name"), "tool call 'function.name'"),
            arguments=args,
            type=_expect_str(d.get("type"), "tool call 'type'") or "function",
            extra={k: v for k, v in d.items() if k not in ("id", "type", "function")},
            function_extra={k: v for k, v in func.items() if k not in ("name", "arguments")},
        )

    def to_dict(self) -> dict:
        out = dict(self.extra)
        out["id"] = self.id
        out["type"] = self.type
        function = dict(self.function_extra)
        function["name"] = self.name
        function["arguments"] = self.arguments
        out["function"] = function
        return out


@dataclass
class ContentPart:
    type: str
    text: str = ""
    image_url: str = ""
    # The decoded wire dict; parts of other types (audio, files) are opaque
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_dict(cls, d: dict) -> "ContentPart":
        if not isinstance(d, dict):
            raise MessageFormatError(f"content part must be an object, got {type(d).__name__}")
        url = d.get("image_url")
        if isinstance(url, dict):
            url = _expect_str(url.get("url"), "content part 'image_url.url'")
        else:
            url = _expect_str(url, "content part 'image_url'")
        return cls(
            type=_expect_str(d.get("type"), "content part 'type'") or "text",
            text=_expect_str(d.get("text"), "content part 'text'"),
            image_url=url,
            raw=dict(d),
        )

    def to_dict(self) -> dict:
        out = dict(self.raw)
        out["type"] = self.type
        if self.type == "image_url":
            image = out.get("image_url")
            if isinstance(image, str):
                out["image_url"] = self.image_url
            else:
                image = dict(image) if isinstance(image, dict) else {}
                image["url"] = self.image_url
                out["image_url"] = image
        elif self.type == "text" or "text" in out:
            out["text"] = self.text
        return out


@dataclass
class Message:
    role: str
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str = ""
    content_parts: list[ContentPart] = field(default_factory=list)
    name: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def has_tool_calls(self) -> bool:
        return self.role == ASSISTANT and bool(self.tool_calls)

    @property
    def call_ids(self) -> set[str]:
        """IDs of this turn's tool calls, empty IDs excluded."""
        return {tc.id for tc in self.tool_calls if tc.id}

    @classmethod
    def from_dict(cls, d: dict) -> "Message":
        if not isinstance(d, dict):
            raise MessageFormatError(f"message must be an object, got {type(d).__name__}")
        role = d.get("role")
        if not role or not isinstance(role, str):
            raise MessageFormatError("message is missing 'role'")

        content = d.get("content")
        parts = []
        if isinstance(content, list):
            parts = [ContentPart.from_dict(p) for p in content]
            content = "\n".join(p.text for p in parts if p.type == "text" and p.text)
        elif content is None:
            content = ""
        elif not isinstance(content, str):
            raise MessageFormatError(f"message 'content' must be a string or a list, got {type(content).__name__}")

        tool_calls = d.get("tool_calls") or []
        if not isinstance(tool_calls, list):
            raise MessageFormatError("message 'tool_calls' must be a list")

        known = {"role", "content", "tool_calls", "tool_call_id", "name"}
        return cls(
            role=role,
            content=content,
            tool_calls=[ToolCall.from_dict(tc) for tc in tool_calls],
            tool_call_id=_expect_str(d.get("tool_call_id"), "message 'tool_call_id'"),
            content_parts=parts,
            name=_expect_str(d.get("name"), "message 'name'"),
            extra={k: v for k, v in d.items() if k not in known},
        )

    def to_dict(self) -> dict:
        out = dict(self.extra)
        out["role"] = self.role
        if self.content_parts:
            out["content"] = [p.to_dict() for p in self.content_parts]
        else:
            out["content"] = self.content
        if self.tool_calls:
            out["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            out["tool_call_id"] = self.tool_call_id
        if self.name:
            out["name"] = self.name
        return out


def messages_from_dicts(items) -> list[Message]:
    if not isinstance(items, list):
        raise MessageFormatError("'messages' must be a list")
    return [Message.from_dict(d) for d in items]


def messages_to_dicts(messages: list[Message]) -> list[dict]:
    return [m.to_dict() for m in messages]
