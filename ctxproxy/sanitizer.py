"""Sanitize conversation history before it is sent to a chat-completions API.

Providers with tool calling reject a request unless every assistant turn
that issues tool calls is immediately followed by one tool result per call.
Stored histories break that rule after restarts, truncation or a crash in
the middle of a tool round-trip, so the history is repaired in two passes:

1. Structural filter + merge: drop tool results with no tool-call turn in
   front of them, drop tool-call turns with nothing valid before them, and
   keep only the latest of consecutive user turns.
2. Completeness check: drop every tool-call turn (with its partial results)
   whose call IDs are not all answered in the block right after it.

Repair is silent and total. Nothing here raises for a malformed history;
what was removed is reported through DropEvents and debug logging.
"""
from dataclasses import dataclass, field
from enum import Enum

from .config import log
from .messages import ASSISTANT, SYSTEM, TOOL, USER, Message, messages_from_dicts, messages_to_dicts


class DropKind(str, Enum):
    ORPHANED_LEADING_TOOL = "orphaned_leading_tool"
    ORPHANED_TOOL = "orphaned_tool"
    TOOL_CALL_AT_START = "tool_call_at_start"
    TOOL_CALL_INVALID_PREDECESSOR = "tool_call_invalid_predecessor"
    MERGED_USER = "merged_user"
    INCOMPLETE_TOOL_GROUP = "incomplete_tool_group"


@dataclass
class DropEvent:
    """One removal decision. ``index`` points into the input of the pass that made it."""
    kind: DropKind
    index: int
    role: str
    stage: str = "filter"
    prev_role: str = ""
    expected: int = 0
    found: int = 0
    dropped: int = 1

    def to_dict(self) -> dict:
        d = {"kind": self.kind.value, "index": self.index, "role": self.role,
             "stage": self.stage, "dropped": self.dropped}
        if self.prev_role:
            d["prev_role"] = self.prev_role
        if self.kind is DropKind.INCOMPLETE_TOOL_GROUP:
            d["expected"] = self.expected
            d["found"] = self.found
        return d


@dataclass
class SanitizeResult:
    messages: list[Message]
    events: list[DropEvent] = field(default_factory=list)

    @property
    def dropped_count(self) -> int:
        return sum(e.dropped for e in self.events)

    def summary(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for e in self.events:
            counts[e.kind.value] = counts.get(e.kind.value, 0) + e.dropped
        return counts


def _record(events, event: DropEvent):
    log.debug(f"Dropping {event.role} message at {event.index}: {event.kind.value}"
              + (f" (prev_role={event.prev_role})" if event.prev_role else ""))
    if events is not None:
        events.append(event)


def _answers_tool_call_turn(accepted: list[Message]) -> bool:
    """Walk back over accepted tool results to the turn they belong to."""
    for j in range(len(accepted) - 1, -1, -1):
        if accepted[j].role == TOOL:
            continue
        return accepted[j].has_tool_calls
    return False


def filter_and_merge(history: list[Message], events: list | None = None) -> list[Message]:
    """Pass 1: drop structurally impossible messages, merge user runs.

    Only the output accepted so far is consulted when looking backward.
    Tool results are kept if they follow a tool-call turn (possibly after
    other tool results); their IDs are not matched here.
    """
    sanitized: list[Message] = []
    for i, msg in enumerate(history):
        if msg.role == TOOL:
            if not sanitized:
                _record(events, DropEvent(DropKind.ORPHANED_LEADING_TOOL, i, msg.role))
                continue
            if not _answers_tool_call_turn(sanitized):
                _record(events, DropEvent(DropKind.ORPHANED_TOOL, i, msg.role))
                continue
            sanitized.append(msg)

        elif msg.role == ASSISTANT:
            if msg.tool_calls:
                if not sanitized:
                    _record(events, DropEvent(DropKind.TOOL_CALL_AT_START, i, msg.role))
                    continue
                prev = sanitized[-1]
                if prev.role not in (USER, TOOL):
                    _record(events, DropEvent(DropKind.TOOL_CALL_INVALID_PREDECESSOR, i, msg.role,
                                              prev_role=prev.role))
                    continue
            sanitized.append(msg)

        else:
            if msg.role == USER and sanitized and sanitized[-1].role == USER:
                # Keep only the latest of consecutive user turns
                _record(events, DropEvent(DropKind.MERGED_USER, i, USER))
                sanitized[-1] = msg
            else:
                sanitized.append(msg)

    return sanitized


def validate_tool_groups(messages: list[Message], events: list | None = None) -> list[Message]:
    """Pass 2: keep a tool-call turn only if all of its call IDs are answered.

    The tool results that follow a turn travel with it: a complete group is
    copied whole (extra results included), an incomplete one is dropped whole.
    A turn whose calls all have empty IDs can never be complete. User turns
    that end up adjacent after a drop are merged like in pass 1.
    """
    validated: list[Message] = []
    i = 0
    while i < len(messages):
        msg = messages[i]
        if not msg.has_tool_calls:
            if msg.role == USER and validated and validated[-1].role == USER:
                # A dropped group left two user turns side by side
                _record(events, DropEvent(DropKind.MERGED_USER, i, USER, stage="validate"))
                validated[-1] = msg
            else:
                validated.append(msg)
            i += 1
            continue

        expected = msg.call_ids
        j = i + 1
        found = set()
        while j < len(messages) and messages[j].role == TOOL:
            if messages[j].tool_call_id:
                found.add(messages[j].tool_call_id)
            j += 1

        if expected and expected <= found:
            validated.extend(messages[i:j])
        else:
            _record(events, DropEvent(DropKind.INCOMPLETE_TOOL_GROUP, i, msg.role, stage="validate",
                                      expected=len(expected), found=len(found), dropped=j - i))
        i = j

    return validated


def sanitize_history_with_report(history: list[Message]) -> SanitizeResult:
    """Run both passes and collect what was dropped."""
    events: list[DropEvent] = []
    if not history:
        return SanitizeResult(messages=[], events=events)
    filtered = filter_and_merge(history, events)
    result = SanitizeResult(messages=validate_tool_groups(filtered, events), events=events)
    if events:
        log.info(f"Sanitized history: {len(history)} -> {len(result.messages)} messages {result.summary()}")
    return result


def sanitize_history(history: list[Message]) -> list[Message]:
    """Return a copy of ``history`` that satisfies the tool-calling contract."""
    return sanitize_history_with_report(history).messages


# ── Wire-level helpers for request bodies ──


def has_tool_history(req_data: dict) -> bool:
    """Check if a request carries tool interactions in its message history."""
    for msg in req_data.get("messages") or []:
        if not isinstance(msg, dict):
            continue
        if msg.get("role") == TOOL or msg.get("tool_calls"):
            return True
    return False


def sanitize_request(req_data: dict) -> tuple[dict, SanitizeResult]:
    """Sanitize the ``messages`` of a chat-completions request body.

    Leading system messages belong to the request, not the history, and are
    put back in front untouched. Other request fields are preserved.
    Raises MessageFormatError if a message cannot be decoded.
    """
    result = req_data.copy()
    messages = messages_from_dicts(req_data.get("messages", []))

    head = 0
    while head < len(messages) and messages[head].role == SYSTEM:
        head += 1

    report = sanitize_history_with_report(messages[head:])
    result["messages"] = messages_to_dicts(messages[:head] + report.messages)
    return result, report
