"""Text-pattern checks on record content.

These only classify records; chain handling never depends on them beyond the
boolean answers used when splitting a session or clearing failed turns.
"""
from __future__ import annotations

from typing import Any

from sessionkit.models import BaseRecord, TurnRecord, UserRecord, message_content

CONTINUATION_PREFIX = "This session is being continued from"
REJECTION_MARKER = "The user provided the following reason for the rejection:"
INVALID_API_KEY_MARKER = "Invalid API key"


def extract_text_content(message: Any) -> str:
    content = message_content(message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            item["text"]
            for item in content
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)
        )
    return ""


def is_continuation_summary(record: BaseRecord) -> bool:
    """True for the user turn that opens a session resumed from a compacted context."""
    if getattr(record, "isCompactSummary", None) is True:
        return True
    if not isinstance(record, UserRecord):
        return False
    return extract_text_content(record.message).startswith(CONTINUATION_PREFIX)


def is_invalid_api_key_message(record: BaseRecord) -> bool:
    """True for the canned turn written when a request failed on a bad API key."""
    if not isinstance(record, TurnRecord):
        return False
    return INVALID_API_KEY_MARKER in extract_text_content(record.message)


def rejection_reason(record: BaseRecord) -> str:
    """Return the user's stated reason when the record is a tool rejection, else ''."""
    if not isinstance(record, TurnRecord) or not isinstance(record.toolUseResult, str):
        return ""
    index = record.toolUseResult.find(REJECTION_MARKER)
    if index == -1:
        return ""
    return record.toolUseResult[index + len(REJECTION_MARKER):].strip()


def cleanup_split_first_message(record: BaseRecord) -> BaseRecord:
    """Rewrite a rejection turn as a plain text turn carrying the rejection reason."""
    text = rejection_reason(record)
    if not text:
        return record
    data = record.to_wire()
    data.pop("toolUseResult", None)
    message = data.get("message") if isinstance(data.get("message"), dict) else {}
    data["message"] = {**message, "content": [{"type": "text", "text": text}]}
    return type(record).model_validate(data)
