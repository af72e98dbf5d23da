"""Validators for record linkage within one session log.

All three validators are pure and report findings as data. Line numbers are
1-based positions in the record sequence.

Chain rules:
- snapshot markers and summaries never take part in the chain;
- the first identity-bearing record may have a ``null`` or dangling parent
  (start of log or post-compaction restart), but not a missing one;
- every later identity-bearing record must point at a ``uuid`` present in the log.
"""
from __future__ import annotations

from typing import Sequence

from sessionkit.models import (
    BaseRecord,
    ChainError,
    ChainRecord,
    ProgressError,
    ProgressRecord,
    ToolResultBlock,
    ToolResultError,
    ToolUseBlock,
    TurnRecord,
    ValidationResult,
    chain_uuid,
)

# Progress events that only add noise to a log and are safe to drop.
UNWANTED_HOOK_EVENTS = {"Stop"}
UNWANTED_HOOK_NAMES = {"SessionStart:resume"}


def collect_uuids(records: Sequence[BaseRecord]) -> set[str]:
    uuids: set[str] = set()
    for record in records:
        uuid = chain_uuid(record)
        if uuid:
            uuids.add(uuid)
    return uuids


def tool_use_ids(record: BaseRecord) -> list[str]:
    if not isinstance(record, TurnRecord):
        return []
    return [block.id for block in record.blocks() if isinstance(block, ToolUseBlock) and block.id]


def tool_result_ids(record: BaseRecord) -> list[str]:
    if not isinstance(record, TurnRecord):
        return []
    return [
        block.tool_use_id
        for block in record.blocks()
        if isinstance(block, ToolResultBlock) and block.tool_use_id
    ]


def validate_chain(records: Sequence[BaseRecord]) -> ValidationResult:
    uuids = collect_uuids(records)
    errors: list[ChainError] = []
    found_first = False

    for index, record in enumerate(records):
        if not isinstance(record, ChainRecord) or not record.uuid:
            continue
        uuid = record.uuid

        if not found_first:
            found_first = True
            if not record.has_parent_field:
                errors.append(ChainError(type="broken_chain", uuid=uuid, line=index + 1, parentUuid=None))
            continue

        if record.parentUuid is None:
            errors.append(ChainError(type="broken_chain", uuid=uuid, line=index + 1, parentUuid=None))
        elif record.parentUuid not in uuids:
            errors.append(
                ChainError(type="orphan_parent", uuid=uuid, line=index + 1, parentUuid=record.parentUuid)
            )

    return ValidationResult(valid=not errors, errors=errors)


def validate_tool_use_result(records: Sequence[BaseRecord]) -> ValidationResult:
    """Flag tool results whose tool_use id never appears anywhere in the same log."""
    known: set[str] = set()
    for record in records:
        known.update(tool_use_ids(record))

    errors: list[ToolResultError] = []
    for index, record in enumerate(records):
        for tool_use_id in tool_result_ids(record):
            if tool_use_id not in known:
                errors.append(
                    ToolResultError(
                        uuid=chain_uuid(record) or "",
                        line=index + 1,
                        toolUseId=tool_use_id,
                    )
                )
    return ValidationResult(valid=not errors, errors=errors)


def validate_progress_messages(records: Sequence[BaseRecord]) -> ValidationResult:
    errors: list[ProgressError] = []
    for index, record in enumerate(records):
        if not isinstance(record, ProgressRecord):
            continue
        hook_event = record.hook_event()
        hook_name = record.hook_name()
        if hook_event in UNWANTED_HOOK_EVENTS or hook_name in UNWANTED_HOOK_NAMES:
            errors.append(ProgressError(line=index + 1, hookEvent=hook_event, hookName=hook_name))
    return ValidationResult(valid=not errors, errors=errors)


def validate_session_records(records: Sequence[BaseRecord]) -> ValidationResult:
    """Run every validator and merge their findings in validator order."""
    results = (
        validate_chain(records),
        validate_tool_use_result(records),
        validate_progress_messages(records),
    )
    errors = [error for result in results for error in result.errors]
    return ValidationResult(valid=not errors, errors=errors)
