"""File-scoped session operations built on the chain core.

Each operation reads whole logs through a ``SessionStore``, transforms records in
memory and writes whole files back. Refusals are returned as result models with
``success=False``; I/O failures propagate.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Literal, Optional, Sequence

from sessionkit import config
from sessionkit.chain import (
    auto_repair_chain,
    delete_message_with_chain_repair,
    repair_parent_uuid_chain,
    validate_chain,
    validate_session_records,
)
from sessionkit.chain.repair import DeleteTargetType
from sessionkit.date_utils import iso_to_epoch
from sessionkit.heuristics import is_invalid_api_key_message
from sessionkit.models import (
    AssistantRecord,
    BaseRecord,
    ChainRecord,
    CleanInvalidResult,
    CompressSessionResult,
    CustomTitleRecord,
    DeleteMessageResult,
    DeleteSessionResult,
    OperationResult,
    ProgressRecord,
    ProjectInfo,
    Record,
    RepairChainResult,
    SessionMeta,
    SnapshotRecord,
    SummaryInfo,
    SummaryRecord,
    TurnRecord,
    UserRecord,
    ValidationResult,
    chain_uuid,
    message_content,
)
from sessionkit.observability import record_chain_repair, record_operation, start_span
from sessionkit.parsers import dump_jsonl, parse_jsonl, parse_record
from sessionkit.store import SessionStore
from sessionkit.summaries import read_logs, sort_summaries

_logger = logging.getLogger("sessionkit")
_repair_logger = logging.getLogger("sessionkit.repair")

MESSAGE_NOT_FOUND = "Message not found"
SOURCE_NOT_FOUND = "Source session not found"
TARGET_EXISTS = "Session already exists in target project"
EMPTY_SESSION = "Empty session"
NO_MESSAGE_ID = "Message has no uuid or messageId"


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


# ── Listing ────────────────────────────────────────────────────────

def list_projects(store: SessionStore) -> list[ProjectInfo]:
    return [
        ProjectInfo(name=path.name, path=str(path), sessionCount=len(store.list_session_ids(path.name)))
        for path in store.list_project_dirs()
    ]


def count_messages(records: Sequence[BaseRecord]) -> int:
    """Conversation turns; a log holding only summaries counts as one message."""
    turns = sum(1 for record in records if isinstance(record, (UserRecord, AssistantRecord)))
    if turns:
        return turns
    return 1 if any(isinstance(record, SummaryRecord) for record in records) else 0


def build_session_meta(project: str, session_id: str, records: list[Record]) -> SessionMeta:
    turns = [record for record in records if isinstance(record, (UserRecord, AssistantRecord))]
    summaries = [record for record in records if isinstance(record, SummaryRecord)]
    custom_title = next(
        (
            record.customTitle
            for record in records
            if isinstance(record, CustomTitleRecord) and isinstance(record.customTitle, str) and record.customTitle
        ),
        None,
    )
    current_summary = summaries[0].summary if summaries else None
    return SessionMeta(
        id=session_id,
        projectName=project,
        customTitle=custom_title,
        currentSummary=current_summary if isinstance(current_summary, str) else None,
        messageCount=count_messages(records),
        createdAt=turns[0].iso_timestamp if turns else None,
        updatedAt=turns[-1].iso_timestamp if turns else None,
    )


async def list_sessions(
    store: SessionStore,
    project: str,
    *,
    limit: int = config.LIST_CONCURRENCY,
    logger: Optional[logging.Logger] = None,
) -> list[SessionMeta]:
    """One entry per primary log, newest ``updatedAt`` first."""
    with start_span("sessionkit.sessions.list", {"project": project}):
        logs = await read_logs(store, store.list_session_files(project), limit=limit, logger=logger)
    sessions = [
        build_session_meta(project, Path(name).stem, records)
        for name, records in logs.items()
    ]
    sessions.sort(key=lambda item: item.id)
    sessions.sort(key=lambda item: iso_to_epoch(item.updatedAt), reverse=True)
    return sessions


def read_session(store: SessionStore, project: str, session_id: str) -> list[Record]:
    return store.read_log(store.session_path(project, session_id))


def find_linked_agents(store: SessionStore, project: str, session_id: str) -> list[str]:
    """Root-level agent logs whose first record names ``session_id`` as owner."""
    linked: list[str] = []
    for path in store.list_agent_files(project):
        first = store.read_first_record(path)
        if first is not None and first.sessionId == session_id:
            linked.append(path.stem)
    return linked


# ── Validation and repair ──────────────────────────────────────────

def validate_session(store: SessionStore, project: str, session_id: str) -> ValidationResult:
    return validate_session_records(read_session(store, project, session_id))


def repair_session_chain(
    store: SessionStore,
    project: str,
    session_id: str,
    *,
    logger: Optional[logging.Logger] = None,
) -> RepairChainResult:
    log = logger or _repair_logger
    started = time.perf_counter()
    path = store.session_path(project, session_id)

    with start_span("sessionkit.repair_chain", {"project": project, "session": session_id}):
        records = store.read_log(path)
        validation = validate_chain(records)
        for error in validation.errors:
            log.warning(
                "%s/%s line %s: %s (uuid=%s parentUuid=%s)",
                project,
                session_id,
                error.line,
                error.type,
                error.uuid,
                error.parentUuid,
            )
        repaired, count = auto_repair_chain(records)
        if count:
            store.write_log(path, repaired)
            log.info("Repaired %d chain links in %s/%s", count, project, session_id)

    record_chain_repair("auto_repair", count, project_id=project)
    record_operation("repair_chain", "success", _elapsed_ms(started), project_id=project)
    return RepairChainResult(success=True, repairCount=count, errors=validation.errors)


def delete_message(
    store: SessionStore,
    project: str,
    session_id: str,
    target_id: str,
    target_type: Optional[DeleteTargetType] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> DeleteMessageResult:
    log = logger or _repair_logger
    started = time.perf_counter()
    path = store.session_path(project, session_id)

    with start_span("sessionkit.delete_message", {"project": project, "session": session_id}):
        records = store.read_log(path)
        outcome = delete_message_with_chain_repair(records, target_id, target_type)
        if outcome is None:
            record_operation("delete_message", "not_found", _elapsed_ms(started), project_id=project)
            return DeleteMessageResult(success=False, error=MESSAGE_NOT_FOUND)
        store.write_log(path, outcome.records)

    untouched = {id(record) for record in records}
    relinked = sum(1 for record in outcome.records if id(record) not in untouched)
    log.info(
        "Deleted %s from %s/%s (%d coupled, %d relinked)",
        target_id,
        project,
        session_id,
        len(outcome.also_deleted),
        relinked,
    )
    record_chain_repair("delete_message", relinked, project_id=project)
    record_operation("delete_message", "success", _elapsed_ms(started), project_id=project)
    return DeleteMessageResult(
        success=True,
        deletedMessage=outcome.deleted.to_wire(),
        alsoDeleted=[record.to_wire() for record in outcome.also_deleted],
    )


def restore_message(
    store: SessionStore,
    project: str,
    session_id: str,
    message: dict[str, Any],
    index: int,
    *,
    logger: Optional[logging.Logger] = None,
) -> OperationResult:
    """Put a deleted record back at ``index`` and re-point its former child to it."""
    log = logger or _repair_logger
    restored_id = message.get("uuid") or message.get("messageId")
    if not restored_id:
        return OperationResult(success=False, error=NO_MESSAGE_ID)

    path = store.session_path(project, session_id)
    records: list[BaseRecord] = list(store.read_log(path))
    restored = parse_record(message)

    if "parentUuid" in message:
        former_parent = message.get("parentUuid")
        for position, record in enumerate(records):
            if isinstance(record, ChainRecord) and record.has_parent_field and record.parentUuid == former_parent:
                records[position] = record.model_copy(update={"parentUuid": restored_id})
                break

    records.insert(max(0, min(index, len(records))), restored)
    store.write_log(path, records)
    log.info("Restored %s into %s/%s", restored_id, project, session_id)
    return OperationResult(success=True)


# ── Whole-session operations ───────────────────────────────────────

def move_session(
    store: SessionStore,
    source_project: str,
    session_id: str,
    target_project: str,
    *,
    logger: Optional[logging.Logger] = None,
) -> OperationResult:
    log = logger or _logger
    source = store.session_path(source_project, session_id)
    target = store.session_path(target_project, session_id)
    if not source.exists():
        return OperationResult(success=False, error=SOURCE_NOT_FOUND)
    if target.exists():
        return OperationResult(success=False, error=TARGET_EXISTS)

    target.parent.mkdir(parents=True, exist_ok=True)
    linked = find_linked_agents(store, source_project, session_id)
    source.rename(target)
    for name in linked:
        agent_source = store.project_dir(source_project) / f"{name}.jsonl"
        if agent_source.exists():
            agent_source.rename(store.project_dir(target_project) / agent_source.name)
    log.info(
        "Moved %s from %s to %s with %d agent logs",
        session_id,
        source_project,
        target_project,
        len(linked),
    )
    return OperationResult(success=True)


def move_linked_todos(store: SessionStore, session_id: str) -> int:
    """Back up the session's task list and its agents' task lists."""
    if not store.todos_dir.is_dir():
        return 0
    names = [f"{session_id}.json"]
    names.extend(path.name for path in sorted(store.todos_dir.glob(f"{session_id}-agent-*.json")))
    moved = 0
    for name in names:
        path = store.todos_dir / name
        if path.is_file():
            store.move_to_backup(path, store.todos_backup_dir)
            moved += 1
    return moved


def session_has_todos(store: SessionStore, session_id: str) -> bool:
    """True when the session or one of its agents has a non-empty task list.

    Task lists that are not valid JSON are ignored.
    """
    if not store.todos_dir.is_dir():
        return False
    paths = [store.todos_dir / f"{session_id}.json"]
    paths.extend(sorted(store.todos_dir.glob(f"{session_id}-agent-*.json")))
    for path in paths:
        if not path.is_file():
            continue
        try:
            items = json.loads(store.read_text(path))
        except ValueError:
            store.logger.debug("Ignoring unreadable task list %s", path)
            continue
        if isinstance(items, list) and items:
            return True
    return False


def delete_session(
    store: SessionStore,
    project: str,
    session_id: str,
    *,
    logger: Optional[logging.Logger] = None,
) -> DeleteSessionResult:
    """Back up a primary log together with its agent logs and task lists.

    A zero-byte log is unlinked instead of backed up.
    """
    log = logger or _logger
    path = store.session_path(project, session_id)
    linked = find_linked_agents(store, project, session_id)
    is_empty = path.stat().st_size == 0

    for name in linked:
        agent_path = store.project_dir(project) / f"{name}.jsonl"
        if agent_path.exists():
            store.move_to_backup(agent_path, store.project_backup_dir(project))
    deleted_todos = move_linked_todos(store, session_id)

    if is_empty:
        store.remove_file(path)
        log.info("Deleted empty session %s/%s with %d agent logs", project, session_id, len(linked))
        return DeleteSessionResult(success=True, deletedAgents=len(linked), deletedTodos=deleted_todos)

    backup = store.move_to_backup(path, store.sessions_backup_dir, f"{project}_{session_id}.jsonl")
    log.info("Deleted session %s/%s with %d agent logs (backup %s)", project, session_id, len(linked), backup.name)
    return DeleteSessionResult(
        success=True,
        backupPath=str(backup),
        deletedAgents=len(linked),
        deletedTodos=deleted_todos,
    )


async def rename_session(
    store: SessionStore,
    project: str,
    session_id: str,
    title: str,
    *,
    logger: Optional[logging.Logger] = None,
) -> OperationResult:
    """Store ``title`` as the session's custom title and as its displayed summary."""
    log = logger or _logger
    path = store.session_path(project, session_id)
    records: list[BaseRecord] = list(await asyncio.to_thread(store.read_log, path))
    if not records:
        return OperationResult(success=False, error=EMPTY_SESSION)

    title_record = parse_record({"type": "custom-title", "customTitle": title, "sessionId": session_id})
    position = next((i for i, record in enumerate(records) if isinstance(record, CustomTitleRecord)), None)
    if position is None:
        records.insert(0, title_record)
    else:
        records[position] = title_record
    await asyncio.to_thread(store.write_log, path, records)

    timestamps: dict[str, Optional[str]] = {}
    for record in records:
        uuid = chain_uuid(record)
        if uuid and uuid not in timestamps:
            timestamps[uuid] = record.iso_timestamp

    logs = await read_logs(store, store.list_log_files(project), logger=log)
    candidates: list[SummaryInfo] = []
    positions: dict[int, int] = {}
    for source_file in sorted(logs):
        for index, record in enumerate(logs[source_file]):
            if not isinstance(record, SummaryRecord) or record.leafUuid not in timestamps:
                continue
            target_timestamp = timestamps[record.leafUuid]
            info = SummaryInfo(
                summary=record.summary if isinstance(record.summary, str) else "",
                leafUuid=record.leafUuid,
                timestamp=target_timestamp if target_timestamp is not None else record.iso_timestamp,
                sourceFile=source_file,
            )
            positions[id(info)] = index
            candidates.append(info)

    if not candidates:
        log.info("Renamed %s/%s (custom title only)", project, session_id)
        return OperationResult(success=True)

    displayed = sort_summaries(candidates)[0]
    summary_path = store.project_dir(project) / displayed.sourceFile
    summary_records: list[BaseRecord] = list(await asyncio.to_thread(store.read_log, summary_path))
    index = positions[id(displayed)]
    summary_records[index] = summary_records[index].model_copy(update={"summary": title})
    await asyncio.to_thread(store.write_log, summary_path, summary_records)
    log.info("Renamed %s/%s (summary in %s)", project, session_id, displayed.sourceFile)
    return OperationResult(success=True)


# ── Compaction ─────────────────────────────────────────────────────

SnapshotPolicy = Literal["all", "first_last", "none"]
TRUNCATED_SUFFIX = "\n... [truncated]"


def _truncate_tool_results(record: BaseRecord, max_length: int) -> tuple[BaseRecord, int]:
    content = message_content(record.message) if isinstance(record, TurnRecord) else None
    if not isinstance(content, list):
        return record, 0
    truncated = 0
    shortened: list[Any] = []
    for item in content:
        output = item.get("content") if isinstance(item, dict) and item.get("type") == "tool_result" else None
        if isinstance(output, str) and len(output) > max_length:
            item = {**item, "content": output[:max_length] + TRUNCATED_SUFFIX}
            truncated += 1
        shortened.append(item)
    if not truncated:
        return record, 0
    return record.model_copy(update={"message": {**record.message, "content": shortened}}), truncated


def compress_session(
    store: SessionStore,
    project: str,
    session_id: str,
    *,
    keep_snapshots: SnapshotPolicy = "first_last",
    max_tool_output_length: int = config.MAX_TOOL_OUTPUT_LENGTH,
    logger: Optional[logging.Logger] = None,
) -> CompressSessionResult:
    """Shrink a log by dropping noise records and truncating long tool output.

    Progress records and all but the last custom title are removed; snapshot
    markers are kept per ``keep_snapshots``. Records whose parent was removed are
    relinked to the nearest surviving ancestor. Sizes are UTF-8 byte counts.
    """
    if keep_snapshots not in ("all", "first_last", "none"):
        raise ValueError(f"Unknown snapshot policy: {keep_snapshots!r}")
    log = logger or _repair_logger
    started = time.perf_counter()
    path = store.session_path(project, session_id)

    with start_span("sessionkit.compress", {"project": project, "session": session_id}):
        original = store.read_text(path)
        records = parse_jsonl(original, path, logger=store.logger)

        progress = [index for index, record in enumerate(records) if isinstance(record, ProgressRecord)]
        titles = [index for index, record in enumerate(records) if isinstance(record, CustomTitleRecord)]
        snapshots = [index for index, record in enumerate(records) if isinstance(record, SnapshotRecord)]
        drop = set(progress) | set(titles[:-1])
        if keep_snapshots == "none":
            dropped_snapshots = snapshots
        elif keep_snapshots == "first_last":
            dropped_snapshots = snapshots[1:-1]
        else:
            dropped_snapshots = []
        drop.update(dropped_snapshots)

        removed = [records[index] for index in sorted(drop)]
        kept = repair_parent_uuid_chain([r for i, r in enumerate(records) if i not in drop], removed)
        compressed: list[BaseRecord] = []
        truncated = 0
        for record in kept:
            record, count = _truncate_tool_results(record, max_tool_output_length)
            truncated += count
            compressed.append(record)

        content = dump_jsonl(compressed)
        store.write_text(path, content)

    result = CompressSessionResult(
        success=True,
        originalSize=len(original.encode("utf-8")),
        compressedSize=len(content.encode("utf-8")),
        removedCustomTitles=max(0, len(titles) - 1),
        removedProgress=len(progress),
        removedSnapshots=len(dropped_snapshots),
        truncatedOutputs=truncated,
    )
    log.info(
        "Compressed %s/%s from %d to %d bytes (%d records removed, %d outputs truncated)",
        project,
        session_id,
        result.originalSize,
        result.compressedSize,
        len(removed),
        truncated,
    )
    record_operation("compress", "success", _elapsed_ms(started), project_id=project)
    return result


def clean_invalid_messages(
    store: SessionStore,
    project: str,
    session_id: str,
    *,
    logger: Optional[logging.Logger] = None,
) -> CleanInvalidResult:
    """Drop turns recording a failed request on a bad API key, relinking past them.

    ``remainingCount`` follows the listing's message count.
    """
    log = logger or _repair_logger
    path = store.session_path(project, session_id)
    records = store.read_log(path)
    invalid = [record for record in records if is_invalid_api_key_message(record)]
    if not invalid:
        return CleanInvalidResult(success=True, remainingCount=count_messages(records))

    dropped = {id(record) for record in invalid}
    kept = repair_parent_uuid_chain([record for record in records if id(record) not in dropped], invalid)
    store.write_log(path, kept)
    log.info("Removed %d invalid API key messages from %s/%s", len(invalid), project, session_id)
    return CleanInvalidResult(success=True, removedCount=len(invalid), remainingCount=count_messages(kept))
