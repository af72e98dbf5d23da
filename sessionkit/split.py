"""Split one session log into two at a chosen record."""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from sessionkit.chain.validation import collect_uuids, tool_result_ids, tool_use_ids
from sessionkit.heuristics import cleanup_split_first_message, is_continuation_summary
from sessionkit.models import (
    BaseRecord,
    ChainRecord,
    SplitSessionResult,
    SummaryRecord,
    TurnRecord,
    chain_uuid,
    message_content,
)
from sessionkit.observability import start_span
from sessionkit.store import SessionStore, agent_id_from_path

_logger = logging.getLogger("sessionkit.split")

MESSAGE_NOT_FOUND = "Message not found"
CANNOT_SPLIT_AT_FIRST = "Cannot split at first message"


@dataclass
class SplitPlan:
    """Outcome of partitioning a log in memory.

    ``newer`` starts at the split record and stays in the original log. ``older``
    holds everything before it and goes to a new log, stamped with the new
    session id. A record whose parent ended up in the other log is relinked to
    the previous record on its own side, and a tool result whose request moved
    away is rewritten as a text block.
    """

    error: Optional[str] = None
    newer: list[BaseRecord] = field(default_factory=list)
    older: list[BaseRecord] = field(default_factory=list)
    moved_count: int = 0
    duplicated_continuation: bool = False
    moved_agent_ids: set[str] = field(default_factory=set)
    relinked_count: int = 0
    detached_results: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def _new_uuid() -> str:
    return str(uuid.uuid4())


def _result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            item["text"]
            for item in content
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)
        )
    return "" if content is None else json.dumps(content, ensure_ascii=False)


def detach_tool_results(records: Sequence[BaseRecord]) -> tuple[list[BaseRecord], int]:
    """Rewrite tool results whose request is not in ``records`` as text blocks.

    Returns the new list and the number of blocks rewritten.
    """
    requested = {tool_use_id for record in records for tool_use_id in tool_use_ids(record)}
    result: list[BaseRecord] = []
    count = 0
    for record in records:
        if not isinstance(record, TurnRecord) or set(tool_result_ids(record)) <= requested:
            result.append(record)
            continue
        content = []
        for item in message_content(record.message):
            is_result = isinstance(item, dict) and item.get("type") == "tool_result"
            tool_use_id = item.get("tool_use_id") if is_result else None
            if isinstance(tool_use_id, str) and tool_use_id and tool_use_id not in requested:
                item = {"type": "text", "text": _result_text(item.get("content"))}
                count += 1
            content.append(item)
        result.append(record.model_copy(update={"message": {**record.message, "content": content}}))
    return result, count


def relink_across(records: Sequence[BaseRecord], elsewhere: set[str]) -> tuple[list[BaseRecord], int]:
    """Point records whose parent lives in the other partition at the previous record here.

    A record with no earlier identity-bearing record becomes a ``null`` root.
    """
    result: list[BaseRecord] = []
    count = 0
    last_uuid: Optional[str] = None
    for record in records:
        if isinstance(record, ChainRecord) and record.uuid:
            if record.parentUuid is not None and record.parentUuid in elsewhere:
                record = record.model_copy(update={"parentUuid": last_uuid})
                count += 1
            last_uuid = record.uuid
        result.append(record)
    return result, count


def plan_split(
    records: Sequence[BaseRecord],
    split_at: str,
    new_session_id: str,
    *,
    make_uuid: Callable[[], str] = _new_uuid,
) -> SplitPlan:
    split_index = next(
        (index for index, record in enumerate(records) if isinstance(record, ChainRecord) and record.uuid == split_at),
        -1,
    )
    if split_index == -1:
        return SplitPlan(error=MESSAGE_NOT_FOUND)
    if split_index == 0:
        return SplitPlan(error=CANNOT_SPLIT_AT_FIRST)

    split_record = records[split_index]
    duplicate = is_continuation_summary(split_record)

    # Newer partition: new chain root, original session id.
    head = split_record.model_copy(update={"parentUuid": None})
    newer = [cleanup_split_first_message(head), *records[split_index + 1:]]

    before = list(records[:split_index])
    if duplicate:
        before.append(split_record.model_copy(update={"uuid": make_uuid()}))
    older = [record.model_copy(update={"sessionId": new_session_id}) for record in before]

    # Neither log may point into the other one.
    newer_ids, older_ids = collect_uuids(newer), collect_uuids(older)
    newer, relinked_newer = relink_across(newer, older_ids - newer_ids)
    older, relinked_older = relink_across(older, newer_ids - older_ids)
    newer, detached_newer = detach_tool_results(newer)
    older, detached_older = detach_tool_results(older)

    summaries = [record for record in records if isinstance(record, SummaryRecord)]
    if summaries:
        leaf = next((chain_uuid(record) for record in older if chain_uuid(record)), None)
        clone = summaries[-1].model_copy(update={"leafUuid": leaf, "sessionId": new_session_id})
        older.insert(0, clone)

    moved_agent_ids = {
        agent_id for agent_id in (getattr(record, "agentId", None) for record in before)
        if isinstance(agent_id, str) and agent_id
    }
    return SplitPlan(
        newer=newer,
        older=older,
        moved_count=len(before),
        duplicated_continuation=duplicate,
        moved_agent_ids=moved_agent_ids,
        relinked_count=relinked_newer + relinked_older,
        detached_results=detached_newer + detached_older,
    )


def reattach_agent_logs(
    store: SessionStore,
    project: str,
    session_id: str,
    new_session_id: str,
    agent_ids: set[str],
    *,
    logger: Optional[logging.Logger] = None,
) -> list[str]:
    """Re-own root-level agent logs of ``session_id`` that belong to the moved records."""
    log = logger or _logger
    reattached: list[str] = []
    if not agent_ids:
        return reattached
    for path in store.list_agent_files(project):
        agent_id = agent_id_from_path(path)
        if agent_id not in agent_ids:
            continue
        first = store.read_first_record(path)
        if first is None or first.sessionId != session_id:
            continue
        records = store.read_log(path)
        store.write_log(path, [record.model_copy(update={"sessionId": new_session_id}) for record in records])
        reattached.append(agent_id)
        log.info("Reattached agent log %s to session %s", path.name, new_session_id)
    return reattached


def split_session(
    store: SessionStore,
    project: str,
    session_id: str,
    split_at: str,
    *,
    logger: Optional[logging.Logger] = None,
) -> SplitSessionResult:
    log = logger or _logger
    path = store.session_path(project, session_id)
    with start_span("sessionkit.split", {"project": project, "session": session_id}):
        records = store.read_log(path)
        new_session_id = _new_uuid()
        plan = plan_split(records, split_at, new_session_id)
        if not plan.ok:
            log.info("Split of %s/%s at %s refused: %s", project, session_id, split_at, plan.error)
            return SplitSessionResult(success=False, error=plan.error)

        new_path = store.session_path(project, new_session_id)
        store.write_log(path, plan.newer)
        store.write_log(new_path, plan.older)
        reattach_agent_logs(store, project, session_id, new_session_id, plan.moved_agent_ids, logger=log)

    log.info(
        "Split %s/%s at %s: %d records moved to %s, %d parents relinked, %d tool results detached",
        project,
        session_id,
        split_at,
        plan.moved_count,
        new_session_id,
        plan.relinked_count,
        plan.detached_results,
    )
    return SplitSessionResult(
        success=True,
        newSessionId=new_session_id,
        newSessionPath=str(new_path),
        movedMessageCount=plan.moved_count,
        duplicatedSummary=plan.duplicated_continuation,
    )
