"""Bulk cleanup of empty and failed sessions across projects.

A session is empty when the listing counts no messages for it. A session is
invalid when it holds turns recording a request that failed on a bad API key;
clearing removes those turns first and deletes the session only if nothing else
is left. Orphan agent logs and task lists are cleared in the same pass.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from sessionkit.heuristics import is_invalid_api_key_message
from sessionkit.models import CleanupPreview, ClearSessionsResult
from sessionkit.observability import record_operation, start_span
from sessionkit.orphans import (
    delete_orphan_agents,
    delete_orphan_todos,
    find_orphan_agents,
    find_orphan_todos,
    target_projects,
)
from sessionkit.parsers import LogParseError
from sessionkit.sessions import (
    build_session_meta,
    clean_invalid_messages,
    delete_session,
    list_sessions,
    session_has_todos,
)
from sessionkit.store import SessionStore
from sessionkit.summaries import read_logs

_logger = logging.getLogger("sessionkit.orphans")


async def preview_cleanup(
    store: SessionStore,
    project: Optional[str] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> list[CleanupPreview]:
    """Per-project counts of what ``clear_sessions`` would remove.

    Task lists are global and counted on the first entry only.
    """
    previews: list[CleanupPreview] = []
    with start_span("sessionkit.cleanup.preview", {"project": project}):
        for name in target_projects(store, project):
            preview = CleanupPreview(project=name)
            logs = await read_logs(store, store.list_session_files(name), logger=logger)
            for source_file in sorted(logs):
                session_id = Path(source_file).stem
                records = logs[source_file]
                meta = build_session_meta(name, session_id, records)
                if meta.messageCount == 0:
                    preview.emptySessions.append(meta)
                    if session_has_todos(store, session_id):
                        preview.emptyWithTodosCount += 1
                elif any(is_invalid_api_key_message(record) for record in records):
                    preview.invalidSessions.append(meta)
            preview.orphanAgentCount = len(await find_orphan_agents(store, name, logger=logger))
            previews.append(preview)
        if previews:
            previews[0].orphanTodoCount = len(find_orphan_todos(store))
    return previews


async def clear_sessions(
    store: SessionStore,
    project: Optional[str] = None,
    *,
    clear_empty: bool = True,
    clear_invalid: bool = True,
    skip_with_todos: bool = True,
    clear_orphan_agents: bool = True,
    clear_orphan_todos: bool = False,
    logger: Optional[logging.Logger] = None,
) -> ClearSessionsResult:
    """Delete empty and invalid sessions, then orphan agent logs and task lists.

    Deleted sessions are backed up the same way ``delete_session`` does it.
    Empty sessions that still own a non-empty task list are kept when
    ``skip_with_todos`` is set. A log that cannot be parsed is skipped.
    """
    log = logger or _logger
    started = time.perf_counter()
    result = ClearSessionsResult(success=True)

    with start_span("sessionkit.cleanup.clear", {"project": project}):
        for name in target_projects(store, project):
            doomed: list[str] = []
            if clear_invalid:
                for session_id in store.list_session_ids(name):
                    try:
                        cleaned = await asyncio.to_thread(clean_invalid_messages, store, name, session_id, logger=log)
                    except LogParseError as exc:
                        log.warning("Skipping unparseable session %s/%s: %s", name, session_id, exc)
                        continue
                    result.removedMessageCount += cleaned.removedCount
                    if cleaned.removedCount and cleaned.remainingCount == 0:
                        doomed.append(session_id)

            if clear_empty:
                for meta in await list_sessions(store, name, logger=log):
                    if meta.messageCount or meta.id in doomed:
                        continue
                    if skip_with_todos and session_has_todos(store, meta.id):
                        log.info("Keeping empty session %s/%s with task lists", name, meta.id)
                        continue
                    doomed.append(meta.id)

            for session_id in doomed:
                await asyncio.to_thread(delete_session, store, name, session_id, logger=log)
                result.deletedCount += 1

            if clear_orphan_agents:
                agents = await delete_orphan_agents(store, name, logger=log)
                result.deletedOrphanAgentCount += agents.count

        if clear_orphan_todos:
            todos = await asyncio.to_thread(delete_orphan_todos, store, logger=log)
            result.deletedOrphanTodoCount = todos.backedUpCount

    log.info(
        "Cleared %d sessions, %d invalid messages, %d orphan agent logs, %d orphan task lists",
        result.deletedCount,
        result.removedMessageCount,
        result.deletedOrphanAgentCount,
        result.deletedOrphanTodoCount,
    )
    record_operation("clear_sessions", "success", (time.perf_counter() - started) * 1000.0, project_id=project or "")
    return result
