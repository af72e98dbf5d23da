"""Detection and cleanup of agent logs and task lists whose session is gone.

Agent logs declare their owning session in the ``sessionId`` of their first
record. An agent log is orphaned when that session has no primary log in the
same project. Task lists are keyed by session id in their file name and are
orphaned when no project holds a primary log with that id.
"""
from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Optional

from sessionkit import config
from sessionkit.models import (
    OrphanAgent,
    OrphanAgentCleanupResult,
    OrphanCleanupResult,
    OrphanPreview,
    OrphanTodoCleanupResult,
)
from sessionkit.observability import record_orphan_cleanup, start_span
from sessionkit.parsers import count_nonempty_lines, try_parse_line
from sessionkit.store import SessionStore

_logger = logging.getLogger("sessionkit.orphans")

TODO_FILE_RE = re.compile(r"^([a-f0-9-]+)(?:-agent-[a-f0-9]+)?\.json$")


def _inspect_agent_file(
    path: Path,
    session_ids: set[str],
    logger: logging.Logger,
) -> Optional[OrphanAgent]:
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Skipping unreadable agent log %s: %s", path, exc)
        return None

    lines = [(number, line) for number, line in enumerate(content.splitlines(), start=1) if line.strip()]
    if not lines:
        return None
    first = try_parse_line(lines[0][1], lines[0][0], path, logger)
    owner = first.sessionId if first is not None else None
    if not owner or owner in session_ids:
        return None
    return OrphanAgent(
        agentId=path.stem,
        sessionId=owner,
        filePath=str(path),
        lineCount=count_nonempty_lines(content),
    )


async def find_orphan_agents(
    store: SessionStore,
    project: str,
    *,
    limit: int = config.SCAN_CONCURRENCY,
    logger: Optional[logging.Logger] = None,
) -> list[OrphanAgent]:
    """Agent logs at the project root or under ``<session>/subagents`` with no owning session."""
    log = logger or _logger
    session_ids = set(store.list_session_ids(project))
    candidates = store.list_agent_files(project) + store.list_subagent_files(project)
    semaphore = asyncio.Semaphore(max(1, limit))

    async def inspect(path: Path) -> Optional[OrphanAgent]:
        async with semaphore:
            return await asyncio.to_thread(_inspect_agent_file, path, session_ids, log)

    results = await asyncio.gather(*(inspect(path) for path in candidates))
    return [orphan for orphan in results if orphan is not None]


async def delete_orphan_agents(
    store: SessionStore,
    project: str,
    *,
    delete_max_lines: int = config.ORPHAN_DELETE_MAX_LINES,
    logger: Optional[logging.Logger] = None,
) -> OrphanAgentCleanupResult:
    """Delete handshake-only orphans outright and back up the rest.

    Subagent folders left empty afterwards are removed along with their
    session folder when that is empty too.
    """
    log = logger or _logger
    orphans = await find_orphan_agents(store, project, logger=log)
    result = OrphanAgentCleanupResult(success=True)
    folders_to_check: list[Path] = []

    for orphan in orphans:
        path = Path(orphan.filePath)
        if path.parent.name == config.SUBAGENTS_DIR_NAME and path.parent not in folders_to_check:
            folders_to_check.append(path.parent)

        if orphan.lineCount <= delete_max_lines:
            store.remove_file(path)
            result.deletedAgents.append(orphan.agentId)
        else:
            store.move_to_backup(path, store.project_backup_dir(project), f"{orphan.agentId}.jsonl")
            result.backedUpAgents.append(orphan.agentId)

    for subagents_dir in folders_to_check:
        if store.remove_dir_if_empty(subagents_dir):
            result.cleanedFolders.append(str(subagents_dir))
            if store.remove_dir_if_empty(subagents_dir.parent):
                result.cleanedFolders.append(str(subagents_dir.parent))

    result.deletedCount = len(result.deletedAgents)
    result.backedUpCount = len(result.backedUpAgents)
    result.cleanedFolderCount = len(result.cleanedFolders)
    result.count = result.deletedCount + result.backedUpCount

    record_orphan_cleanup("agent", "deleted", result.deletedCount, project_id=project)
    record_orphan_cleanup("agent", "backed_up", result.backedUpCount, project_id=project)
    if result.count:
        log.info(
            "Orphan agents in %s: %d deleted, %d backed up, %d folders removed",
            project,
            result.deletedCount,
            result.backedUpCount,
            result.cleanedFolderCount,
        )
    return result


def find_orphan_todos(store: SessionStore) -> list[str]:
    """Task-list file names whose session id has no primary log in any project."""
    if not store.todos_dir.is_dir() or not store.sessions_dir.is_dir():
        return []
    valid_ids: set[str] = set()
    for project_dir in store.list_project_dirs():
        valid_ids.update(store.list_session_ids(project_dir.name))

    orphans: list[str] = []
    for path in store.list_todo_files():
        match = TODO_FILE_RE.match(path.name)
        if match and match.group(1) not in valid_ids:
            orphans.append(path.name)
    return orphans


def delete_orphan_todos(
    store: SessionStore,
    *,
    logger: Optional[logging.Logger] = None,
) -> OrphanTodoCleanupResult:
    log = logger or _logger
    result = OrphanTodoCleanupResult(success=True)
    for name in find_orphan_todos(store):
        store.move_to_backup(store.todos_dir / name, store.todos_backup_dir)
        result.backedUpTodos.append(name)
    result.backedUpCount = len(result.backedUpTodos)
    record_orphan_cleanup("todo", "backed_up", result.backedUpCount, project_id="")
    if result.backedUpCount:
        log.info("Backed up %d orphan task lists", result.backedUpCount)
    return result


def target_projects(store: SessionStore, project: Optional[str]) -> list[str]:
    names = [path.name for path in store.list_project_dirs()]
    if project is None:
        return names
    return [name for name in names if name == project]


async def preview_orphans(
    store: SessionStore,
    project: Optional[str] = None,
    *,
    logger: Optional[logging.Logger] = None,
) -> list[OrphanPreview]:
    """Per-project orphan listing. Task lists are global and reported on the first entry only."""
    previews: list[OrphanPreview] = []
    with start_span("sessionkit.orphans.preview", {"project": project}):
        for name in target_projects(store, project):
            agents = await find_orphan_agents(store, name, logger=logger)
            previews.append(OrphanPreview(project=name, orphanAgents=agents))
        if previews:
            previews[0].orphanTodos = find_orphan_todos(store)
    return previews


async def cleanup_orphans(
    store: SessionStore,
    project: Optional[str] = None,
    *,
    agents: bool = True,
    todos: bool = False,
    logger: Optional[logging.Logger] = None,
) -> OrphanCleanupResult:
    result = OrphanCleanupResult(success=True)
    with start_span("sessionkit.orphans.cleanup", {"project": project}):
        if agents:
            for name in target_projects(store, project):
                agent_result = await delete_orphan_agents(store, name, logger=logger)
                result.agents[name] = agent_result
                result.deletedOrphanAgentCount += agent_result.count
        if todos:
            result.todos = delete_orphan_todos(store, logger=logger)
            result.deletedOrphanTodoCount = result.todos.backedUpCount
    return result
