"""Cleanup API: orphan agent logs, task lists and empty or failed sessions."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from sessionkit.cleanup import clear_sessions, preview_cleanup
from sessionkit.models import CleanupPreview, ClearSessionsResult, OrphanCleanupResult, OrphanPreview
from sessionkit.orphans import cleanup_orphans, preview_orphans
from sessionkit.routers.sessions import file_errors, get_store

logger = logging.getLogger("sessionkit.api")

cleanup_router = APIRouter(prefix="/api/cleanup", tags=["cleanup"])


class OrphanCleanupRequest(BaseModel):
    project: Optional[str] = None
    agents: bool = True
    todos: bool = False


class ClearSessionsRequest(BaseModel):
    project: Optional[str] = None
    clearEmpty: bool = True
    clearInvalid: bool = True
    skipWithTodos: bool = True
    clearOrphanAgents: bool = True
    clearOrphanTodos: bool = False


@cleanup_router.get("/preview", response_model=list[OrphanPreview])
async def preview(request: Request, project: Optional[str] = Query(None, description="Limit to one project")):
    with file_errors(f"Project {project}"):
        return await preview_orphans(get_store(request), project)


@cleanup_router.post("/orphans", response_model=OrphanCleanupResult)
async def cleanup(request: Request, body: OrphanCleanupRequest):
    with file_errors(f"Project {body.project}"):
        result = await cleanup_orphans(get_store(request), body.project, agents=body.agents, todos=body.todos)
    logger.info(
        "Orphan cleanup: %d agent logs, %d task lists",
        result.deletedOrphanAgentCount,
        result.deletedOrphanTodoCount,
    )
    return result


@cleanup_router.get("/sessions/preview", response_model=list[CleanupPreview])
async def preview_sessions(request: Request, project: Optional[str] = Query(None, description="Limit to one project")):
    with file_errors(f"Project {project}"):
        return await preview_cleanup(get_store(request), project)


@cleanup_router.post("/sessions/clear", response_model=ClearSessionsResult)
async def clear(request: Request, body: ClearSessionsRequest):
    with file_errors(f"Project {body.project}"):
        result = await clear_sessions(
            get_store(request),
            body.project,
            clear_empty=body.clearEmpty,
            clear_invalid=body.clearInvalid,
            skip_with_todos=body.skipWithTodos,
            clear_orphan_agents=body.clearOrphanAgents,
            clear_orphan_todos=body.clearOrphanTodos,
        )
    logger.info("Session cleanup removed %d sessions", result.deletedCount)
    return result
