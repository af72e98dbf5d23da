"""Session log API: listing, reading, validation, repair and restructuring."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Literal, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from sessionkit import config
from sessionkit import sessions as ops
from sessionkit.models import (
    CompressSessionResult,
    DeleteMessageResult,
    DeleteSessionResult,
    OperationResult,
    ProjectInfo,
    RepairChainResult,
    SessionMeta,
    SplitSessionResult,
    SummaryInfo,
    ValidationResult,
)
from sessionkit.parsers import LogParseError
from sessionkit.split import split_session as split_session_op
from sessionkit.store import SessionStore
from sessionkit.summaries import get_session_summaries, load_project_summaries

logger = logging.getLogger("sessionkit.api")

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])


class RestoreMessageRequest(BaseModel):
    message: dict[str, Any]
    index: int = Field(0, ge=0)


class SplitRequest(BaseModel):
    splitAt: str = Field(..., min_length=1)


class MoveRequest(BaseModel):
    targetProject: str = Field(..., min_length=1)


class RenameRequest(BaseModel):
    title: str = Field(..., min_length=1)


class CompressRequest(BaseModel):
    keepSnapshots: Literal["all", "first_last", "none"] = "first_last"
    maxToolOutputLength: int = Field(config.MAX_TOOL_OUTPUT_LENGTH, ge=1)


def get_store(request: Request) -> SessionStore:
    store = getattr(request.app.state, "session_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Session store not initialized")
    return store


@contextmanager
def file_errors(what: str):
    """Translate store failures into HTTP errors."""
    try:
        yield
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"{what} not found") from exc
    except LogParseError as exc:
        logger.warning("Unparseable log: %s", exc)
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@sessions_router.get("/projects", response_model=list[ProjectInfo])
def list_projects(request: Request):
    return ops.list_projects(get_store(request))


@sessions_router.get("/{project}", response_model=list[SessionMeta])
async def list_sessions(request: Request, project: str):
    store = get_store(request)
    with file_errors(f"Project {project}"):
        if not store.project_dir(project).is_dir():
            raise FileNotFoundError(project)
        return await ops.list_sessions(store, project)


@sessions_router.get("/{project}/summaries", response_model=dict[str, list[SummaryInfo]])
async def project_summaries(request: Request, project: str):
    store = get_store(request)
    with file_errors(f"Project {project}"):
        if not store.project_dir(project).is_dir():
            raise FileNotFoundError(project)
        return await load_project_summaries(store, project)


@sessions_router.get("/{project}/{session_id}")
def read_session(request: Request, project: str, session_id: str) -> list[dict[str, Any]]:
    with file_errors(f"Session {session_id}"):
        records = ops.read_session(get_store(request), project, session_id)
    return [record.to_wire() for record in records]


@sessions_router.get("/{project}/{session_id}/validate", response_model=ValidationResult)
def validate_session(request: Request, project: str, session_id: str):
    with file_errors(f"Session {session_id}"):
        return ops.validate_session(get_store(request), project, session_id)


@sessions_router.post("/{project}/{session_id}/repair-chain", response_model=RepairChainResult)
def repair_chain(request: Request, project: str, session_id: str):
    with file_errors(f"Session {session_id}"):
        return ops.repair_session_chain(get_store(request), project, session_id)


@sessions_router.get("/{project}/{session_id}/summaries", response_model=list[SummaryInfo])
async def session_summaries(request: Request, project: str, session_id: str):
    with file_errors(f"Session {session_id}"):
        return await get_session_summaries(get_store(request), project, session_id)


@sessions_router.get("/{project}/{session_id}/agents", response_model=list[str])
def linked_agents(request: Request, project: str, session_id: str):
    with file_errors(f"Project {project}"):
        return ops.find_linked_agents(get_store(request), project, session_id)


@sessions_router.delete("/{project}/{session_id}/messages/{target_id}", response_model=DeleteMessageResult)
def delete_message(
    request: Request,
    project: str,
    session_id: str,
    target_id: str,
    target_type: Optional[Literal["file-history-snapshot", "summary"]] = Query(
        None, description="Restrict the match to snapshot markers or summaries"
    ),
):
    with file_errors(f"Session {session_id}"):
        return ops.delete_message(get_store(request), project, session_id, target_id, target_type)


@sessions_router.post("/{project}/{session_id}/messages/restore", response_model=OperationResult)
def restore_message(request: Request, project: str, session_id: str, body: RestoreMessageRequest):
    with file_errors(f"Session {session_id}"):
        return ops.restore_message(get_store(request), project, session_id, body.message, body.index)


@sessions_router.post("/{project}/{session_id}/split", response_model=SplitSessionResult)
def split_session(request: Request, project: str, session_id: str, body: SplitRequest):
    with file_errors(f"Session {session_id}"):
        return split_session_op(get_store(request), project, session_id, body.splitAt)


@sessions_router.post("/{project}/{session_id}/move", response_model=OperationResult)
def move_session(request: Request, project: str, session_id: str, body: MoveRequest):
    with file_errors(f"Session {session_id}"):
        return ops.move_session(get_store(request), project, session_id, body.targetProject)


@sessions_router.post("/{project}/{session_id}/rename", response_model=OperationResult)
async def rename_session(request: Request, project: str, session_id: str, body: RenameRequest):
    with file_errors(f"Session {session_id}"):
        return await ops.rename_session(get_store(request), project, session_id, body.title)


@sessions_router.post("/{project}/{session_id}/compress", response_model=CompressSessionResult)
def compress_session(request: Request, project: str, session_id: str, body: CompressRequest):
    with file_errors(f"Session {session_id}"):
        return ops.compress_session(
            get_store(request),
            project,
            session_id,
            keep_snapshots=body.keepSnapshots,
            max_tool_output_length=body.maxToolOutputLength,
        )


@sessions_router.delete("/{project}/{session_id}", response_model=DeleteSessionResult)
def delete_session(request: Request, project: str, session_id: str):
    with file_errors(f"Session {session_id}"):
        return ops.delete_session(get_store(request), project, session_id)
