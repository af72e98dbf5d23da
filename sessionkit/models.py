"""Pydantic models for session log records and operation results.

Every line of a session log is one record. Records are split into one model per
``type`` so the fields that matter to chain handling live on the kinds that use
them: snapshot markers key by ``messageId`` and summaries point elsewhere through
``leafUuid``; neither carries a ``uuid`` and neither takes part in the chain.

Only the linkage fields (``uuid``, ``parentUuid``, ``sessionId``, ``leafUuid``,
``messageId``) are typed strictly. Everything else is kept exactly as it was read,
including key order and nested message payloads, so a record that no operation
touched serializes back to the same bytes.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, PrivateAttr, Tag, TypeAdapter, ValidationError, model_validator


# ── Content blocks ─────────────────────────────────────────────────

class _Block(BaseModel):
    model_config = ConfigDict(extra="allow")


class TextBlock(_Block):
    type: Literal["text"] = "text"
    text: Any = None


class ToolUseBlock(_Block):
    type: Literal["tool_use"] = "tool_use"
    id: Optional[str] = None
    name: Any = None
    input: Any = None


class ToolResultBlock(_Block):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: Optional[str] = None
    is_error: Any = None
    content: Any = None


class OtherBlock(_Block):
    type: Any = None


_BLOCK_TAGS = {"text", "tool_use", "tool_result"}


def _block_tag(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return kind if kind in _BLOCK_TAGS else "other"


ContentBlock = Annotated[
    Union[
        Annotated[TextBlock, Tag("text")],
        Annotated[ToolUseBlock, Tag("tool_use")],
        Annotated[ToolResultBlock, Tag("tool_result")],
        Annotated[OtherBlock, Tag("other")],
    ],
    Discriminator(_block_tag),
]

_block_adapter: TypeAdapter[Any] = TypeAdapter(ContentBlock)


def message_content(message: Any) -> Any:
    """Return the raw ``content`` of a message payload, or None."""
    return message.get("content") if isinstance(message, dict) else None


def content_blocks(message: Any) -> list[Any]:
    """Typed views of a message's content blocks.

    The payload itself stays untouched; a block whose linkage ids are not strings
    is viewed as an ``OtherBlock`` and non-object entries are skipped.
    """
    content = message_content(message)
    if not isinstance(content, list):
        return []
    blocks: list[Any] = []
    for item in content:
        if not isinstance(item, dict):
            continue
        try:
            blocks.append(_block_adapter.validate_python(item))
        except ValidationError:
            blocks.append(OtherBlock.model_validate(item))
    return blocks


# ── Records ────────────────────────────────────────────────────────

class BaseRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Any = None
    timestamp: Any = None
    sessionId: Optional[str] = None

    _key_order: tuple[str, ...] = PrivateAttr(default=())

    @model_validator(mode="wrap")
    @classmethod
    def _remember_key_order(cls, data: Any, handler: Any) -> Any:
        record = handler(data)
        if isinstance(data, dict):
            record._key_order = tuple(data)
        return record

    @property
    def iso_timestamp(self) -> Optional[str]:
        return self.timestamp if isinstance(self.timestamp, str) else None

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON object for this record, keeping only keys that were set.

        Keys come out in the order they were read; keys added later follow them.
        """
        data = self.model_dump(mode="json", exclude_unset=True)
        if self.type is not None:
            data.setdefault("type", self.type)
        wire = {key: data.pop(key) for key in (self._key_order or ("type",)) if key in data}
        wire.update(data)
        return wire


class ChainRecord(BaseRecord):
    """A record kind that can carry an identity and a parent pointer."""

    uuid: Optional[str] = None
    parentUuid: Optional[str] = None

    @property
    def has_parent_field(self) -> bool:
        """False when ``parentUuid`` is missing from the line, as opposed to ``null``."""
        return "parentUuid" in self.model_fields_set


class TurnRecord(ChainRecord):
    message: Any = None
    isCompactSummary: Any = None
    toolUseResult: Any = None
    agentId: Any = None

    def blocks(self) -> list[Any]:
        return content_blocks(self.message)


class UserRecord(TurnRecord):
    type: Literal["user"] = "user"


class AssistantRecord(TurnRecord):
    type: Literal["assistant"] = "assistant"


class SystemRecord(ChainRecord):
    type: Literal["system"] = "system"
    subtype: Any = None


class ProgressRecord(ChainRecord):
    type: Literal["progress"] = "progress"
    hookEvent: Any = None
    hookName: Any = None
    data: Any = None

    def hook_event(self) -> Optional[str]:
        value = self.hookEvent
        if value is None and isinstance(self.data, dict):
            value = self.data.get("hookEvent")
        return value if isinstance(value, str) else None

    def hook_name(self) -> Optional[str]:
        value = self.hookName
        if value is None and isinstance(self.data, dict):
            value = self.data.get("hookName")
        return value if isinstance(value, str) else None


class CustomTitleRecord(ChainRecord):
    type: Literal["custom-title"] = "custom-title"
    customTitle: Any = None


class GenericRecord(ChainRecord):
    """Any record kind without a dedicated model (queue operations, header lines, ...)."""


class SnapshotRecord(BaseRecord):
    type: Literal["file-history-snapshot"] = "file-history-snapshot"
    messageId: Optional[str] = None
    snapshot: Any = None
    isSnapshotUpdate: Any = None

    @property
    def snapshot_timestamp(self) -> Optional[str]:
        if isinstance(self.snapshot, dict):
            value = self.snapshot.get("timestamp")
            return value if isinstance(value, str) else None
        return None


class SummaryRecord(BaseRecord):
    type: Literal["summary"] = "summary"
    summary: Any = None
    leafUuid: Optional[str] = None


Record = Union[
    UserRecord,
    AssistantRecord,
    SystemRecord,
    ProgressRecord,
    CustomTitleRecord,
    GenericRecord,
    SnapshotRecord,
    SummaryRecord,
]

RECORD_TYPES: dict[str, type[BaseRecord]] = {
    "user": UserRecord,
    "assistant": AssistantRecord,
    "system": SystemRecord,
    "progress": ProgressRecord,
    "custom-title": CustomTitleRecord,
    "file-history-snapshot": SnapshotRecord,
    "summary": SummaryRecord,
}


def chain_uuid(record: BaseRecord) -> Optional[str]:
    """Return the record's identity if it participates in the parent chain."""
    if isinstance(record, ChainRecord) and record.uuid:
        return record.uuid
    return None


# ── Validation findings ────────────────────────────────────────────

class ChainError(BaseModel):
    type: Literal["broken_chain", "orphan_parent"]
    uuid: str
    line: int
    parentUuid: Optional[str] = None


class ToolResultError(BaseModel):
    type: Literal["orphan_tool_result"] = "orphan_tool_result"
    uuid: str = ""
    line: int
    toolUseId: str


class ProgressError(BaseModel):
    type: Literal["unwanted_progress"] = "unwanted_progress"
    line: int
    hookEvent: Optional[str] = None
    hookName: Optional[str] = None


ValidationFinding = Union[ChainError, ToolResultError, ProgressError]


class ValidationResult(BaseModel):
    valid: bool
    errors: list[ValidationFinding] = Field(default_factory=list)


# ── Operation results ──────────────────────────────────────────────

class OperationResult(BaseModel):
    success: bool
    error: Optional[str] = None


class RepairChainResult(OperationResult):
    repairCount: int = 0
    errors: list[ChainError] = Field(default_factory=list)


class DeleteMessageResult(OperationResult):
    deletedMessage: Optional[dict[str, Any]] = None
    alsoDeleted: list[dict[str, Any]] = Field(default_factory=list)


class SplitSessionResult(OperationResult):
    newSessionId: Optional[str] = None
    newSessionPath: Optional[str] = None
    movedMessageCount: int = 0
    duplicatedSummary: bool = False


class DeleteSessionResult(OperationResult):
    backupPath: Optional[str] = None
    deletedAgents: int = 0
    deletedTodos: int = 0


class CompressSessionResult(OperationResult):
    originalSize: int = 0
    compressedSize: int = 0
    removedCustomTitles: int = 0
    removedProgress: int = 0
    removedSnapshots: int = 0
    truncatedOutputs: int = 0


class CleanInvalidResult(OperationResult):
    removedCount: int = 0
    remainingCount: int = 0


class ClearSessionsResult(OperationResult):
    deletedCount: int = 0
    removedMessageCount: int = 0
    deletedOrphanAgentCount: int = 0
    deletedOrphanTodoCount: int = 0


# ── Listing models ─────────────────────────────────────────────────

class ProjectInfo(BaseModel):
    name: str
    path: str
    sessionCount: int = 0


class SessionMeta(BaseModel):
    id: str
    projectName: str
    customTitle: Optional[str] = None
    currentSummary: Optional[str] = None
    messageCount: int = 0
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class SummaryInfo(BaseModel):
    summary: str
    leafUuid: Optional[str] = None
    timestamp: Optional[str] = None
    sourceFile: str = ""


# ── Orphan models ──────────────────────────────────────────────────

class OrphanAgent(BaseModel):
    agentId: str
    sessionId: str
    filePath: str
    lineCount: int = 0


class OrphanPreview(BaseModel):
    project: str
    orphanAgents: list[OrphanAgent] = Field(default_factory=list)
    orphanTodos: list[str] = Field(default_factory=list)


class OrphanAgentCleanupResult(OperationResult):
    deletedAgents: list[str] = Field(default_factory=list)
    backedUpAgents: list[str] = Field(default_factory=list)
    cleanedFolders: list[str] = Field(default_factory=list)
    deletedCount: int = 0
    backedUpCount: int = 0
    cleanedFolderCount: int = 0
    count: int = 0


class OrphanTodoCleanupResult(OperationResult):
    backedUpTodos: list[str] = Field(default_factory=list)
    backedUpCount: int = 0


class OrphanCleanupResult(OperationResult):
    agents: dict[str, OrphanAgentCleanupResult] = Field(default_factory=dict)
    todos: Optional[OrphanTodoCleanupResult] = None
    deletedOrphanAgentCount: int = 0
    deletedOrphanTodoCount: int = 0


class CleanupPreview(BaseModel):
    project: str
    emptySessions: list[SessionMeta] = Field(default_factory=list)
    invalidSessions: list[SessionMeta] = Field(default_factory=list)
    emptyWithTodosCount: int = 0
    orphanAgentCount: int = 0
    orphanTodoCount: int = 0
