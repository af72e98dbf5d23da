"""Cross-log summary resolution.

A summary line names the record it describes through ``leafUuid``, and that
record often lives in a different log of the same project. Resolution therefore
works on the whole project at once:

1. index every ``uuid`` (and every snapshot ``messageId``) to the log holding it;
2. route each summary to the log that holds its target, dropping summaries
   whose target is nowhere in the project;
3. order each log's summaries oldest first, breaking timestamp ties by source
   file name descending. The first entry is the summary the log displays.

Identity collisions across logs resolve to whichever file is indexed last in
file-name order.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from sessionkit import config
from sessionkit.models import BaseRecord, SnapshotRecord, SummaryInfo, SummaryRecord, chain_uuid
from sessionkit.observability import start_span
from sessionkit.store import LOG_SUFFIX, SessionStore

_logger = logging.getLogger("sessionkit.summaries")


@dataclass(frozen=True)
class IdentityEntry:
    session_id: str
    timestamp: Optional[str] = None


def _log_id(source_file: str) -> str:
    return source_file[: -len(LOG_SUFFIX)] if source_file.endswith(LOG_SUFFIX) else source_file


def build_identity_index(logs: Mapping[str, Sequence[BaseRecord]]) -> dict[str, IdentityEntry]:
    """Map record identities to their owning log; ``logs`` is keyed by file name."""
    index: dict[str, IdentityEntry] = {}
    for source_file in sorted(logs):
        log_id = _log_id(source_file)
        for record in logs[source_file]:
            uuid = chain_uuid(record)
            if uuid:
                index[uuid] = IdentityEntry(log_id, record.iso_timestamp)
            if isinstance(record, SnapshotRecord) and record.messageId:
                index[record.messageId] = IdentityEntry(log_id, record.snapshot_timestamp)
    return index


def collect_summaries(logs: Mapping[str, Sequence[BaseRecord]]) -> list[SummaryInfo]:
    found: list[SummaryInfo] = []
    for source_file in sorted(logs):
        for record in logs[source_file]:
            if isinstance(record, SummaryRecord) and isinstance(record.summary, str):
                found.append(
                    SummaryInfo(
                        summary=record.summary,
                        leafUuid=record.leafUuid,
                        timestamp=record.iso_timestamp,
                        sourceFile=source_file,
                    )
                )
    return found


def sort_summaries(summaries: Sequence[SummaryInfo]) -> list[SummaryInfo]:
    """Oldest first; equal timestamps put the larger source file name first."""
    by_source = sorted(summaries, key=lambda item: item.sourceFile, reverse=True)
    return sorted(by_source, key=lambda item: item.timestamp or "")


def group_summaries_by_target(
    summaries: Sequence[SummaryInfo],
    index: Mapping[str, IdentityEntry],
) -> dict[str, list[SummaryInfo]]:
    buckets: dict[str, list[SummaryInfo]] = {}
    for item in summaries:
        if not item.leafUuid:
            continue
        target = index.get(item.leafUuid)
        if target is None:
            continue
        timestamp = item.timestamp if item.timestamp is not None else target.timestamp
        buckets.setdefault(target.session_id, []).append(item.model_copy(update={"timestamp": timestamp}))
    return {session_id: sort_summaries(bucket) for session_id, bucket in buckets.items()}


def resolve_project_summaries(logs: Mapping[str, Sequence[BaseRecord]]) -> dict[str, list[SummaryInfo]]:
    return group_summaries_by_target(collect_summaries(logs), build_identity_index(logs))


def summaries_for_session(
    session_records: Sequence[BaseRecord],
    logs: Mapping[str, Sequence[BaseRecord]],
) -> list[SummaryInfo]:
    """Single-log path: search every log for summaries whose target is in ``session_records``."""
    timestamps: dict[str, Optional[str]] = {}
    for record in session_records:
        uuid = chain_uuid(record)
        if uuid and uuid not in timestamps:
            timestamps[uuid] = record.iso_timestamp

    found: list[SummaryInfo] = []
    for item in collect_summaries(logs):
        if item.leafUuid is None or item.leafUuid not in timestamps:
            continue
        target_timestamp = timestamps[item.leafUuid]
        timestamp = target_timestamp if target_timestamp is not None else item.timestamp
        found.append(item.model_copy(update={"timestamp": timestamp}))
    return sort_summaries(found)


async def read_logs(
    store: SessionStore,
    paths: Sequence[Path],
    *,
    limit: int = config.SCAN_CONCURRENCY,
    logger: Optional[logging.Logger] = None,
) -> dict[str, list]:
    """Leniently read many logs with bounded parallelism, skipping unreadable files."""
    log = logger or _logger
    semaphore = asyncio.Semaphore(max(1, limit))

    async def read_one(path: Path):
        async with semaphore:
            try:
                return path.name, await asyncio.to_thread(store.read_log, path, strict=False)
            except (OSError, UnicodeDecodeError) as exc:
                log.warning("Skipping unreadable log %s: %s", path, exc)
                return path.name, None

    results = await asyncio.gather(*(read_one(path) for path in paths))
    return {name: records for name, records in results if records is not None}


async def load_project_summaries(
    store: SessionStore,
    project: str,
    *,
    logger: Optional[logging.Logger] = None,
) -> dict[str, list[SummaryInfo]]:
    with start_span("sessionkit.summaries.load_project", {"project": project}):
        logs = await read_logs(store, store.list_log_files(project), logger=logger)
        return resolve_project_summaries(logs)


async def get_session_summaries(
    store: SessionStore,
    project: str,
    session_id: str,
    *,
    logger: Optional[logging.Logger] = None,
) -> list[SummaryInfo]:
    session_records = await asyncio.to_thread(store.read_log, store.session_path(project, session_id))
    logs = await read_logs(store, store.list_log_files(project), logger=logger)
    return summaries_for_session(session_records, logs)
