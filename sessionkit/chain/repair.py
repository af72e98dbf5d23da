"""Non-mutating chain repair.

Every function here returns new record lists; records that need a new parent are
replaced by copies, never edited in place.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Sequence

from sessionkit.chain.validation import collect_uuids, tool_result_ids, tool_use_ids
from sessionkit.models import (
    AssistantRecord,
    BaseRecord,
    ChainRecord,
    SnapshotRecord,
    SummaryRecord,
)

DeleteTargetType = Literal["file-history-snapshot", "summary"]


@dataclass
class DeletionOutcome:
    records: list[BaseRecord]
    deleted: BaseRecord
    also_deleted: list[BaseRecord] = field(default_factory=list)


def _with_parent(record: ChainRecord, parent_uuid: Optional[str]) -> ChainRecord:
    return record.model_copy(update={"parentUuid": parent_uuid})


def auto_repair_chain(records: Sequence[BaseRecord]) -> tuple[list[BaseRecord], int]:
    """Relink broken or dangling parents to the nearest preceding identity-bearing record.

    A missing parent on the first identity-bearing record becomes an explicit
    ``null``. A later record with a null or unknown parent is pointed at the
    previous record's ``uuid``. Running the repair twice changes nothing the
    second time.
    """
    known = collect_uuids(records)
    repaired: list[BaseRecord] = []
    count = 0
    last_uuid: Optional[str] = None
    found_first = False

    for record in records:
        if not isinstance(record, ChainRecord) or not record.uuid:
            repaired.append(record)
            continue
        uuid = record.uuid

        if not found_first:
            found_first = True
            if not record.has_parent_field:
                record = _with_parent(record, None)
                count += 1
        elif (record.parentUuid is None or record.parentUuid not in known) and last_uuid:
            record = _with_parent(record, last_uuid)
            count += 1

        last_uuid = uuid
        repaired.append(record)

    return repaired, count


def repair_parent_uuid_chain(
    records: Sequence[BaseRecord],
    removed: Sequence[BaseRecord],
) -> list[BaseRecord]:
    """Point records whose parent is being removed at the nearest surviving ancestor.

    Ancestry is followed transitively through the removed set, so removing a
    run of consecutive records collapses the chain onto whatever preceded them.
    When the walk runs out of ancestors the parent becomes ``null``.
    """
    removed_parents: dict[str, Optional[str]] = {}
    for record in removed:
        if isinstance(record, ChainRecord) and record.uuid:
            removed_parents[record.uuid] = record.parentUuid

    if not removed_parents:
        return list(records)

    def resolve(parent_uuid: Optional[str]) -> Optional[str]:
        current = parent_uuid
        visited: set[str] = set()
        # Stops on cyclic parent pointers instead of looping.
        while current and current in removed_parents and current not in visited:
            visited.add(current)
            current = removed_parents[current]
        return current if current not in removed_parents else None

    result: list[BaseRecord] = []
    for record in records:
        if isinstance(record, ChainRecord) and record.parentUuid in removed_parents:
            record = _with_parent(record, resolve(record.parentUuid))
        result.append(record)
    return result


def _find_target(
    records: Sequence[BaseRecord],
    target_id: str,
    target_type: Optional[DeleteTargetType],
) -> int:
    def by_uuid(record: BaseRecord) -> bool:
        return isinstance(record, ChainRecord) and record.uuid == target_id

    def by_summary(record: BaseRecord) -> bool:
        return isinstance(record, SummaryRecord) and record.leafUuid == target_id

    def by_snapshot(record: BaseRecord) -> bool:
        return isinstance(record, SnapshotRecord) and record.messageId == target_id

    if target_type == "file-history-snapshot":
        matchers = [by_snapshot]
    elif target_type == "summary":
        matchers = [by_summary]
    else:
        matchers = [by_uuid, by_summary, by_snapshot]

    for matcher in matchers:
        for index, record in enumerate(records):
            if matcher(record):
                return index
    return -1


def delete_message_with_chain_repair(
    records: Sequence[BaseRecord],
    target_id: str,
    target_type: Optional[DeleteTargetType] = None,
) -> Optional[DeletionOutcome]:
    """Remove one record and keep the chain intact around it.

    The target is matched by ``uuid`` first, then by a summary's ``leafUuid``,
    then by a snapshot's ``messageId``; ``target_type`` restricts the match to
    one of the latter two kinds. Deleting an assistant turn that requested
    tools also deletes every record carrying a result for one of those
    requests. Returns None when nothing matches.
    """
    target_index = _find_target(records, target_id, target_type)
    if target_index == -1:
        return None

    target = records[target_index]
    drop = {target_index}

    if isinstance(target, AssistantRecord):
        requested = set(tool_use_ids(target))
        if requested:
            for index, record in enumerate(records):
                if index != target_index and requested.intersection(tool_result_ids(record)):
                    drop.add(index)

    removed = [records[index] for index in sorted(drop)]
    remaining = [record for index, record in enumerate(records) if index not in drop]
    return DeletionOutcome(
        records=repair_parent_uuid_chain(remaining, removed),
        deleted=target,
        also_deleted=[record for record in removed if record is not target],
    )
