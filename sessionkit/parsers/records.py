"""Parse JSONL session log lines into typed records and serialize them back."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

from sessionkit.models import RECORD_TYPES, BaseRecord, GenericRecord, Record
from sessionkit.observability import record_parse_failure

_logger = logging.getLogger("sessionkit.parsers")


class LogParseError(ValueError):
    """A log line could not be decoded as a record."""

    def __init__(self, path: Path | str, line_number: int, reason: str) -> None:
        self.path = str(path)
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"{self.path}:{line_number}: {reason}")


def parse_record(data: dict[str, Any]) -> Record:
    kind = data.get("type")
    model = RECORD_TYPES.get(kind, GenericRecord) if isinstance(kind, str) else GenericRecord
    return model.model_validate(data)


def parse_line(line: str) -> Record:
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return parse_record(data)


def try_parse_line(
    line: str,
    line_number: int,
    path: Path | str,
    logger: Optional[logging.Logger] = None,
) -> Optional[Record]:
    """Parse one line, logging and returning None when it is not a valid record."""
    try:
        return parse_line(line)
    except ValueError as exc:
        (logger or _logger).warning("Skipping unparseable line %s in %s: %s", line_number, path, exc)
        record_parse_failure("jsonl", project_id="")
        return None


def parse_jsonl(
    content: str,
    path: Path | str = "<memory>",
    *,
    strict: bool = True,
    logger: Optional[logging.Logger] = None,
) -> list[Record]:
    """Parse a whole log.

    Blank lines are ignored. Strict parsing raises ``LogParseError`` with the
    1-based file line number of the first bad line; lenient parsing skips bad
    lines and keeps going.
    """
    records: list[Record] = []
    for line_number, line in enumerate(content.splitlines(), start=1):
        if not line.strip():
            continue
        if not strict:
            record = try_parse_line(line, line_number, path, logger)
            if record is not None:
                records.append(record)
            continue
        try:
            records.append(parse_line(line))
        except ValueError as exc:
            record_parse_failure("jsonl", project_id="")
            raise LogParseError(path, line_number, str(exc)) from exc
    return records


def dump_record(record: BaseRecord) -> str:
    return json.dumps(record.to_wire(), ensure_ascii=False, separators=(",", ":"))


def dump_jsonl(records: Iterable[BaseRecord]) -> str:
    lines = [dump_record(record) for record in records]
    return "\n".join(lines) + "\n" if lines else ""


def count_nonempty_lines(content: str) -> int:
    return sum(1 for line in content.splitlines() if line.strip())
