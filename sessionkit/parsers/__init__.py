"""Session log parsing."""

from sessionkit.parsers.records import (
    LogParseError,
    count_nonempty_lines,
    dump_jsonl,
    dump_record,
    parse_jsonl,
    parse_line,
    parse_record,
    try_parse_line,
)

__all__ = [
    "LogParseError",
    "count_nonempty_lines",
    "dump_jsonl",
    "dump_record",
    "parse_jsonl",
    "parse_line",
    "parse_record",
    "try_parse_line",
]
