"""File-system access for session logs, agent logs and task lists.

The store owns every path convention and every read/write/move of a file; the
operations built on top of it only ever see record lists.
"""
from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable, Optional

from sessionkit import config
from sessionkit.models import BaseRecord, Record
from sessionkit.parsers import dump_jsonl, parse_jsonl, try_parse_line

LOG_SUFFIX = ".jsonl"
TODO_SUFFIX = ".json"


def is_agent_file(path: Path) -> bool:
    return path.name.startswith(config.AGENT_FILE_PREFIX) and path.name.endswith(LOG_SUFFIX)


def agent_id_from_path(path: Path) -> str:
    """``agent-abc.jsonl`` -> ``abc``."""
    return path.stem[len(config.AGENT_FILE_PREFIX):]


def _check_name(value: str, what: str) -> str:
    if not value or value.startswith(".") or "/" in value or "\\" in value:
        raise ValueError(f"Invalid {what}: {value!r}")
    return value


class SessionStore:
    """Resolves paths under a sessions root and a task-list root."""

    def __init__(
        self,
        sessions_dir: Path | str,
        todos_dir: Path | str | None = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.sessions_dir = Path(sessions_dir)
        self.todos_dir = Path(todos_dir) if todos_dir is not None else self.sessions_dir.parent / "todos"
        self.logger = logger or logging.getLogger("sessionkit.store")

    @classmethod
    def from_config(cls) -> "SessionStore":
        return cls(config.SESSIONS_DIR, config.TODOS_DIR)

    # ── Paths ──────────────────────────────────────────────────────

    def project_dir(self, project: str) -> Path:
        return self.sessions_dir / _check_name(project, "project name")

    def session_path(self, project: str, session_id: str) -> Path:
        return self.project_dir(project) / f"{_check_name(session_id, 'session id')}{LOG_SUFFIX}"

    def agent_path(self, project: str, agent_id: str) -> Path:
        name = f"{config.AGENT_FILE_PREFIX}{_check_name(agent_id, 'agent id')}{LOG_SUFFIX}"
        return self.project_dir(project) / name

    def project_backup_dir(self, project: str) -> Path:
        return self.project_dir(project) / config.BACKUP_DIR_NAME

    @property
    def sessions_backup_dir(self) -> Path:
        return self.sessions_dir / config.BACKUP_DIR_NAME

    @property
    def todos_backup_dir(self) -> Path:
        return self.todos_dir / config.BACKUP_DIR_NAME

    # ── Discovery ──────────────────────────────────────────────────

    def list_project_dirs(self) -> list[Path]:
        if not self.sessions_dir.is_dir():
            return []
        return sorted(
            entry for entry in self.sessions_dir.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )

    def list_log_files(self, project: str) -> list[Path]:
        """Every ``.jsonl`` file at the project root, primary and agent logs alike."""
        project_dir = self.project_dir(project)
        if not project_dir.is_dir():
            return []
        return sorted(path for path in project_dir.glob(f"*{LOG_SUFFIX}") if path.is_file())

    def list_session_files(self, project: str) -> list[Path]:
        return [path for path in self.list_log_files(project) if not is_agent_file(path)]

    def list_session_ids(self, project: str) -> list[str]:
        return [path.stem for path in self.list_session_files(project)]

    def list_agent_files(self, project: str) -> list[Path]:
        return [path for path in self.list_log_files(project) if is_agent_file(path)]

    def list_subagent_files(self, project: str) -> list[Path]:
        """Agent logs nested as ``<sessionId>/subagents/agent-*.jsonl``."""
        project_dir = self.project_dir(project)
        if not project_dir.is_dir():
            return []
        found: list[Path] = []
        for entry in sorted(project_dir.iterdir()):
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            subagents = entry / config.SUBAGENTS_DIR_NAME
            if subagents.is_dir():
                found.extend(path for path in sorted(subagents.glob(f"*{LOG_SUFFIX}")) if is_agent_file(path))
        return found

    def list_todo_files(self) -> list[Path]:
        if not self.todos_dir.is_dir():
            return []
        return sorted(path for path in self.todos_dir.glob(f"*{TODO_SUFFIX}") if path.is_file())

    # ── Reading and writing ────────────────────────────────────────

    def read_text(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")

    def read_log(self, path: Path, *, strict: bool = True) -> list[Record]:
        return parse_jsonl(self.read_text(path), path, strict=strict, logger=self.logger)

    def write_text(self, path: Path, content: str) -> None:
        path.write_text(content, encoding="utf-8")

    def write_log(self, path: Path, records: Iterable[BaseRecord]) -> None:
        self.write_text(path, dump_jsonl(records))

    def read_first_record(self, path: Path) -> Optional[Record]:
        """Parse the first non-empty line of a log, or None when it has none or it is invalid."""
        with path.open(encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                if line.strip():
                    return try_parse_line(line, line_number, path, self.logger)
        return None

    # ── Moving and removing ────────────────────────────────────────

    def move_to_backup(self, path: Path, backup_dir: Path, name: Optional[str] = None) -> Path:
        """Move ``path`` into ``backup_dir`` (created on demand), keeping its name by default.

        An existing backup is never replaced: the new one gets a ``-1``, ``-2``, ...
        suffix before its extension instead.
        """
        backup_dir.mkdir(parents=True, exist_ok=True)
        wanted = Path(name or path.name)
        destination = backup_dir / wanted.name
        counter = 0
        while destination.exists():
            counter += 1
            destination = backup_dir / f"{wanted.stem}-{counter}{wanted.suffix}"
        shutil.move(str(path), str(destination))
        self.logger.info("Backed up %s -> %s", path, destination)
        return destination

    def remove_file(self, path: Path) -> None:
        path.unlink()
        self.logger.info("Deleted %s", path)

    def remove_dir_if_empty(self, path: Path) -> bool:
        if not path.is_dir() or any(path.iterdir()):
            return False
        path.rmdir()
        self.logger.info("Removed empty folder %s", path)
        return True
