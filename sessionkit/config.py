"""sessionkit configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if not value or not value.strip():
        return default
    return Path(value.strip()).expanduser()


CLAUDE_HOME = Path.home() / ".claude"

# Storage layout
SESSIONS_DIR = _env_path("SESSIONKIT_SESSIONS_DIR", CLAUDE_HOME / "projects")
TODOS_DIR = _env_path("SESSIONKIT_TODOS_DIR", CLAUDE_HOME / "todos")
BACKUP_DIR_NAME = ".bak"
AGENT_FILE_PREFIX = "agent-"
SUBAGENTS_DIR_NAME = "subagents"

# Scan tuning
SCAN_CONCURRENCY = max(1, _env_int("SESSIONKIT_SCAN_CONCURRENCY", 20))
LIST_CONCURRENCY = max(1, _env_int("SESSIONKIT_LIST_CONCURRENCY", 10))

# Orphan agent logs at or below this many non-empty lines only hold the warmup handshake.
ORPHAN_DELETE_MAX_LINES = _env_int("SESSIONKIT_ORPHAN_DELETE_MAX_LINES", 2)

# Compression keeps this many characters of a string tool result.
MAX_TOOL_OUTPUT_LENGTH = max(1, _env_int("SESSIONKIT_MAX_TOOL_OUTPUT_LENGTH", 5000))

# Observability
OTEL_ENABLED = _env_bool("SESSIONKIT_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("SESSIONKIT_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("SESSIONKIT_OTEL_SERVICE_NAME", "sessionkit")
PROM_PORT = _env_int("SESSIONKIT_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("SESSIONKIT_HOST", "127.0.0.1")
PORT = _env_int("SESSIONKIT_PORT", 8000)

# CORS
FRONTEND_ORIGIN = os.getenv("SESSIONKIT_FRONTEND_ORIGIN", "http://localhost:3000")
