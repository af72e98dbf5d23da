"""Chain validation and repair for session logs."""

from sessionkit.chain.repair import (
    DeletionOutcome,
    auto_repair_chain,
    delete_message_with_chain_repair,
    repair_parent_uuid_chain,
)
from sessionkit.chain.validation import (
    validate_chain,
    validate_progress_messages,
    validate_session_records,
    validate_tool_use_result,
)

__all__ = [
    "DeletionOutcome",
    "auto_repair_chain",
    "delete_message_with_chain_repair",
    "repair_parent_uuid_chain",
    "validate_chain",
    "validate_progress_messages",
    "validate_session_records",
    "validate_tool_use_result",
]
