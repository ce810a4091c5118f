"""Core audit module - COA assignment persistence and history."""

from core.audit.history import (
    AssignmentPersistenceError,
    AssignmentRepository,
    InMemoryAssignmentStore,
    JSONFileAssignmentStore,
    create_history_record,
)

__all__ = [
    "AssignmentPersistenceError",
    "AssignmentRepository",
    "InMemoryAssignmentStore",
    "JSONFileAssignmentStore",
    "create_history_record",
]
