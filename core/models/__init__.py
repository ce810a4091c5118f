"""Core data models - persisted COA assignment types.

Pydantic models shared by the assignment service, the persistence backends
and the HTTP surface.
"""

from core.models.assignment import (
    # Lifecycle
    AssignmentStatus,
    ChangeType,
    InvalidStatusTransition,
    BASE_TEMPLATE_ID,

    # Persisted
    OrganizationCoaConfig,
    CoaAssignmentHistory,

    # Results
    CoaStructureSummary,
    TemplateAssignmentResult,
    AvailableTemplate,
)

__all__ = [
    # Lifecycle
    "AssignmentStatus",
    "ChangeType",
    "InvalidStatusTransition",
    "BASE_TEMPLATE_ID",

    # Persisted
    "OrganizationCoaConfig",
    "CoaAssignmentHistory",

    # Results
    "CoaStructureSummary",
    "TemplateAssignmentResult",
    "AvailableTemplate",
]
