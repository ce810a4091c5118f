"""Connectors - external system integrations.

Contains the client for the COA assignment persistence API. Clients
implement core.audit.AssignmentRepository so the assignment service does
not depend on how configurations are stored.
"""

from connectors.assignment_api import (
    AssignmentApiClient,
    AssignmentApiConfig,
    AssignmentApiError,
    AssignmentNotFound,
    RetryConfig,
)

__all__ = [
    "AssignmentApiClient",
    "AssignmentApiConfig",
    "AssignmentApiError",
    "AssignmentNotFound",
    "RetryConfig",
]
