"""COA assignment models: persisted configuration, history and results."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


BASE_TEMPLATE_ID = "universal_base"


# =============================================================================
# Lifecycle
# =============================================================================

class AssignmentStatus(str, Enum):
    """Lifecycle of an organization's COA configuration."""
    NONE = "none"
    PENDING = "pending"
    ACTIVE = "active"
    LOCKED = "locked"


# locked -> active needs an explicit override path, which does not exist yet
ALLOWED_TRANSITIONS = {
    AssignmentStatus.NONE: {AssignmentStatus.PENDING},
    AssignmentStatus.PENDING: {AssignmentStatus.ACTIVE},
    AssignmentStatus.ACTIVE: {AssignmentStatus.LOCKED, AssignmentStatus.PENDING},
    AssignmentStatus.LOCKED: set(),
}


class InvalidStatusTransition(Exception):
    """A configuration was moved to a status its lifecycle does not allow."""

    def __init__(self, current: AssignmentStatus, target: AssignmentStatus):
        super().__init__(f"Cannot move COA configuration from {current.value} to {target.value}")
        self.current = current
        self.target = target


class ChangeType(str, Enum):
    """Kinds of configuration change recorded in history."""
    INITIAL_ASSIGNMENT = "initial_assignment"
    TEMPLATE_CHANGE = "template_change"


# =============================================================================
# Persisted models
# =============================================================================

class OrganizationCoaConfig(BaseModel):
    """The COA configuration persisted for one organization.

    Created on first assignment and replaced on reassignment; never deleted.
    """
    config_id: str = Field(default_factory=lambda: f"coa-{uuid.uuid4().hex[:12]}", description="Configuration id")
    organization_id: str = Field(..., description="Organization the chart belongs to")
    base_template: str = Field(default=BASE_TEMPLATE_ID, description="Base template id")
    country_template: Optional[str] = Field(None, description="Country template code")
    industry_template: Optional[str] = Field(None, description="Industry template code")
    assigned_by: str = Field(..., description="User who made the assignment")
    assigned_at: datetime = Field(default_factory=_utcnow, description="Assignment timestamp")
    effective_date: date = Field(default_factory=lambda: _utcnow().date(), description="Date the chart takes effect")
    status: AssignmentStatus = Field(default=AssignmentStatus.NONE, description="Lifecycle status")
    locked: bool = Field(default=False, description="Changes require administrator approval")
    allow_custom_accounts: bool = Field(default=False, description="Organization may add its own accounts")
    auto_sync: bool = Field(default=True, description="Follow template updates automatically")

    def transition_to(self, status: AssignmentStatus) -> "OrganizationCoaConfig":
        """Move to a new lifecycle status.

        Raises:
            InvalidStatusTransition: The move is not allowed
        """
        status = AssignmentStatus(status)
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStatusTransition(self.status, status)
        self.status = status
        self.locked = status == AssignmentStatus.LOCKED
        return self

    def template_ids(self) -> list[str]:
        """Template layer ids in merge order."""
        ids = [self.base_template]
        if self.country_template:
            ids.append(f"country_{self.country_template}")
        if self.industry_template:
            ids.append(f"industry_{self.industry_template}")
        return ids

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe copy for history records."""
        return self.model_dump(mode="json")


class CoaAssignmentHistory(BaseModel):
    """Append-only audit record of one configuration change."""
    model_config = ConfigDict(frozen=True)

    history_id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="History record id")
    organization_id: str = Field(..., description="Organization id")
    change_type: ChangeType = Field(..., description="Kind of change")
    previous_config: Optional[dict[str, Any]] = Field(None, description="Configuration before the change")
    new_config: dict[str, Any] = Field(..., description="Configuration after the change")
    changed_by: str = Field(..., description="User who made the change")
    changed_at: datetime = Field(default_factory=_utcnow, description="Change timestamp")
    accounts_affected: int = Field(default=0, description="Accounts added, removed or modified")
    custom_accounts_preserved: bool = Field(default=True, description="Custom accounts carried over")


# =============================================================================
# Service results
# =============================================================================

class CoaStructureSummary(BaseModel):
    """Shape of a merged chart returned to callers."""
    layers: list[str] = Field(default_factory=list, description="Applied layers: base, country, industry")
    template_ids: list[str] = Field(default_factory=list, description="Applied template ids")
    accounts_by_layer: dict[str, int] = Field(default_factory=dict, description="Accounts contributed per layer")
    total_accounts: int = 0
    required_accounts: int = 0
    country_specific_accounts: int = 0
    industry_specific_accounts: int = 0


class TemplateAssignmentResult(BaseModel):
    """Outcome of an assignment attempt."""
    success: bool
    configuration_id: Optional[str] = None
    message: str = ""
    coa_structure: Optional[CoaStructureSummary] = None
    errors: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[dict[str, Any]] = Field(default_factory=list)
    recommendations: list[dict[str, Any]] = Field(default_factory=list)


class AvailableTemplate(BaseModel):
    """An installed country or industry template with display metadata."""
    id: str = Field(..., description="Template code (file stem)")
    template_key: str = Field(..., description="Cache key, e.g. country_india")
    type: str = Field(..., description="country or industry")
    name: str
    version: str
    description: str = ""
    account_count: int = 0
    regulatory_requirements: list[str] = Field(default_factory=list)
    compatible_with: list[str] = Field(default_factory=list)
