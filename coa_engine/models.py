"""
COA Engine Models

Defines data structures for:
- Accounts and template documents
- Validation rules, organization context and assignment requests
- Validation results (errors, warnings, recommendations)
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from .conditions import Condition


class AccountType(str, Enum):
    """Top-level account classes"""
    ASSETS = "assets"
    LIABILITIES = "liabilities"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSES = "expenses"


class NormalBalance(str, Enum):
    """Side on which an account balance increases"""
    DEBIT = "debit"
    CREDIT = "credit"


class RuleType(str, Enum):
    """Rule categories, each with its own outcome semantics"""
    SYSTEM = "system"                  # Non-negotiable gates
    VALIDATION = "validation"          # Data integrity -> errors
    GOVERNANCE = "governance"          # Business friction -> warnings
    RECOMMENDATION = "recommendation"  # Advisory only


class Severity(str, Enum):
    """Error severities (critical and high block an assignment)"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"


BLOCKING_SEVERITIES = (Severity.CRITICAL, Severity.HIGH)


class OrganizationStatus(str, Enum):
    """Organization lifecycle"""
    SETUP = "setup"
    ACTIVE = "active"
    LIVE = "live"


class LockEnforcement(str, Enum):
    """How the lock-after-go-live governance rule is applied"""
    ADVISORY = "advisory"  # Warn only
    ENFORCED = "enforced"  # Block the change


# Expected normal balance by leading code digit
NORMAL_BALANCE_BY_PREFIX = {
    "1": NormalBalance.DEBIT,    # Assets
    "2": NormalBalance.CREDIT,   # Liabilities
    "3": NormalBalance.CREDIT,   # Equity
    "4": NormalBalance.CREDIT,   # Revenue
    "5": NormalBalance.DEBIT,    # Expenses
}


def expected_normal_balance(code: str) -> Optional[NormalBalance]:
    """Return the normal balance implied by an account code range, if any."""
    if not code:
        return None
    return NORMAL_BALANCE_BY_PREFIX.get(str(code).strip()[:1])


# =============================================================================
# Account / Template Models
# =============================================================================

@dataclass
class Account:
    """
    A single chart-of-accounts entry.

    Attributes:
        code: Account code (numeric-range encoded string, e.g. "1100000")
        name: Display name
        type: Account class (assets, liabilities, ...)
        subtype: Section within the class (e.g. "current_assets")
        normal_balance: debit or credit
        required: Whether every chart must contain this account
        description: Free text
        industry_specific: Contributed by an industry layer
        country_specific: Contributed by a country layer
        custom: Added or modified by an organization customization
        regulatory_requirement: Optional regulatory tag (e.g. "GST")
    """
    code: str
    name: str
    type: str = ""
    subtype: str = ""
    normal_balance: str = NormalBalance.DEBIT.value
    required: bool = False
    description: str = ""
    industry_specific: bool = False
    country_specific: bool = False
    custom: bool = False
    regulatory_requirement: Optional[str] = None

    def __post_init__(self):
        self.code = str(self.code).strip()
        self.normal_balance = str(self.normal_balance).lower().strip()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        """Build an account from its JSON template representation"""
        return cls(
            code=data["code"],
            name=data.get("name", ""),
            type=data.get("type", ""),
            subtype=data.get("subtype", ""),
            normal_balance=data.get("normal_balance", NormalBalance.DEBIT.value),
            required=bool(data.get("required", False)),
            description=data.get("description", ""),
            industry_specific=bool(data.get("industry_specific", False)),
            country_specific=bool(data.get("country_specific", False)),
            custom=bool(data.get("custom", False)),
            regulatory_requirement=data.get("regulatory_requirement"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = {
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "subtype": self.subtype,
            "normal_balance": self.normal_balance,
            "required": self.required,
            "description": self.description,
            "industry_specific": self.industry_specific,
            "country_specific": self.country_specific,
            "custom": self.custom,
        }
        if self.regulatory_requirement:
            data["regulatory_requirement"] = self.regulatory_requirement
        return data


@dataclass(frozen=True)
class Template:
    """
    A loaded template document.

    Base templates carry a nested ``account_structure``; country and industry
    overlays carry ``country_specific_accounts`` / ``industry_specific_accounts``.
    """
    key: str
    id: str
    name: str
    version: str
    extends: Optional[str] = None
    country_code: Optional[str] = None
    industry_code: Optional[str] = None
    description: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    account_structure: Dict[str, Any] = field(default_factory=dict)
    country_specific_accounts: Any = None
    industry_specific_accounts: Any = None
    regulatory_requirements: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "Template":
        if not isinstance(data, dict):
            raise ValueError(f"Template {key} must be a JSON object")
        if "id" not in data:
            raise ValueError(f"Template {key} has no 'id'")

        return cls(
            key=key,
            id=str(data["id"]),
            name=data.get("name", data["id"]),
            version=str(data.get("version", "1.0.0")),
            extends=data.get("extends"),
            country_code=data.get("country_code"),
            industry_code=data.get("industry_code"),
            description=data.get("description", ""),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            account_structure=data.get("account_structure") or {},
            country_specific_accounts=data.get("country_specific_accounts"),
            industry_specific_accounts=data.get("industry_specific_accounts"),
            regulatory_requirements=list(data.get("regulatory_requirements", [])),
            raw=data,
        )


# =============================================================================
# Rule Models
# =============================================================================

@dataclass
class ValidationRule:
    """
    A declarative assignment rule.

    Attributes:
        id: Stable rule identifier (reported as rule_id)
        name: Human-readable name
        type: system, validation, governance or recommendation
        priority: Lower numbers are evaluated first
        active: Inactive rules are never evaluated
        condition: Predicate deciding whether the rule applies
        action: Payload (message, severity, field, suggestion, check, ...)
        description: Free text
        category: Grouping from the rules file
    """
    id: str
    name: str
    type: RuleType
    priority: int
    condition: Condition
    action: Dict[str, Any] = field(default_factory=dict)
    active: bool = True
    description: str = ""
    category: str = ""


# =============================================================================
# Request / Context Models
# =============================================================================

def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first key present in data (snake_case or camelCase)"""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def parse_fiscal_date(value: Any) -> Optional[date]:
    """Parse a fiscal year end from a date or common string formats."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    s = str(value).strip()
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y", "%Y/%m/%d"):
        try:
            return datetime.strptime(s[:10], fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Cannot parse fiscal year end: {s}")


@dataclass
class OrganizationContext:
    """Per-evaluation facts about the organization receiving a chart"""
    organization_id: str
    country: Optional[str] = None
    industry: Optional[str] = None
    status: OrganizationStatus = OrganizationStatus.SETUP
    has_transactions: bool = False
    fiscal_year_end: Optional[date] = None
    regulatory_requirements: List[str] = field(default_factory=list)
    multi_location: bool = False
    parent_organization_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.status, OrganizationStatus):
            self.status = OrganizationStatus(str(self.status).lower())
        self.fiscal_year_end = parse_fiscal_date(self.fiscal_year_end)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrganizationContext":
        return cls(
            organization_id=_pick(data, "organization_id", "organizationId", default=""),
            country=_pick(data, "country"),
            industry=_pick(data, "industry"),
            status=_pick(data, "status", default=OrganizationStatus.SETUP.value),
            has_transactions=bool(_pick(data, "has_transactions", "hasTransactions", default=False)),
            fiscal_year_end=_pick(data, "fiscal_year_end", "fiscalYearEnd"),
            regulatory_requirements=list(
                _pick(data, "regulatory_requirements", "regulatoryRequirements", default=[])
            ),
            multi_location=bool(_pick(data, "multi_location", "multiLocation", default=False)),
            parent_organization_id=_pick(
                data, "parent_organization_id", "parentOrganizationId", "parent_org_id"
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "country": self.country,
            "industry": self.industry,
            "status": self.status.value,
            "has_transactions": self.has_transactions,
            "fiscal_year_end": self.fiscal_year_end.isoformat() if self.fiscal_year_end else None,
            "regulatory_requirements": list(self.regulatory_requirements),
            "multi_location": self.multi_location,
            "parent_organization_id": self.parent_organization_id,
        }


@dataclass
class CoaAssignmentRequest:
    """A proposed template assignment for one organization"""
    organization_id: str
    assigned_by: str
    country_template: Optional[str] = None
    industry_template: Optional[str] = None
    allow_custom_accounts: bool = False

    def __post_init__(self):
        # Template ids are file stems; normalize the way the store does
        if self.country_template:
            self.country_template = self.country_template.strip().lower()
        if self.industry_template:
            self.industry_template = self.industry_template.strip().lower()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CoaAssignmentRequest":
        return cls(
            organization_id=_pick(data, "organization_id", "organizationId", default=""),
            assigned_by=_pick(data, "assigned_by", "assignedBy", default=""),
            country_template=_pick(data, "country_template", "countryTemplate"),
            industry_template=_pick(data, "industry_template", "industryTemplate"),
            allow_custom_accounts=bool(
                _pick(data, "allow_custom_accounts", "allowCustomAccounts", default=False)
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "assigned_by": self.assigned_by,
            "country_template": self.country_template,
            "industry_template": self.industry_template,
            "allow_custom_accounts": self.allow_custom_accounts,
        }


# =============================================================================
# Validation Result Models
# =============================================================================

@dataclass
class ValidationErrorItem:
    """A structured validation error"""
    rule_id: str
    message: str
    severity: Severity
    field: Optional[str] = None

    @property
    def is_blocking(self) -> bool:
        return self.severity in BLOCKING_SEVERITIES

    def to_dict(self) -> Dict[str, Any]:
        data = {"rule_id": self.rule_id, "message": self.message, "severity": self.severity.value}
        if self.field:
            data["field"] = self.field
        return data


@dataclass
class ValidationWarningItem:
    """A non-blocking finding"""
    rule_id: str
    message: str
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"rule_id": self.rule_id, "message": self.message}
        if self.suggestion:
            data["suggestion"] = self.suggestion
        return data


@dataclass
class RecommendationItem:
    """Advisory output, never blocking"""
    rule_id: str
    message: str
    benefit: str = ""
    flag: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"rule_id": self.rule_id, "message": self.message, "benefit": self.benefit}
        if self.flag:
            data["flag"] = self.flag
        return data


@dataclass
class ValidationResult:
    """
    Outcome of a rule evaluation or structural check.

    ``valid`` is False iff any error is critical or high.
    """
    errors: List[ValidationErrorItem] = field(default_factory=list)
    warnings: List[ValidationWarningItem] = field(default_factory=list)
    recommendations: List[RecommendationItem] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not any(e.is_blocking for e in self.errors)

    def errors_with(self, severity: Severity) -> List[ValidationErrorItem]:
        return [e for e in self.errors if e.severity == severity]

    def extend(self, other: "ValidationResult") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.recommendations.extend(other.recommendations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "recommendations": [r.to_dict() for r in self.recommendations],
        }
