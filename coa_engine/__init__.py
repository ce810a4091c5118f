"""
COA Engine Package

Chart-of-accounts template assignment and validation.

Features:
- Layered templates (universal base → country → industry)
- Declarative assignment rules (system, validation, governance, recommendation)
- Account structure checks (required accounts, duplicates, normal balances)
- Assignment persistence with append-only history

Usage:
    from coa_engine import build_assignment_service, CoaAssignmentRequest, OrganizationContext

    service = build_assignment_service()
    result = await service.assign_template(
        CoaAssignmentRequest(organization_id="org-1", assigned_by="u1",
                             country_template="india", industry_template="restaurant"),
        OrganizationContext(organization_id="org-1", country="india"),
    )
"""

from .models import (
    # Enums
    AccountType,
    NormalBalance,
    RuleType,
    Severity,
    OrganizationStatus,
    LockEnforcement,

    # Data classes
    Account,
    Template,
    ValidationRule,
    OrganizationContext,
    CoaAssignmentRequest,
    ValidationErrorItem,
    ValidationWarningItem,
    RecommendationItem,
    ValidationResult,

    # Helpers
    expected_normal_balance,
)

from .conditions import (
    Always,
    RequiresField,
    Exists,
    StatusEquals,
    BooleanEquals,
    AllOf,
    AnyOf,
    RuleContext,
    parse_condition,
    evaluate_condition,
)

from .templates import (
    TemplateStore,
    TemplateLoadError,
)

from .merger import (
    TemplateMerger,
    MergedCoa,
    CompatibilityReport,
    ChartComparison,
    compare_charts,
    extract_accounts,
)

from .rules import (
    RuleLoadError,
    load_rules,
)

from .validation import (
    ValidationEngine,
    REQUIRED_ACCOUNTS,
)

from .settings import CoaSettings

from .assignment import (
    AssignmentService,
    CompatibilityMatrix,
    ChartPreview,
    TemplateRecommendation,
    build_assignment_service,
)

__all__ = [
    # Enums
    "AccountType",
    "NormalBalance",
    "RuleType",
    "Severity",
    "OrganizationStatus",
    "LockEnforcement",

    # Models
    "Account",
    "Template",
    "ValidationRule",
    "OrganizationContext",
    "CoaAssignmentRequest",
    "ValidationErrorItem",
    "ValidationWarningItem",
    "RecommendationItem",
    "ValidationResult",
    "expected_normal_balance",

    # Conditions
    "Always",
    "RequiresField",
    "Exists",
    "StatusEquals",
    "BooleanEquals",
    "AllOf",
    "AnyOf",
    "RuleContext",
    "parse_condition",
    "evaluate_condition",

    # Templates
    "TemplateStore",
    "TemplateLoadError",
    "TemplateMerger",
    "MergedCoa",
    "CompatibilityReport",
    "ChartComparison",
    "compare_charts",
    "extract_accounts",

    # Rules / validation
    "RuleLoadError",
    "load_rules",
    "ValidationEngine",
    "REQUIRED_ACCOUNTS",

    # Service
    "CoaSettings",
    "AssignmentService",
    "CompatibilityMatrix",
    "ChartPreview",
    "TemplateRecommendation",
    "build_assignment_service",
]
