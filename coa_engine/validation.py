"""
Validation Engine

Evaluates the declarative assignment rules against a proposed template
assignment, and checks the structure of a chart of accounts.

Rule evaluation:
1. Active rules run in priority order (lower first)
2. Rules whose condition is not met are skipped
3. A rule's named check (or its action payload) yields findings
4. The rule type decides what a finding becomes:
   - system:          warning, or error when it carries a severity
   - validation:      error (default severity high)
   - governance:      warning, or error when it carries a severity
   - recommendation:  recommendation
5. A critical error from a system rule stops evaluation

A rule that raises is reported as a medium error and evaluation continues.
"""

from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Optional, Dict, Any, List, Callable, Iterable, Union

from core.observability.logging import get_logger, with_correlation

from .conditions import RuleContext, evaluate_condition
from .merger import TemplateMerger
from .models import (
    Account,
    CoaAssignmentRequest,
    LockEnforcement,
    OrganizationContext,
    RecommendationItem,
    RuleType,
    Severity,
    ValidationErrorItem,
    ValidationResult,
    ValidationRule,
    ValidationWarningItem,
    expected_normal_balance,
)
from .rules import load_rules
from .templates import TemplateLoadError, TemplateStore, normalize_code

logger = get_logger(__name__)


# Accounts every chart must contain, with the severity of their absence
REQUIRED_ACCOUNTS = {
    "1100000": ("Cash and Cash Equivalents", Severity.CRITICAL),
    "1200000": ("Accounts Receivable", Severity.HIGH),
    "2100000": ("Accounts Payable", Severity.HIGH),
    "3100000": ("Owner's Capital", Severity.CRITICAL),
    "3300000": ("Retained Earnings", Severity.HIGH),
    "4100000": ("Sales Revenue", Severity.CRITICAL),
    "5000000": ("Cost of Goods Sold", Severity.HIGH),
}


@dataclass
class CheckFinding:
    """
    Raw output of a rule check, before the rule type is applied.

    Attributes:
        message: Formatted message
        field: Field the finding refers to
        suggestion: Suggested fix (warnings)
        severity: Explicit severity; turns system/governance findings into errors
        advisory: Always reported as a warning regardless of rule type
    """
    message: str
    field: Optional[str] = None
    suggestion: Optional[str] = None
    severity: Optional[Severity] = None
    advisory: bool = False


class _SafeDict(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def format_message(template: str, values: Dict[str, Any]) -> str:
    """Fill ``{placeholders}``; unknown placeholders are left as-is"""
    if not template:
        return ""
    try:
        return str(template).format_map(_SafeDict({k: v for k, v in values.items() if v is not None}))
    except (ValueError, IndexError, AttributeError):
        return str(template)


def _severity(value: Any) -> Optional[Severity]:
    if value is None or value == "":
        return None
    return Severity(str(value).lower())


def _shift_year(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return d.replace(year=d.year + years, day=28)


def fiscal_year_window(fiscal_year_end: date):
    """Return (start, end) of the 12 months ending at fiscal_year_end"""
    start = _shift_year(fiscal_year_end, -1) + timedelta(days=1)
    return start, fiscal_year_end


CheckFn = Callable[["ValidationEngine", ValidationRule, RuleContext], List[CheckFinding]]


class ValidationEngine:
    """
    Rule-based validator for COA assignments.

    Usage:
        engine = ValidationEngine(TemplateStore())
        result = engine.validate_coa_assignment(request, context)
        print(engine.get_validation_summary(result))
    """

    def __init__(
        self,
        template_store: TemplateStore,
        merger: Optional[TemplateMerger] = None,
        rules: Optional[List[ValidationRule]] = None,
        rules_path: Union[str, Path, None] = None,
        lock_enforcement: LockEnforcement = LockEnforcement.ADVISORY,
        today: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize the engine.

        Args:
            template_store: Source of templates for compatibility checks
            merger: Merger to use (defaults to one over template_store)
            rules: Pre-loaded rules (skips reading rules_path)
            rules_path: Rules file (defaults to the packaged rules)
            lock_enforcement: Advisory (warn) or enforced (block) go-live lock
            today: Clock for the fiscal year check
        """
        self.template_store = template_store
        self.merger = merger or TemplateMerger(template_store)
        if rules is None:
            rules = load_rules(rules_path)
        # Keep priority order even for caller-supplied rules
        self.rules = sorted(rules, key=lambda r: r.priority)
        self.lock_enforcement = LockEnforcement(lock_enforcement)
        self._today = today or date.today

        self._checks: Dict[str, CheckFn] = {
            "base_template": ValidationEngine._check_base_template,
            "template_compatibility": ValidationEngine._check_template_compatibility,
            "regulatory_compliance": ValidationEngine._check_regulatory_compliance,
            "lock_after_go_live": ValidationEngine._check_lock_after_go_live,
            "fiscal_year_alignment": ValidationEngine._check_fiscal_year_alignment,
            "industry_template": ValidationEngine._check_industry_template,
        }

    # -------------------------------------------------------------------------
    # Rule evaluation
    # -------------------------------------------------------------------------

    def validate_coa_assignment(
        self,
        request: CoaAssignmentRequest,
        context: OrganizationContext,
        has_existing_assignment: bool = True,
    ) -> ValidationResult:
        """
        Evaluate all active rules against a proposed assignment.

        Args:
            request: The proposed assignment
            context: Facts about the organization
            has_existing_assignment: False for a first assignment; the enforced
                go-live lock only protects an existing chart

        Returns:
            ValidationResult (never raises for rule failures)
        """
        result = ValidationResult()
        rule_context = RuleContext(request, context, has_existing_assignment)

        with with_correlation(organization_id=request.organization_id, operation="validate_coa_assignment"):
            for rule in self.rules:
                if not rule.active:
                    continue

                with with_correlation(rule_id=rule.id):
                    try:
                        if not evaluate_condition(rule.condition, rule_context):
                            continue
                        outcome = self._apply_rule(rule, rule_context)
                    except Exception as e:
                        logger.exception(f"Rule {rule.id} failed: {e}")
                        result.errors.append(ValidationErrorItem(
                            rule_id=rule.id,
                            message=f"Rule execution failed: {e}",
                            severity=Severity.MEDIUM,
                        ))
                        continue

                    result.extend(outcome)

                    if rule.type == RuleType.SYSTEM and outcome.errors_with(Severity.CRITICAL):
                        logger.warning(f"System rule {rule.id} failed critically; stopping evaluation")
                        break

        logger.debug(
            "Assignment validation finished",
            extra_fields={
                "valid": result.valid,
                "errors": len(result.errors),
                "warnings": len(result.warnings),
                "recommendations": len(result.recommendations),
            },
        )
        return result

    def _apply_rule(self, rule: ValidationRule, ctx: RuleContext) -> ValidationResult:
        outcome = ValidationResult()
        action = rule.action

        check_name = action.get("check")
        if check_name:
            check = self._checks.get(check_name)
            if check is None:
                raise ValueError(f"Unknown check {check_name!r}")
            findings = check(self, rule, ctx)
        else:
            findings = [self._default_finding(rule, ctx)]

        default_severity = _severity(action.get("severity"))

        for finding in findings:
            if rule.type == RuleType.RECOMMENDATION:
                outcome.recommendations.append(RecommendationItem(
                    rule_id=rule.id,
                    message=finding.message,
                    benefit=format_message(action.get("benefit", ""), ctx.format_values()),
                    flag=action.get("flag"),
                ))
                continue

            severity = finding.severity
            if rule.type == RuleType.VALIDATION and severity is None:
                severity = default_severity or Severity.HIGH

            if finding.advisory or severity is None:
                outcome.warnings.append(ValidationWarningItem(
                    rule_id=rule.id,
                    message=finding.message,
                    suggestion=finding.suggestion,
                ))
            else:
                outcome.errors.append(ValidationErrorItem(
                    rule_id=rule.id,
                    message=finding.message,
                    severity=severity,
                    field=finding.field,
                ))

        return outcome

    def _default_finding(self, rule: ValidationRule, ctx: RuleContext, **extra) -> CheckFinding:
        action = rule.action
        values = ctx.format_values()
        values.update(extra)
        return CheckFinding(
            message=format_message(action.get("message", rule.name), values),
            field=action.get("field"),
            suggestion=format_message(action.get("suggestion", ""), values) or None,
            severity=_severity(action.get("severity")),
        )

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def _check_base_template(self, rule: ValidationRule, ctx: RuleContext) -> List[CheckFinding]:
        try:
            base = self.template_store.get_base_template()
        except TemplateLoadError as e:
            return [CheckFinding(
                message=f"Universal base template could not be loaded: {e}",
                severity=Severity.CRITICAL,
            )]
        return [self._default_finding(rule, ctx, base_template=base.id, base_version=base.version)]

    def _check_template_compatibility(self, rule: ValidationRule, ctx: RuleContext) -> List[CheckFinding]:
        request = ctx.request
        report = self.merger.validate_template_compatibility(
            request.country_template, request.industry_template
        )
        severity = _severity(rule.action.get("severity")) or Severity.HIGH

        findings = [
            CheckFinding(message=c["message"], field="template_assignment", severity=severity)
            for c in report.conflicts
        ]
        findings.extend(CheckFinding(message=w, advisory=True) for w in report.warnings)
        return findings

    def _check_regulatory_compliance(self, rule: ValidationRule, ctx: RuleContext) -> List[CheckFinding]:
        requirements: Dict[str, Dict[str, str]] = {
            k.upper(): v for k, v in (rule.action.get("requirements") or {}).items()
        }
        findings = []

        for tag in ctx.organization.regulatory_requirements:
            expected = requirements.get(str(tag).upper())
            if expected is None:
                findings.append(CheckFinding(
                    message=f"No template mapping is defined for regulatory requirement {tag}",
                    advisory=True,
                ))
                continue

            field_name = expected["field"]
            template_id = normalize_code(expected["template"])
            chosen = normalize_code(getattr(ctx.request, field_name, None))
            if chosen != template_id:
                finding = self._default_finding(
                    rule, ctx,
                    requirement=str(tag).upper(),
                    required_template=template_id,
                )
                finding.field = f"template_assignment.{field_name}"
                findings.append(finding)
        return findings

    def _check_lock_after_go_live(self, rule: ValidationRule, ctx: RuleContext) -> List[CheckFinding]:
        finding = self._default_finding(rule, ctx)
        if self.lock_enforcement == LockEnforcement.ENFORCED and ctx.has_existing_assignment:
            finding.severity = Severity.HIGH
            finding.field = finding.field or "organization.status"
        else:
            finding.severity = None
        return [finding]

    def _check_fiscal_year_alignment(self, rule: ValidationRule, ctx: RuleContext) -> List[CheckFinding]:
        fiscal_year_end = ctx.organization.fiscal_year_end
        if fiscal_year_end is None:
            return []

        start, end = fiscal_year_window(fiscal_year_end)
        if not (start <= self._today() <= end):
            return []

        return [self._default_finding(
            rule, ctx,
            fiscal_year_start=start.isoformat(),
            fiscal_year_end=end.isoformat(),
        )]

    def _check_industry_template(self, rule: ValidationRule, ctx: RuleContext) -> List[CheckFinding]:
        industry = normalize_code(ctx.organization.industry)
        if industry not in self.template_store.get_available_industry_templates():
            return []
        return [self._default_finding(rule, ctx, recommended_template=industry)]

    # -------------------------------------------------------------------------
    # Account structure
    # -------------------------------------------------------------------------

    def validate_account_structure(
        self,
        accounts: Iterable[Union[Account, Dict[str, Any]]],
    ) -> ValidationResult:
        """
        Check a chart of accounts independently of the rules.

        - every required account code is present (critical/high)
        - no duplicate codes (critical)
        - normal balance matches the code range (warning)

        Entries without a code are skipped and reported as warnings.
        """
        result = ValidationResult()
        parsed = []
        for entry in accounts:
            if isinstance(entry, Account):
                parsed.append(entry)
            elif not str(entry.get("code") or "").strip():
                result.warnings.append(ValidationWarningItem(
                    rule_id="malformed_account",
                    message=f"Skipped account entry without a code: {entry.get('name') or entry!r}",
                ))
            else:
                parsed.append(Account.from_dict(entry))
        codes = [a.code for a in parsed]
        present = set(codes)

        for code, (name, severity) in REQUIRED_ACCOUNTS.items():
            if code not in present:
                result.errors.append(ValidationErrorItem(
                    rule_id="required_accounts",
                    message=f"Required account {code} ({name}) is missing",
                    severity=severity,
                    field=f"accounts.{code}",
                ))

        for code, count in Counter(codes).items():
            if count > 1:
                result.errors.append(ValidationErrorItem(
                    rule_id="duplicate_account_codes",
                    message=f"Account code {code} appears {count} times",
                    severity=Severity.CRITICAL,
                    field=f"accounts.{code}",
                ))

        for account in parsed:
            expected = expected_normal_balance(account.code)
            if expected is not None and account.normal_balance != expected.value:
                result.warnings.append(ValidationWarningItem(
                    rule_id="normal_balance_convention",
                    message=(
                        f"Account {account.code} ({account.name}) has a {account.normal_balance} "
                        f"normal balance; codes starting with {account.code[0]} are usually {expected.value}"
                    ),
                    suggestion=f"Confirm that {account.code} is intended as a contra account",
                ))

        return result

    # -------------------------------------------------------------------------
    # Summary
    # -------------------------------------------------------------------------

    @staticmethod
    def get_validation_summary(result: ValidationResult) -> str:
        """One human-readable status line for display"""
        critical = result.errors_with(Severity.CRITICAL)
        high = result.errors_with(Severity.HIGH)
        warnings = len(result.warnings)
        recommendations = len(result.recommendations)

        if critical:
            return f"Critical issues found: {len(critical)} critical error(s) must be resolved before assignment"
        if high:
            return f"Validation failed: {len(high)} high-priority error(s) and {warnings} warning(s) need attention"
        if result.errors or warnings or recommendations:
            summary = f"Validation passed with {warnings} warning(s) and {recommendations} recommendation(s)"
            if result.errors:
                summary += f" ({len(result.errors)} non-blocking error(s))"
            return summary
        return "Validation passed: template assignment is ready"
