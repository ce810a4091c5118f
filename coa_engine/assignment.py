"""
Assignment Service

Single entry point for COA template assignment:
1. Discover installed templates
2. Validate a proposed assignment (rules + legacy checks)
3. Merge the chart and persist the configuration with a history record
4. Read back the current configuration and history
5. Recommend templates from a free-text business profile

All collaborators are injected; build_assignment_service() wires the
default object graph from CoaSettings.
"""

import json
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterable, Tuple, Union

from connectors.assignment_api import AssignmentApiClient, AssignmentApiConfig
from core.audit.history import (
    AssignmentPersistenceError,
    AssignmentRepository,
    JSONFileAssignmentStore,
    create_history_record,
)
from core.models.assignment import (
    AssignmentStatus,
    AvailableTemplate,
    CoaAssignmentHistory,
    CoaStructureSummary,
    OrganizationCoaConfig,
    TemplateAssignmentResult,
)
from core.observability.logging import (
    get_logger,
    with_correlation,
    log_operation_start,
    log_operation_complete,
    log_operation_error,
)

from .merger import MergedCoa, TemplateMerger, compare_charts, template_accounts
from .models import (
    CoaAssignmentRequest,
    LockEnforcement,
    OrganizationContext,
    OrganizationStatus,
    Severity,
    Template,
    ValidationErrorItem,
    ValidationResult,
    ValidationWarningItem,
)
from .settings import CoaSettings
from .templates import TemplateLoadError, TemplateStore, normalize_code
from .validation import ValidationEngine

logger = get_logger(__name__)


# =============================================================================
# Compatibility
# =============================================================================

class CompatibilityMatrix:
    """
    Explicit country/industry compatibility table.

    Pairs not listed as incompatible are compatible. File format:

        {"incompatible_pairs": [{"country": "uae", "industry": "x", "reason": "..."}]}
    """

    def __init__(self, incompatible_pairs: Iterable[Tuple[str, str, str]] = ()):
        self._incompatible: Dict[Tuple[str, str], str] = {
            (normalize_code(country), normalize_code(industry)): reason
            for country, industry, reason in incompatible_pairs
        }

    @classmethod
    def from_file(cls, path: Union[str, Path, None]) -> "CompatibilityMatrix":
        """
        Load the table. A missing file means every pair is compatible.

        Raises:
            ValueError: File is malformed
        """
        if path is None or not Path(path).exists():
            logger.debug(f"No compatibility table at {path}; all pairs compatible")
            return cls()

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Failed to load compatibility table {path}: {e}") from e

        pairs = []
        for entry in data.get("incompatible_pairs", []):
            if not isinstance(entry, dict) or "country" not in entry or "industry" not in entry:
                raise ValueError(f"Invalid compatibility entry in {path}: {entry!r}")
            pairs.append((entry["country"], entry["industry"], entry.get("reason", "")))
        return cls(pairs)

    def is_compatible(self, country: Optional[str], industry: Optional[str]) -> bool:
        if not country or not industry:
            return True
        return (normalize_code(country), normalize_code(industry)) not in self._incompatible

    def reason(self, country: Optional[str], industry: Optional[str]) -> Optional[str]:
        return self._incompatible.get((normalize_code(country), normalize_code(industry)))

    def __len__(self) -> int:
        return len(self._incompatible)


# =============================================================================
# Recommendations
# =============================================================================

COUNTRY_HINTS = {
    "india": ("india", "indian", "bharat", "inr", "gst"),
    "usa": ("usa", "us", "united states", "america", "american"),
    "uk": ("uk", "united kingdom", "britain", "england", "gb", "vat uk"),
    "uae": ("uae", "united arab emirates", "dubai", "abu dhabi", "sharjah"),
}

INDUSTRY_HINTS = {
    "restaurant": ("restaurant", "cafe", "bistro", "diner", "food", "dining", "kitchen", "catering"),
    "salon": ("salon", "spa", "beauty", "barber", "hair", "nail"),
    "healthcare": ("healthcare", "clinic", "hospital", "medical", "dental", "pharmacy", "health"),
    "retail": ("retail", "store", "shop", "boutique", "ecommerce", "supermarket"),
    "manufacturing": ("manufacturing", "manufacturer", "factory", "plant", "production", "assembly"),
}


@dataclass
class TemplateRecommendation:
    """Templates suggested for a business profile"""
    country_template: Optional[str] = None
    industry_template: Optional[str] = None
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "country_template": self.country_template,
            "industry_template": self.industry_template,
            "reasons": list(self.reasons),
        }


@dataclass
class ChartPreview:
    """A customized chart and its structure check"""
    chart: MergedCoa
    validation: ValidationResult


def _match_hint(text: str, hints: Dict[str, Tuple[str, ...]]) -> Optional[Tuple[str, str]]:
    padded = f" {text} "
    for template_id, keywords in hints.items():
        for keyword in keywords:
            if f" {keyword} " in padded:
                return template_id, keyword
    return None


def _normalize_text(*values: Any) -> str:
    words = re.split(r"[^a-z0-9]+", " ".join(str(v) for v in values if v).lower())
    return " ".join(w for w in words if w)


# =============================================================================
# Service
# =============================================================================

class AssignmentService:
    """
    Orchestrates template discovery, validation and persistence.

    Usage:
        service = AssignmentService(store, merger, engine, JSONFileAssignmentStore(path))
        result = await service.assign_template(request, context)
    """

    def __init__(
        self,
        template_store: TemplateStore,
        merger: TemplateMerger,
        validation_engine: ValidationEngine,
        repository: AssignmentRepository,
        compatibility: Optional[CompatibilityMatrix] = None,
        lock_enforcement: LockEnforcement = LockEnforcement.ADVISORY,
    ):
        self.template_store = template_store
        self.merger = merger
        self.validation_engine = validation_engine
        self.repository = repository
        self.compatibility = compatibility or CompatibilityMatrix()
        self.lock_enforcement = LockEnforcement(lock_enforcement)

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def get_available_templates(self) -> List[AvailableTemplate]:
        """List installed country templates, then industry templates"""
        countries = self.template_store.get_available_country_templates()
        industries = self.template_store.get_available_industry_templates()
        available = []

        for code in countries:
            template = self._safe_load(self.template_store.get_country_template, code)
            if template is not None:
                compatible = [i for i in industries if self.compatibility.is_compatible(code, i)]
                available.append(self._describe(template, code, "country", compatible))

        for code in industries:
            template = self._safe_load(self.template_store.get_industry_template, code)
            if template is not None:
                compatible = [c for c in countries if self.compatibility.is_compatible(c, code)]
                available.append(self._describe(template, code, "industry", compatible))

        return available

    @staticmethod
    def _safe_load(loader, code: str) -> Optional[Template]:
        try:
            return loader(code)
        except TemplateLoadError as e:
            logger.error(f"Skipping unreadable template {code}: {e}")
            return None

    @staticmethod
    def _describe(template: Template, code: str, kind: str, compatible_with: List[str]) -> AvailableTemplate:
        requirements = list(template.regulatory_requirements)
        accounts = template_accounts(template)
        for account in accounts:
            tag = account.get("regulatory_requirement")
            if tag and tag not in requirements:
                requirements.append(tag)

        return AvailableTemplate(
            id=code,
            template_key=template.key,
            type=kind,
            name=template.name,
            version=template.version,
            description=template.description,
            account_count=len(accounts),
            regulatory_requirements=requirements,
            compatible_with=compatible_with,
        )

    def reload_templates(self) -> None:
        """Drop cached templates so the next read hits the disk"""
        self.template_store.clear_cache()

    # -------------------------------------------------------------------------
    # Assignment
    # -------------------------------------------------------------------------

    async def assign_template(
        self,
        request: CoaAssignmentRequest,
        context: Optional[OrganizationContext] = None,
    ) -> TemplateAssignmentResult:
        """
        Validate, merge and persist a template assignment.

        Args:
            request: The proposed assignment
            context: Organization facts; enables full rule validation

        Returns:
            TemplateAssignmentResult (success=False when validation blocks)

        Raises:
            AssignmentPersistenceError: The configuration could not be read or saved
            TemplateLoadError: The base template is unavailable
        """
        start = time.monotonic()

        with with_correlation(organization_id=request.organization_id, operation="assign_template"):
            log_operation_start(
                "assign_template",
                country_template=request.country_template,
                industry_template=request.industry_template,
            )

            try:
                current = await self.repository.get_assignment(request.organization_id)
            except AssignmentPersistenceError as e:
                log_operation_error("assign_template", str(e))
                raise

            validation = ValidationResult()
            if context is not None:
                validation = self.validation_engine.validate_coa_assignment(
                    request, context, has_existing_assignment=current is not None
                )
                if not validation.valid:
                    return self._rejected(validation)

            validation.extend(self._legacy_validation(request))
            if not validation.valid:
                return self._rejected(validation)

            if current is not None and current.locked:
                if self.lock_enforcement == LockEnforcement.ENFORCED:
                    validation.errors.append(ValidationErrorItem(
                        rule_id="configuration_locked",
                        message="The current COA configuration is locked and cannot be changed",
                        severity=Severity.HIGH,
                        field="status",
                    ))
                    return self._rejected(validation)
                validation.warnings.append(ValidationWarningItem(
                    rule_id="configuration_locked",
                    message="Changing a locked COA configuration",
                    suggestion="Obtain administrator approval before changing templates",
                ))

            try:
                merged = self.merger.build_merged_coa(request.country_template, request.industry_template)
                config = self._new_config(request, context, current)
                history = self._history_for(config, current, merged, request)

                with with_correlation(configuration_id=config.config_id):
                    saved = await self.repository.save_assignment(config, history)
            except AssignmentPersistenceError as e:
                log_operation_error("assign_template", str(e))
                raise

            summary = self._summarize(merged)
            log_operation_complete(
                "assign_template",
                duration_ms=(time.monotonic() - start) * 1000,
                configuration_id=saved.config_id,
                total_accounts=summary.total_accounts,
            )

            return TemplateAssignmentResult(
                success=True,
                configuration_id=saved.config_id,
                message=f"COA assigned from {' + '.join(summary.template_ids)} ({summary.total_accounts} accounts)",
                coa_structure=summary,
                warnings=[w.to_dict() for w in validation.warnings],
                recommendations=[r.to_dict() for r in validation.recommendations],
            )

    def _rejected(self, validation: ValidationResult) -> TemplateAssignmentResult:
        summary = self.validation_engine.get_validation_summary(validation)
        log_operation_error("assign_template", summary, errors=len(validation.errors))
        return TemplateAssignmentResult(
            success=False,
            message=summary,
            errors=[e.to_dict() for e in validation.errors],
            warnings=[w.to_dict() for w in validation.warnings],
            recommendations=[r.to_dict() for r in validation.recommendations],
        )

    def _legacy_validation(self, request: CoaAssignmentRequest) -> ValidationResult:
        """Field and template-existence checks for callers without context"""
        result = ValidationResult()

        if not (request.organization_id or "").strip():
            result.errors.append(ValidationErrorItem(
                rule_id="legacy_required_fields",
                message="Organization id is required",
                severity=Severity.CRITICAL,
                field="organization_id",
            ))
        if not (request.assigned_by or "").strip():
            result.errors.append(ValidationErrorItem(
                rule_id="legacy_required_fields",
                message="Assigning user is required",
                severity=Severity.HIGH,
                field="assigned_by",
            ))

        if request.country_template and \
                request.country_template not in self.template_store.get_available_country_templates():
            result.errors.append(ValidationErrorItem(
                rule_id="legacy_template_exists",
                message=f"Country template '{request.country_template}' is not installed",
                severity=Severity.HIGH,
                field="country_template",
            ))
        if request.industry_template and \
                request.industry_template not in self.template_store.get_available_industry_templates():
            result.errors.append(ValidationErrorItem(
                rule_id="legacy_template_exists",
                message=f"Industry template '{request.industry_template}' is not installed",
                severity=Severity.HIGH,
                field="industry_template",
            ))

        if not self.compatibility.is_compatible(request.country_template, request.industry_template):
            reason = self.compatibility.reason(request.country_template, request.industry_template)
            result.warnings.append(ValidationWarningItem(
                rule_id="legacy_template_compatibility",
                message=(
                    f"Country template '{request.country_template}' is not marked compatible "
                    f"with industry template '{request.industry_template}'"
                ),
                suggestion=reason or None,
            ))

        return result

    def _new_config(
        self,
        request: CoaAssignmentRequest,
        context: Optional[OrganizationContext],
        current: Optional[OrganizationCoaConfig],
    ) -> OrganizationCoaConfig:
        config = OrganizationCoaConfig(
            organization_id=request.organization_id,
            country_template=request.country_template,
            industry_template=request.industry_template,
            assigned_by=request.assigned_by,
            allow_custom_accounts=request.allow_custom_accounts,
            auto_sync=current.auto_sync if current is not None else True,
        )
        config.transition_to(AssignmentStatus.PENDING)
        config.transition_to(AssignmentStatus.ACTIVE)

        if context is not None and context.status == OrganizationStatus.LIVE and context.has_transactions:
            config.transition_to(AssignmentStatus.LOCKED)
        return config

    def _history_for(
        self,
        config: OrganizationCoaConfig,
        current: Optional[OrganizationCoaConfig],
        merged: MergedCoa,
        request: CoaAssignmentRequest,
    ) -> CoaAssignmentHistory:
        if current is None:
            affected = len(merged.accounts)
            preserved = True
        else:
            previous = self.merger.build_merged_coa(current.country_template, current.industry_template)
            affected = compare_charts(previous.accounts, merged.accounts).change_count
            preserved = request.allow_custom_accounts or not current.allow_custom_accounts
        return create_history_record(config, current, affected, preserved)

    @staticmethod
    def _summarize(merged: MergedCoa) -> CoaStructureSummary:
        layers = []
        accounts_by_layer = {}
        for layer_id in merged.layers:
            kind = "base" if layer_id == "universal_base" else layer_id.split("_", 1)[0]
            layers.append(kind)
            accounts_by_layer[kind] = merged.layer_counts.get(layer_id, 0)

        return CoaStructureSummary(
            layers=layers,
            template_ids=list(merged.layers),
            accounts_by_layer=accounts_by_layer,
            total_accounts=merged.metadata.get("total_accounts", 0),
            required_accounts=merged.metadata.get("required_accounts", 0),
            country_specific_accounts=merged.metadata.get("country_specific_accounts", 0),
            industry_specific_accounts=merged.metadata.get("industry_specific_accounts", 0),
        )

    # -------------------------------------------------------------------------
    # Read-through
    # -------------------------------------------------------------------------

    async def get_organization_assignment(self, organization_id: str) -> Optional[OrganizationCoaConfig]:
        """Current configuration, or None when nothing has been assigned"""
        with with_correlation(organization_id=organization_id, operation="get_organization_assignment"):
            return await self.repository.get_assignment(organization_id)

    async def get_assignment_history(self, organization_id: str) -> List[CoaAssignmentHistory]:
        """History records, oldest first"""
        with with_correlation(organization_id=organization_id, operation="get_assignment_history"):
            return await self.repository.get_history(organization_id)

    # -------------------------------------------------------------------------
    # Customization
    # -------------------------------------------------------------------------

    async def preview_customizations(
        self,
        organization_id: str,
        additional_accounts: Optional[List[Dict[str, Any]]] = None,
        account_modifications: Optional[Dict[str, Dict[str, Any]]] = None,
        exclude_accounts: Optional[List[str]] = None,
    ) -> Optional[ChartPreview]:
        """
        Apply organization customizations to its assigned chart and check the result.

        New accounts need ``allow_custom_accounts`` on the current configuration;
        without it the assigned chart is returned unchanged with a high error.

        Returns:
            ChartPreview, or None when the organization has no assignment

        Raises:
            AssignmentPersistenceError: The configuration could not be read
        """
        with with_correlation(organization_id=organization_id, operation="preview_customizations"):
            current = await self.repository.get_assignment(organization_id)
            if current is None:
                return None

            merged = self.merger.build_merged_coa(current.country_template, current.industry_template)

            if additional_accounts and not current.allow_custom_accounts:
                validation = ValidationResult(errors=[ValidationErrorItem(
                    rule_id="custom_accounts_not_allowed",
                    message=f"Configuration {current.config_id} does not allow custom accounts",
                    severity=Severity.HIGH,
                    field="allow_custom_accounts",
                )])
                return ChartPreview(chart=merged, validation=validation)

            customized = self.merger.apply_customizations(
                merged,
                additional_accounts=additional_accounts,
                account_modifications=account_modifications,
                exclude_accounts=exclude_accounts,
            )
            validation = self.validation_engine.validate_account_structure(customized.accounts)
            logger.info(
                "Customization preview built",
                extra_fields={"valid": validation.valid, **customized.metadata["customizations"]},
            )
            return ChartPreview(chart=customized, validation=validation)

    # -------------------------------------------------------------------------
    # Recommendation
    # -------------------------------------------------------------------------

    def get_template_recommendation(self, profile: Dict[str, Any]) -> TemplateRecommendation:
        """
        Suggest templates from free-text hints.

        Args:
            profile: country / industry / business_type / description hints
        """
        recommendation = TemplateRecommendation()

        country_text = _normalize_text(profile.get("country"), profile.get("location"))
        industry_text = _normalize_text(
            profile.get("industry"), profile.get("business_type"), profile.get("description")
        )

        country_match = _match_hint(country_text, COUNTRY_HINTS)
        if country_match:
            template_id, keyword = country_match
            if template_id in self.template_store.get_available_country_templates():
                recommendation.country_template = template_id
                recommendation.reasons.append(
                    f"'{keyword}' indicates {template_id}: local tax and statutory accounts are included"
                )
        elif country_text:
            recommendation.reasons.append(
                f"No country template matches '{country_text}'; the universal base will be used"
            )

        industry_match = _match_hint(industry_text, INDUSTRY_HINTS)
        if industry_match:
            template_id, keyword = industry_match
            if template_id in self.template_store.get_available_industry_templates():
                recommendation.industry_template = template_id
                recommendation.reasons.append(
                    f"'{keyword}' indicates {template_id}: industry revenue and cost accounts are included"
                )

        if recommendation.country_template and recommendation.industry_template and \
                not self.compatibility.is_compatible(recommendation.country_template, recommendation.industry_template):
            recommendation.reasons.append(
                f"{recommendation.country_template} and {recommendation.industry_template} "
                f"are marked incompatible; review before assigning"
            )

        return recommendation


# =============================================================================
# Wiring
# =============================================================================

def build_repository(settings: CoaSettings) -> AssignmentRepository:
    """Create the persistence backend selected by settings"""
    if settings.assignment_backend == "api":
        return AssignmentApiClient(AssignmentApiConfig(
            base_url=settings.assignment_api_url,
            token=settings.assignment_api_token,
        ))
    return JSONFileAssignmentStore(settings.assignment_store_dir)


def build_assignment_service(
    settings: Optional[CoaSettings] = None,
    repository: Optional[AssignmentRepository] = None,
) -> AssignmentService:
    """
    Wire the default object graph.

    Args:
        settings: Resolved settings (defaults to CoaSettings.from_env())
        repository: Persistence backend override
    """
    settings = settings or CoaSettings.from_env()

    store = TemplateStore(settings.template_dir)
    merger = TemplateMerger(store)
    engine = ValidationEngine(
        store,
        merger=merger,
        rules_path=settings.rules_path,
        lock_enforcement=settings.lock_enforcement,
    )

    return AssignmentService(
        template_store=store,
        merger=merger,
        validation_engine=engine,
        repository=repository or build_repository(settings),
        compatibility=CompatibilityMatrix.from_file(settings.compatibility_path),
        lock_enforcement=settings.lock_enforcement,
    )
