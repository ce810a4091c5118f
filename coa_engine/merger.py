"""
Template Merger

Builds one chart of accounts from up to three template layers:
1. Universal base (nested account_structure)
2. Country overlay (country_specific_accounts)
3. Industry overlay (industry_specific_accounts)

Later layers override earlier ones on account code collision by shallow
field merge, so precedence is industry > country > base. Also provides
organization customizations and chart-to-chart comparison.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Iterable

from core.observability.logging import get_logger

from .models import Account
from .templates import TemplateStore, normalize_code

logger = get_logger(__name__)

BASE_LAYER = "universal_base"
CUSTOM_LAYER = "custom"

# Keys inside account_structure sections that are never subsections
_RESERVED_KEYS = ("accounts", "range")


# =============================================================================
# Extraction
# =============================================================================

def extract_accounts(
    structure: Any,
    account_type: Optional[str] = None,
    subtype: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Recursively collect every ``accounts`` array in a nested structure.

    Accounts without an explicit type inherit the top-level section key
    (assets, liabilities, ...); accounts without a subtype inherit the
    nearest enclosing subsection key.

    Args:
        structure: Base template account_structure (or any subsection)
        account_type: Inherited account type
        subtype: Inherited subtype

    Returns:
        List of account dicts (copies, safe to mutate)
    """
    accounts: List[Dict[str, Any]] = []
    if not isinstance(structure, dict):
        return accounts

    for key, value in structure.items():
        if key == "accounts":
            if not isinstance(value, list):
                continue
            for item in value:
                if not isinstance(item, dict):
                    continue
                entry = dict(item)
                if account_type:
                    entry.setdefault("type", account_type)
                if subtype:
                    entry.setdefault("subtype", subtype)
                accounts.append(entry)
        elif key in _RESERVED_KEYS:
            continue
        elif isinstance(value, dict):
            child_type = account_type or key
            child_subtype = key if account_type else subtype
            accounts.extend(extract_accounts(value, child_type, child_subtype))

    return accounts


def extract_layer_accounts(section: Any, flag: str) -> List[Dict[str, Any]]:
    """
    Flatten an overlay section and tag its accounts.

    The section is either a list of accounts or a mapping of group name to
    list of accounts.

    Args:
        section: country_specific_accounts / industry_specific_accounts
        flag: Tag to set on every account (country_specific / industry_specific)
    """
    if section is None:
        return []

    if isinstance(section, list):
        groups: Iterable[Any] = [section]
    elif isinstance(section, dict):
        groups = section.values()
    else:
        return []

    accounts = []
    for group in groups:
        if not isinstance(group, list):
            continue
        for item in group:
            if isinstance(item, dict):
                entry = dict(item)
                entry[flag] = True
                accounts.append(entry)
    return accounts


def template_accounts(template) -> List[Dict[str, Any]]:
    """All accounts of any template document, whatever its layout"""
    return (
        extract_accounts(template.account_structure)
        + extract_layer_accounts(template.country_specific_accounts, "country_specific")
        + extract_layer_accounts(template.industry_specific_accounts, "industry_specific")
    )


# =============================================================================
# Result Models
# =============================================================================

@dataclass
class MergedCoa:
    """
    A merged chart of accounts.

    Attributes:
        accounts: Accounts sorted by code
        layers: Applied layer ids in order (universal_base, country_x, industry_y)
        metadata: Summary counts
        layer_counts: Accounts contributed by each layer (before overrides)
        overrides: Code collisions resolved in favour of a later layer
        layer_duplicates: Codes defined more than once inside a single layer
    """
    accounts: List[Account]
    layers: List[str]
    metadata: Dict[str, Any] = field(default_factory=dict)
    layer_counts: Dict[str, int] = field(default_factory=dict)
    overrides: List[Dict[str, str]] = field(default_factory=list)
    layer_duplicates: List[Dict[str, Any]] = field(default_factory=list)

    def get(self, code: str) -> Optional[Account]:
        for account in self.accounts:
            if account.code == code:
                return account
        return None

    def codes(self) -> List[str]:
        return [a.code for a in self.accounts]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layers": list(self.layers),
            "metadata": dict(self.metadata),
            "layer_counts": dict(self.layer_counts),
            "overrides": list(self.overrides),
            "accounts": [a.to_dict() for a in self.accounts],
        }


@dataclass
class CompatibilityReport:
    """Result of a template compatibility check"""
    valid: bool
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "conflicts": self.conflicts, "warnings": self.warnings}


@dataclass
class ChartComparison:
    """Differences between two charts of accounts"""
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    modified: List[Dict[str, Any]] = field(default_factory=list)
    similarity_score: float = 1.0
    migration_complexity: str = "low"

    @property
    def change_count(self) -> int:
        return len(self.added) + len(self.removed) + len(self.modified)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": self.added,
            "removed": self.removed,
            "modified": self.modified,
            "similarity_score": self.similarity_score,
            "migration_complexity": self.migration_complexity,
            "change_count": self.change_count,
        }


def _summarize(accounts: List[Account]) -> Dict[str, int]:
    return {
        "total_accounts": len(accounts),
        "required_accounts": sum(1 for a in accounts if a.required),
        "country_specific_accounts": sum(1 for a in accounts if a.country_specific),
        "industry_specific_accounts": sum(1 for a in accounts if a.industry_specific),
    }


# =============================================================================
# Merger
# =============================================================================

class TemplateMerger:
    """
    Combines base, country and industry layers into one chart.

    Usage:
        merger = TemplateMerger(TemplateStore())
        merged = merger.build_merged_coa("india", "restaurant")
    """

    def __init__(self, template_store: TemplateStore):
        self.template_store = template_store

    def build_merged_coa(
        self,
        country_code: Optional[str] = None,
        industry_code: Optional[str] = None,
    ) -> MergedCoa:
        """
        Merge the requested layers.

        Layers whose template is not installed are skipped.

        Raises:
            TemplateLoadError: Base template missing or malformed
        """
        base = self.template_store.get_base_template()

        merged: Dict[str, Dict[str, Any]] = {}
        sources: Dict[str, str] = {}
        result = MergedCoa(accounts=[], layers=[])

        self._apply_layer(BASE_LAYER, extract_accounts(base.account_structure), merged, sources, result)

        if country_code:
            country = self.template_store.get_country_template(country_code)
            if country is not None:
                self._apply_layer(
                    f"country_{normalize_code(country_code)}",
                    extract_layer_accounts(country.country_specific_accounts, "country_specific"),
                    merged, sources, result,
                )

        if industry_code:
            industry = self.template_store.get_industry_template(industry_code)
            if industry is not None:
                self._apply_layer(
                    f"industry_{normalize_code(industry_code)}",
                    extract_layer_accounts(industry.industry_specific_accounts, "industry_specific"),
                    merged, sources, result,
                )

        result.accounts = sorted((Account.from_dict(d) for d in merged.values()), key=lambda a: a.code)
        result.metadata = _summarize(result.accounts)

        logger.debug(
            f"Merged chart built from {result.layers}",
            extra_fields={"total_accounts": len(result.accounts)},
        )
        return result

    def _apply_layer(
        self,
        layer: str,
        accounts: List[Dict[str, Any]],
        merged: Dict[str, Dict[str, Any]],
        sources: Dict[str, str],
        result: MergedCoa,
    ) -> None:
        seen_in_layer: Counter = Counter()

        for account in accounts:
            code = str(account.get("code", "")).strip()
            if not code:
                logger.warning(f"Skipping account without code in layer {layer}")
                continue
            account["code"] = code
            seen_in_layer[code] += 1

            if code in merged:
                replaced = sources[code]
                merged[code] = {**merged[code], **account}
                if replaced != layer:
                    result.overrides.append({"code": code, "layer": layer, "replaced_layer": replaced})
            else:
                merged[code] = account
            sources[code] = layer

        for code, count in seen_in_layer.items():
            if count > 1:
                result.layer_duplicates.append({"code": code, "layer": layer, "occurrences": count})

        result.layers.append(layer)
        result.layer_counts[layer] = len(accounts)

    def validate_template_compatibility(
        self,
        country_code: Optional[str] = None,
        industry_code: Optional[str] = None,
    ) -> CompatibilityReport:
        """
        Check that the requested layers merge into a consistent chart.

        Conflicts (make the report invalid):
        - a code defined more than once inside one layer
        - a duplicate code surviving the merge

        Warnings:
        - a requested layer that is not installed
        - a code redefined by a later layer
        """
        conflicts: List[Dict[str, Any]] = []
        warnings: List[str] = []

        merged = self.build_merged_coa(country_code, industry_code)

        if country_code and f"country_{normalize_code(country_code)}" not in merged.layers:
            warnings.append(f"Country template '{country_code}' not found; it was not applied")
        if industry_code and f"industry_{normalize_code(industry_code)}" not in merged.layers:
            warnings.append(f"Industry template '{industry_code}' not found; it was not applied")

        for dup in merged.layer_duplicates:
            conflicts.append({
                **dup,
                "message": f"Account {dup['code']} is defined {dup['occurrences']} times in {dup['layer']}",
            })

        for code, count in Counter(merged.codes()).items():
            if count > 1:
                conflicts.append({
                    "code": code,
                    "layer": "merged",
                    "occurrences": count,
                    "message": f"Account {code} appears {count} times in the merged chart",
                })

        for override in merged.overrides:
            warnings.append(
                f"{override['layer']} redefines account {override['code']} from {override['replaced_layer']}"
            )

        return CompatibilityReport(valid=not conflicts, conflicts=conflicts, warnings=warnings)

    def apply_customizations(
        self,
        merged: MergedCoa,
        additional_accounts: Optional[List[Dict[str, Any]]] = None,
        account_modifications: Optional[Dict[str, Dict[str, Any]]] = None,
        exclude_accounts: Optional[List[str]] = None,
    ) -> MergedCoa:
        """
        Apply organization-specific changes on top of a merged chart.

        Required accounts cannot be excluded; they are reported under
        ``metadata["customizations"]["protected"]`` instead.

        Returns:
            A new MergedCoa with a ``custom`` layer when anything changed
        """
        by_code = {a.code: a.to_dict() for a in merged.accounts}
        added, modified, excluded, protected, unknown = [], [], [], [], []

        for code in exclude_accounts or []:
            code = str(code).strip()
            entry = by_code.get(code)
            if entry is None:
                unknown.append(code)
            elif entry.get("required"):
                protected.append(code)
            else:
                del by_code[code]
                excluded.append(code)

        for code, changes in (account_modifications or {}).items():
            code = str(code).strip()
            if code not in by_code:
                unknown.append(code)
                continue
            changes = {k: v for k, v in changes.items() if k != "code"}
            by_code[code] = {**by_code[code], **changes, "custom": True}
            modified.append(code)

        for account in additional_accounts or []:
            code = str(account.get("code", "")).strip()
            if not code:
                continue
            if code in by_code:
                by_code[code] = {**by_code[code], **account, "code": code, "custom": True}
                modified.append(code)
            else:
                by_code[code] = {**account, "code": code, "custom": True}
                added.append(code)

        if protected:
            logger.warning(f"Required accounts cannot be excluded: {protected}")

        accounts = sorted((Account.from_dict(d) for d in by_code.values()), key=lambda a: a.code)
        layers = list(merged.layers)
        layer_counts = dict(merged.layer_counts)
        if added or modified:
            layers.append(CUSTOM_LAYER)
            layer_counts[CUSTOM_LAYER] = len(added) + len(modified)

        metadata = _summarize(accounts)
        metadata["customizations"] = {
            "added": added,
            "modified": modified,
            "excluded": excluded,
            "protected": protected,
            "unknown_codes": unknown,
        }

        return MergedCoa(
            accounts=accounts,
            layers=layers,
            metadata=metadata,
            layer_counts=layer_counts,
            overrides=list(merged.overrides),
            layer_duplicates=list(merged.layer_duplicates),
        )


# =============================================================================
# Comparison
# =============================================================================

_COMPARED_FIELDS = ("name", "type", "subtype", "normal_balance", "required")


def compare_charts(current: Iterable[Account], proposed: Iterable[Account]) -> ChartComparison:
    """
    Compare two charts of accounts.

    Args:
        current: Accounts in the existing chart
        proposed: Accounts in the new chart

    Returns:
        ChartComparison with added/removed/modified codes, a Jaccard-style
        similarity score and a migration complexity estimate
    """
    old = {a.code: a for a in current}
    new = {a.code: a for a in proposed}

    added = sorted(set(new) - set(old))
    removed = sorted(set(old) - set(new))
    modified = []
    for code in sorted(set(old) & set(new)):
        changed = [f for f in _COMPARED_FIELDS if getattr(old[code], f) != getattr(new[code], f)]
        if changed:
            modified.append({"code": code, "fields": changed})

    union = len(set(old) | set(new))
    unchanged = union - len(added) - len(removed) - len(modified)
    similarity = round(unchanged / union, 4) if union else 1.0

    changes = len(added) + len(removed) + len(modified)
    if changes <= 5:
        complexity = "low"
    elif changes <= 20:
        complexity = "medium"
    else:
        complexity = "high"

    return ChartComparison(
        added=added,
        removed=removed,
        modified=modified,
        similarity_score=similarity,
        migration_complexity=complexity,
    )
