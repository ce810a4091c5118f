"""
Assignment Rules Loader

Reads ``rules/assignment-rules.json``:

    {
      "rule_definitions": {
        "system_rules": [ {rule}, ... ],
        "validation_rules": [ ... ],
        ...
      }
    }

Category groupings are for readability only; rules are flattened and sorted
by priority ascending (ties keep file order).
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Union

from core.observability.logging import get_logger

from .conditions import parse_condition
from .models import RuleType, ValidationRule

logger = get_logger(__name__)

DEFAULT_RULES_PATH = Path(__file__).resolve().parent / "config" / "rules" / "assignment-rules.json"


class RuleLoadError(Exception):
    """Rules file missing, malformed, or containing an invalid rule."""
    pass


def rule_from_dict(data: Dict[str, Any], category: str = "") -> ValidationRule:
    """
    Parse one rule record.

    Raises:
        ValueError: Missing id, unknown type or invalid condition
    """
    if not isinstance(data, dict):
        raise ValueError("Rule must be a JSON object")

    rule_id = data.get("id")
    if not rule_id:
        raise ValueError("Rule has no 'id'")

    try:
        rule_type = RuleType(str(data.get("type", "")).lower())
    except ValueError:
        raise ValueError(f"Rule {rule_id} has unknown type {data.get('type')!r}")

    try:
        priority = int(data.get("priority", 100))
    except (TypeError, ValueError):
        raise ValueError(f"Rule {rule_id} has a non-numeric priority")

    try:
        condition = parse_condition(data.get("condition"))
    except ValueError as e:
        raise ValueError(f"Rule {rule_id}: {e}") from e

    return ValidationRule(
        id=str(rule_id),
        name=data.get("name", rule_id),
        type=rule_type,
        priority=priority,
        condition=condition,
        action=dict(data.get("action") or {}),
        active=bool(data.get("active", True)),
        description=data.get("description", ""),
        category=category,
    )


def parse_rules(document: Dict[str, Any]) -> List[ValidationRule]:
    """Flatten and sort the rule definitions of a rules document"""
    definitions = document.get("rule_definitions") if isinstance(document, dict) else None
    if not isinstance(definitions, dict):
        raise RuleLoadError("Rules file has no 'rule_definitions' object")

    rules: List[ValidationRule] = []
    for category, records in definitions.items():
        if not isinstance(records, list):
            raise RuleLoadError(f"Rule category {category!r} must be a list")
        for record in records:
            try:
                rules.append(rule_from_dict(record, category))
            except ValueError as e:
                raise RuleLoadError(str(e)) from e

    seen = set()
    for rule in rules:
        if rule.id in seen:
            raise RuleLoadError(f"Duplicate rule id: {rule.id}")
        seen.add(rule.id)

    # sorted() is stable, so equal priorities keep file order
    return sorted(rules, key=lambda r: r.priority)


def load_rules(path: Union[str, Path, None] = None) -> List[ValidationRule]:
    """
    Load rules from disk.

    Raises:
        RuleLoadError: File missing or malformed
    """
    path = Path(path) if path else DEFAULT_RULES_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise RuleLoadError(f"Failed to load rules from {path}: {e}") from e

    rules = parse_rules(document)
    logger.info(
        f"Loaded {len(rules)} assignment rules",
        extra_fields={"path": str(path), "active": sum(1 for r in rules if r.active)},
    )
    return rules
