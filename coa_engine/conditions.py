"""
Rule Conditions

Small tagged-variant predicate type used by assignment rules. Conditions are
parsed from the rules file's ``{"kind": ...}`` objects and evaluated by a
single dispatcher against a RuleContext.

Supported kinds:
- always
- requires_field:  met when the field at ``field`` is missing or empty
- exists:          met when the field at ``field`` has a value
- status_equals:   met when organization.status equals ``status``
- boolean_equals:  met when the field at ``field`` equals ``value`` (bool)
- all_of / any_of: combinators over ``conditions``
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union


@dataclass(frozen=True)
class Always:
    pass


@dataclass(frozen=True)
class RequiresField:
    path: str


@dataclass(frozen=True)
class Exists:
    path: str


@dataclass(frozen=True)
class StatusEquals:
    status: str


@dataclass(frozen=True)
class BooleanEquals:
    path: str
    value: bool


@dataclass(frozen=True)
class AllOf:
    conditions: Tuple["Condition", ...]


@dataclass(frozen=True)
class AnyOf:
    conditions: Tuple["Condition", ...]


Condition = Union[Always, RequiresField, Exists, StatusEquals, BooleanEquals, AllOf, AnyOf]


# =============================================================================
# Parsing
# =============================================================================

def parse_condition(data: Optional[Dict[str, Any]]) -> Condition:
    """
    Parse a condition from its JSON representation.

    A missing condition means the rule always applies.

    Raises:
        ValueError: Unknown kind or missing attribute
    """
    if data is None:
        return Always()
    if not isinstance(data, dict):
        raise ValueError(f"Condition must be an object, got {type(data).__name__}")

    kind = data.get("kind")

    if kind == "always":
        return Always()

    if kind == "requires_field":
        return RequiresField(path=_require(data, "field"))

    if kind == "exists":
        return Exists(path=_require(data, "field"))

    if kind == "status_equals":
        return StatusEquals(status=str(_require(data, "status")).lower())

    if kind == "boolean_equals":
        return BooleanEquals(path=_require(data, "field"), value=bool(data.get("value", True)))

    if kind in ("all_of", "any_of"):
        children = data.get("conditions")
        if not isinstance(children, list) or not children:
            raise ValueError(f"Condition '{kind}' needs a non-empty 'conditions' list")
        parsed = tuple(parse_condition(c) for c in children)
        return AllOf(parsed) if kind == "all_of" else AnyOf(parsed)

    raise ValueError(f"Unknown condition kind: {kind!r}")


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ValueError(f"Condition '{data.get('kind')}' is missing '{key}'")
    return data[key]


# =============================================================================
# Evaluation Context
# =============================================================================

class RuleContext:
    """
    Data sources visible to rule conditions and checks.

    Attributes:
        request: CoaAssignmentRequest under evaluation
        organization: OrganizationContext supplied by the caller
        has_existing_assignment: The organization already has a persisted chart
    """

    def __init__(self, request, organization, has_existing_assignment: bool = True):
        self.request = request
        self.organization = organization
        self.has_existing_assignment = has_existing_assignment
        self._roots = {
            "organization": organization.to_dict() if organization is not None else {},
            "template_assignment": request.to_dict() if request is not None else {},
        }

    def get_value(self, path: str) -> Optional[Any]:
        """
        Get value by dot-notation path.

        Example: "organization.country" → organization.country
        """
        parts = path.split(".")
        if len(parts) < 2:
            return None

        current: Any = self._roots.get(parts[0], {})
        for key in parts[1:]:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
            if current is None:
                return None
        return current

    def format_values(self) -> Dict[str, Any]:
        """Flat view of both roots for message templates"""
        values = dict(self._roots["template_assignment"])
        values.update(self._roots["organization"])
        return values


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) > 0
    return True


# =============================================================================
# Dispatcher
# =============================================================================

def evaluate_condition(condition: Condition, context: RuleContext) -> bool:
    """
    Evaluate a condition against a RuleContext.

    Raises:
        TypeError: Unknown condition variant
    """
    if isinstance(condition, Always):
        return True

    if isinstance(condition, RequiresField):
        return not _is_present(context.get_value(condition.path))

    if isinstance(condition, Exists):
        return _is_present(context.get_value(condition.path))

    if isinstance(condition, StatusEquals):
        status = context.get_value("organization.status")
        return status is not None and str(status).lower() == condition.status

    if isinstance(condition, BooleanEquals):
        return bool(context.get_value(condition.path)) is condition.value

    if isinstance(condition, AllOf):
        return all(evaluate_condition(c, context) for c in condition.conditions)

    if isinstance(condition, AnyOf):
        return any(evaluate_condition(c, context) for c in condition.conditions)

    raise TypeError(f"Unsupported condition type: {type(condition).__name__}")
