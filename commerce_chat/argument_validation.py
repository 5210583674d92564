from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

logger = logging.getLogger("commerce_chat.arguments")

# Handlers for these functions resolve a missing entity id from session context.
CONTEXT_FALLBACK_FUNCTIONS: FrozenSet[str] = frozenset(
    {
        "get_product_details",
        "add_to_cart",
        "create_product_review",
        "get_product_reviews",
        "get_similar_products",
        "check_stock_availability",
        "get_upgrade_suggestions",
        "compare_products",
        "check_order_status",
        "get_order_details",
        "cancel_order",
        "create_payment_link",
        "check_payment_status",
    }
)

INVALID_ARGUMENT_MESSAGE = "Thông tin \"{label}\" chưa hợp lệ. Bạn có thể nói rõ hơn không?"
MISSING_ARGUMENT_MESSAGE = "Bạn vui lòng cho biết {label} nhé."

_MISSING = object()


@dataclass
class ValidationOutcome:
    """Arguments after coercion plus the user-facing problems found, if any."""
    arguments: Dict[str, Any] = field(default_factory=dict)
    problems: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems

    @property
    def message(self) -> str:
        return self.problems[0] if self.problems else ""


def validate_arguments(
    declaration: Dict[str, Any],
    arguments: Optional[Dict[str, Any]],
    strict: bool = False,
) -> ValidationOutcome:
    """Purpose: Check model-supplied arguments against a catalog entry before dispatch.
    Inputs/Outputs: Inputs are the catalog declaration, raw arguments and the strict flag;
        returns a ValidationOutcome with coerced arguments and problems.
    Side Effects / State: Logs dropped undeclared arguments at debug level.
    Dependencies: _coerce for per-type checks.
    Failure Modes: Never raises; every mismatch becomes a problem string.
    If Removed: Handlers receive whatever the model invents and fail deep in service calls.
    Testing Notes: "2" for a number becomes 2; a dict for a string is a problem;
        missing required ids only fail when strict and the function has no context fallback.
    """
    # Walk declared properties only; anything else the model sent is discarded.
    parameters = declaration.get("parameters") or {}
    properties: Dict[str, Dict[str, Any]] = parameters.get("properties") or {}
    required = parameters.get("required") or []
    outcome = ValidationOutcome()
    raw = dict(arguments or {})

    for name in raw:
        if name not in properties:
            logger.debug("function=%s dropped undeclared argument %s", declaration.get("name"), name)

    for name, schema in properties.items():
        value = raw.get(name, _MISSING)
        if value is _MISSING or value is None or value == "":
            continue
        ok, coerced = _coerce(value, schema)
        if ok:
            outcome.arguments[name] = coerced
        else:
            outcome.problems.append(INVALID_ARGUMENT_MESSAGE.format(label=_label(name, schema)))

    if strict and declaration.get("name") not in CONTEXT_FALLBACK_FUNCTIONS:
        for name in required:
            if name not in outcome.arguments:
                outcome.problems.append(MISSING_ARGUMENT_MESSAGE.format(label=_label(name, properties.get(name) or {})))
    return outcome


def _label(name: str, schema: Dict[str, Any]) -> str:
    description = str(schema.get("description") or name)
    return description.split("(")[0].strip().lower() or name


def _coerce(value: Any, schema: Dict[str, Any]) -> Tuple[bool, Any]:
    kind = str(schema.get("type") or "string").lower()
    if kind == "string":
        if isinstance(value, str):
            return True, value.strip()
        if isinstance(value, bool):
            return False, None
        if isinstance(value, (int, float)):
            return True, str(int(value)) if float(value).is_integer() else str(value)
        return False, None
    if kind in ("number", "integer"):
        number = _as_number(value)
        if number is None:
            return False, None
        if kind == "integer":
            if not float(number).is_integer():
                return False, None
            return True, int(number)
        return True, int(number) if float(number).is_integer() else number
    if kind == "boolean":
        if isinstance(value, bool):
            return True, value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return True, value.strip().lower() == "true"
        return False, None
    if kind == "array":
        items = value if isinstance(value, list) else [value] if isinstance(value, str) else None
        if items is None:
            return False, None
        item_schema = schema.get("items") or {"type": "string"}
        coerced_items = []
        for item in items:
            ok, coerced = _coerce(item, item_schema)
            if not ok:
                return False, None
            coerced_items.append(coerced)
        return True, coerced_items
    if kind == "object":
        return (True, value) if isinstance(value, dict) else (False, None)
    return True, value


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        cleaned = value.strip().replace("_", "")
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None
