"""Sales signal rule conditions.

A rule condition is one of a closed set of kinds, discriminated by ``kind``:

- ``change``: match on change type, item type and keyword containment.
- ``pattern``: match the item name against a regular expression.

Payloads are validated when a rule is loaded, so evaluation never sees an
unknown shape. The older ``{"trigger": ..., "match_keywords": [...]}`` payload
is converted to a ``change`` condition.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from clinic_radar.core.enums import ChangeType, ItemType
from clinic_radar.core.errors import RuleValidationError

if TYPE_CHECKING:
    from clinic_radar.core.schema import EquipmentChange


# trigger name -> (item type, change type)
LEGACY_TRIGGERS: dict[str, tuple[ItemType, ChangeType]] = {
    "equipment_added": (ItemType.EQUIPMENT, ChangeType.ADDED),
    "equipment_removed": (ItemType.EQUIPMENT, ChangeType.REMOVED),
    "treatment_added": (ItemType.TREATMENT, ChangeType.ADDED),
    "treatment_removed": (ItemType.TREATMENT, ChangeType.REMOVED),
}


def compact(text: str) -> str:
    """Lowercase and drop all whitespace."""
    return re.sub(r"\s+", "", text).lower()


class _BaseCondition(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Empty list means "any"
    change_types: list[ChangeType] = Field(default_factory=list)
    item_types: list[ItemType] = Field(default_factory=list)

    def _scope_matches(self, change: EquipmentChange) -> bool:
        if self.change_types and change.change_type not in self.change_types:
            return False
        if self.item_types and change.item_type not in self.item_types:
            return False
        return True


class ChangeCondition(_BaseCondition):
    """Fires on changes whose item name contains any of the keywords."""

    kind: Literal["change"] = "change"
    keywords: list[str] = Field(default_factory=list)

    @field_validator("keywords")
    @classmethod
    def drop_blank_keywords(cls, v: list[str]) -> list[str]:
        return [k for k in v if k.strip()]

    def matches(self, change: EquipmentChange) -> bool:
        if not self._scope_matches(change):
            return False
        if not self.keywords:
            return True
        name = compact(change.item_name)
        return any(compact(k) in name for k in self.keywords)


class PatternCondition(_BaseCondition):
    """Fires on changes whose item name matches a regular expression."""

    kind: Literal["pattern"] = "pattern"
    pattern: str
    ignore_case: bool = True

    @field_validator("pattern")
    @classmethod
    def pattern_compiles(cls, v: str) -> str:
        if not v:
            raise ValueError("pattern cannot be empty")
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid pattern {v!r}: {e}") from e
        return v

    def matches(self, change: EquipmentChange) -> bool:
        if not self._scope_matches(change):
            return False
        flags = re.IGNORECASE if self.ignore_case else 0
        return re.search(self.pattern, change.item_name, flags) is not None


RuleCondition = Annotated[Union[ChangeCondition, PatternCondition], Field(discriminator="kind")]

_condition_adapter: TypeAdapter[RuleCondition] = TypeAdapter(RuleCondition)


def _from_legacy(payload: dict[str, Any]) -> dict[str, Any]:
    trigger = payload.get("trigger")
    if trigger not in LEGACY_TRIGGERS:
        raise RuleValidationError(f"Unknown rule trigger: {trigger!r}")
    item_type, change_type = LEGACY_TRIGGERS[trigger]
    return {
        "kind": "change",
        "change_types": [change_type],
        "item_types": [item_type],
        "keywords": list(payload.get("match_keywords") or []),
    }


def parse_condition(payload: Any) -> ChangeCondition | PatternCondition:
    """
    Validate a rule condition payload.

    Args:
        payload: A condition model, a tagged dict, or a legacy trigger dict

    Returns:
        The validated condition

    Raises:
        RuleValidationError: If the payload is not a recognized condition shape
    """
    if isinstance(payload, (ChangeCondition, PatternCondition)):
        return payload
    if not isinstance(payload, dict):
        raise RuleValidationError(f"Rule condition must be a mapping, got {type(payload).__name__}")

    if "kind" not in payload:
        if "trigger" not in payload:
            raise RuleValidationError("Rule condition has neither 'kind' nor 'trigger'")
        payload = _from_legacy(payload)

    try:
        return _condition_adapter.validate_python(payload)
    except ValidationError as e:
        raise RuleValidationError(f"Invalid rule condition: {e}") from e


def condition_to_dict(condition: ChangeCondition | PatternCondition) -> dict[str, Any]:
    """Serialize a condition for storage."""
    return condition.model_dump(mode="json")
