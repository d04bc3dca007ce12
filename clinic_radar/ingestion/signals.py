"""
Signal Classifier Module
========================

Evaluates a run's equipment/treatment changes against each client
product's rules and emits prioritized sales signals.
"""

from __future__ import annotations

import logging
import re
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from clinic_radar.core.errors import ClassificationError, RuleValidationError
from clinic_radar.core.schema import (
    ClientProduct,
    EquipmentChange,
    SalesSignal,
    SalesSignalRule,
    TrackedSite,
)

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_template(template: str, values: dict[str, str]) -> str:
    """Replace ``{{name}}`` placeholders; unknown names are left as-is."""
    return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def signal_type_for(change: EquipmentChange) -> str:
    """E.g. EQUIPMENT_ADDED, TREATMENT_REMOVED."""
    return f"{change.item_type.value.upper()}_{change.change_type.value.upper()}"


def load_rule(payload: dict[str, Any], product_id: UUID) -> SalesSignalRule:
    """
    Build a rule from a config payload, validating its condition.

    Raises:
        RuleValidationError: If the payload or its condition is malformed
    """
    data = dict(payload)
    data["product_id"] = product_id
    if "condition" not in data and "trigger" in data:
        data["condition"] = {
            "trigger": data.pop("trigger"),
            "match_keywords": data.pop("match_keywords", []),
        }
    try:
        return SalesSignalRule.model_validate(data)
    except ValidationError as e:
        raise RuleValidationError(f"Invalid rule {payload.get('name', '')!r}: {e}") from e


class SignalClassifier:
    """
    Turns changes into sales signals.

    A product with no rules, or an inactive product, yields nothing.
    Rules fire independently of each other, but a rule fires at most once
    per underlying change within a run.
    """

    def classify(
        self,
        changes: list[EquipmentChange],
        product: ClientProduct,
        rules: list[SalesSignalRule],
        site: TrackedSite | None = None,
    ) -> list[SalesSignal]:
        """
        Evaluate one product's rules against the run's changes.

        Raises:
            ClassificationError: If evaluating a rule fails
        """
        if not product.active or not rules or not changes:
            return []

        signals: list[SalesSignal] = []
        fired: set[tuple[UUID, str, str, str]] = set()

        for rule in rules:
            if not rule.active:
                continue
            for change in changes:
                key = (rule.id, change.change_type.value, change.item_type.value, change.item_name.lower())
                if key in fired:
                    continue
                try:
                    matched = rule.condition.matches(change)
                except Exception as e:
                    raise ClassificationError(
                        f"Rule {rule.id} failed on '{change.item_name}': {e}",
                        site_id=str(change.site_id),
                        stage="classifying",
                    ) from e
                if not matched:
                    continue

                fired.add(key)
                signals.append(self._build_signal(rule, change, product, site))

        if signals:
            logger.info(f"Product '{product.name}': {len(signals)} signals")
        return signals

    def classify_all(
        self,
        changes: list[EquipmentChange],
        products: list[tuple[ClientProduct, list[SalesSignalRule]]],
        site: TrackedSite | None = None,
    ) -> list[SalesSignal]:
        """Classify against every product in turn."""
        signals: list[SalesSignal] = []
        for product, rules in products:
            signals.extend(self.classify(changes, product, rules, site))
        return signals

    @staticmethod
    def _build_signal(
        rule: SalesSignalRule,
        change: EquipmentChange,
        product: ClientProduct,
        site: TrackedSite | None,
    ) -> SalesSignal:
        values = {
            "item_name": change.item_name,
            "change_type": change.change_type.value,
            "item_type": change.item_type.value,
            "site_name": site.name if site else "",
            "product_name": product.name,
        }
        return SalesSignal(
            site_id=change.site_id,
            product_id=product.id,
            rule_id=rule.id,
            change_id=change.id,
            signal_type=signal_type_for(change),
            priority=rule.priority,
            title=render_template(rule.title_template, values),
            description=render_template(rule.description_template, values),
            related_angle=rule.related_angle,
        )
