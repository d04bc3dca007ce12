"""Tests for rule conditions and signal classification."""

from uuid import uuid4

import pytest

from clinic_radar.core.conditions import (
    ChangeCondition,
    PatternCondition,
    compact,
    condition_to_dict,
    parse_condition,
)
from clinic_radar.core.enums import ChangeType, ItemType, SignalPriority
from clinic_radar.core.errors import ClassificationError, RuleValidationError
from clinic_radar.core.schema import ClientProduct, EquipmentChange, SalesSignalRule, TrackedSite
from clinic_radar.ingestion.signals import (
    SignalClassifier,
    load_rule,
    render_template,
    signal_type_for,
)


def change(name: str, change_type=ChangeType.ADDED, item_type=ItemType.EQUIPMENT) -> EquipmentChange:
    return EquipmentChange(site_id=uuid4(), change_type=change_type, item_type=item_type, item_name=name)


@pytest.fixture
def product() -> ClientProduct:
    return ClientProduct(name="Ulthera Korea")


def rule_for(product: ClientProduct, condition: dict, **kwargs) -> SalesSignalRule:
    return SalesSignalRule(
        product_id=product.id,
        condition=condition,
        title_template=kwargs.pop("title_template", "{{site_name}}: {{item_name}} {{change_type}}"),
        **kwargs,
    )


class TestConditions:
    """Tests for condition parsing and matching."""

    def test_change_condition(self) -> None:
        condition = parse_condition(
            {"kind": "change", "change_types": ["added"], "keywords": ["써마지"]}
        )
        assert isinstance(condition, ChangeCondition)
        assert condition.matches(change("써마지 FLX"))
        assert not condition.matches(change("써마지", ChangeType.REMOVED))
        assert not condition.matches(change("울쎄라"))

    def test_empty_keywords_match_any_in_scope(self) -> None:
        condition = parse_condition({"kind": "change", "item_types": ["treatment"]})
        assert condition.matches(change("아무거나", item_type=ItemType.TREATMENT))
        assert not condition.matches(change("아무거나"))

    def test_keyword_match_ignores_case_and_spaces(self) -> None:
        condition = parse_condition({"kind": "change", "keywords": ["Ulthera Prime"]})
        assert condition.matches(change("ULTHERAPRIME"))

    def test_pattern_condition(self) -> None:
        condition = parse_condition({"kind": "pattern", "pattern": "^울쎄"})
        assert isinstance(condition, PatternCondition)
        assert condition.matches(change("울쎄라"))
        assert not condition.matches(change("써마지"))

    def test_legacy_trigger(self) -> None:
        condition = parse_condition({"trigger": "equipment_removed", "match_keywords": ["울쎄라"]})
        assert condition.change_types == [ChangeType.REMOVED]
        assert condition.item_types == [ItemType.EQUIPMENT]
        assert condition.matches(change("울쎄라", ChangeType.REMOVED))

    @pytest.mark.parametrize(
        "payload",
        [
            {"kind": "unknown"},
            {"trigger": "price_dropped"},
            {"keywords": ["x"]},
            {"kind": "pattern", "pattern": "("},
            {"kind": "change", "extra_field": 1},
            "not a mapping",
        ],
    )
    def test_invalid_payloads(self, payload) -> None:
        with pytest.raises(RuleValidationError):
            parse_condition(payload)

    def test_round_trip_through_dict(self) -> None:
        condition = parse_condition({"kind": "pattern", "pattern": "울쎄"})
        assert parse_condition(condition_to_dict(condition)) == condition

    def test_compact(self) -> None:
        assert compact(" Ulthera  Prime ") == "ultheraprime"


class TestLoadRule:
    """Tests for rule loading."""

    def test_load_new_style(self, product: ClientProduct) -> None:
        rule = load_rule(
            {
                "name": "competitor",
                "priority": "HIGH",
                "condition": {"kind": "change", "keywords": ["써마지"]},
                "title_template": "{{item_name}}",
            },
            product.id,
        )
        assert rule.product_id == product.id
        assert rule.priority == SignalPriority.HIGH

    def test_load_legacy(self, product: ClientProduct) -> None:
        rule = load_rule(
            {
                "name": "legacy",
                "trigger": "treatment_added",
                "match_keywords": ["리쥬란"],
                "title_template": "{{item_name}}",
            },
            product.id,
        )
        assert rule.condition.item_types == [ItemType.TREATMENT]
        assert rule.condition.keywords == ["리쥬란"]

    def test_invalid_rule(self, product: ClientProduct) -> None:
        with pytest.raises(RuleValidationError):
            load_rule({"name": "bad", "condition": {"kind": "nope"}, "title_template": "x"}, product.id)

    def test_missing_template(self, product: ClientProduct) -> None:
        with pytest.raises(RuleValidationError):
            load_rule({"name": "bad", "condition": {"kind": "change"}}, product.id)


class TestClassifier:
    """Tests for SignalClassifier."""

    def test_matching_rule_emits_signal(self, product: ClientProduct) -> None:
        site = TrackedSite(name="강남클리닉", website="https://gangnam.example.com")
        rule = rule_for(
            product,
            {"kind": "change", "change_types": ["added"], "keywords": ["써마지"]},
            priority=SignalPriority.HIGH,
            related_angle="competitive displacement",
        )
        signals = SignalClassifier().classify([change("써마지"), change("울쎄라")], product, [rule], site)

        assert len(signals) == 1
        signal = signals[0]
        assert signal.signal_type == "EQUIPMENT_ADDED"
        assert signal.priority == SignalPriority.HIGH
        assert signal.title == "강남클리닉: 써마지 added"
        assert signal.related_angle == "competitive displacement"
        assert signal.rule_id == rule.id

    def test_no_rules_no_signals(self, product: ClientProduct) -> None:
        assert SignalClassifier().classify([change("써마지")], product, []) == []

    def test_inactive_product(self) -> None:
        product = ClientProduct(name="Old", active=False)
        rule = rule_for(product, {"kind": "change"})
        assert SignalClassifier().classify([change("써마지")], product, [rule]) == []

    def test_inactive_rule_skipped(self, product: ClientProduct) -> None:
        rule = rule_for(product, {"kind": "change"}, active=False)
        assert SignalClassifier().classify([change("써마지")], product, [rule]) == []

    def test_rules_fire_independently(self, product: ClientProduct) -> None:
        rules = [
            rule_for(product, {"kind": "change", "keywords": ["써마지"]}, name="a"),
            rule_for(product, {"kind": "pattern", "pattern": "써마"}, name="b"),
        ]
        signals = SignalClassifier().classify([change("써마지")], product, rules)
        assert {s.rule_id for s in signals} == {r.id for r in rules}

    def test_rule_fires_once_per_change(self, product: ClientProduct) -> None:
        rule = rule_for(product, {"kind": "change"})
        duplicate = change("써마지")
        signals = SignalClassifier().classify([duplicate, duplicate], product, [rule])
        assert len(signals) == 1

    def test_classify_all(self, product: ClientProduct) -> None:
        other = ClientProduct(name="Thermage Korea")
        pairs = [
            (product, [rule_for(product, {"kind": "change"})]),
            (other, [rule_for(other, {"kind": "change", "change_types": ["removed"]})]),
        ]
        signals = SignalClassifier().classify_all([change("인모드")], pairs)
        assert [s.product_id for s in signals] == [product.id]

    def test_evaluation_error_wrapped(self, product: ClientProduct, monkeypatch: pytest.MonkeyPatch) -> None:
        rule = rule_for(product, {"kind": "change"})

        def boom(self, change):
            raise RuntimeError("bad rule")

        monkeypatch.setattr(ChangeCondition, "matches", boom)
        with pytest.raises(ClassificationError):
            SignalClassifier().classify([change("써마지")], product, [rule])


class TestTemplates:
    """Tests for template helpers."""

    def test_render_template(self) -> None:
        assert render_template("{{ item_name }} / {{unknown}}", {"item_name": "울쎄라"}) == "울쎄라 / {{unknown}}"

    def test_signal_type(self) -> None:
        assert signal_type_for(change("x", ChangeType.REMOVED, ItemType.TREATMENT)) == "TREATMENT_REMOVED"
