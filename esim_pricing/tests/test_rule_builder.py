from datetime import datetime
from decimal import Decimal

import pytest

from ..core.models import ActionType, ConditionOperator, RuleType
from ..core.exceptions import RuleValidationError
from ..rules.rule_builder import RuleBuilder, RuleTemplates


def test_build_discount_rule():
    rule = (RuleBuilder()
            .with_id("summer-fr")
            .with_name("Summer France")
            .with_description("Summer promotion")
            .with_type(RuleType.BUSINESS_PROMOTION)
            .with_priority(75)
            .when_country("FR", "BE")
            .when_duration_between(7, 30)
            .then_apply_discount(10)
            .valid_between(datetime(2025, 6, 1), datetime(2025, 8, 31))
            .build())

    assert rule.rule_id == "summer-fr"
    assert rule.priority == 75
    assert rule.is_editable
    assert rule.conditions[0].operator == ConditionOperator.IN
    assert rule.conditions[0].value == ["FR", "BE"]
    assert rule.conditions[1].operator == ConditionOperator.BETWEEN
    assert rule.actions[0].action_type == ActionType.APPLY_DISCOUNT_PERCENTAGE
    assert rule.actions[0].value == Decimal('10')
    assert rule.valid_until == datetime(2025, 8, 31)


def test_builder_resets_after_build():
    builder = RuleBuilder()
    builder.with_name("First").with_type(RuleType.BUSINESS_DISCOUNT).when_country("DE") \
        .then_apply_fixed_discount(1).build()

    with pytest.raises(RuleValidationError):
        builder.build()


def test_system_rules_are_not_editable():
    rule = RuleTemplates.markup_rule("Standard Fixed", 7, 5)

    assert rule.is_system
    assert not rule.is_editable


@pytest.mark.parametrize("configure, message", [
    (lambda b: b.with_priority(1001), "Priority 1001 outside valid range 0-1000"),
    (lambda b: b.with_priority(-1), "Priority -1 outside valid range 0-1000"),
    (lambda b: b.then_apply_discount(150), "Discount percentage 150 must be between 0 and 100"),
    (lambda b: b.then_set_processing_rate('1.5'), "Processing rate 1.5 must be between 0 and 1"),
    (lambda b: b.then_apply_fixed_discount(-3), "APPLY_FIXED_DISCOUNT value cannot be negative"),
    (lambda b: b.when_custom("country", "IN", "DE"), "IN on 'country' needs a list value"),
    (lambda b: b.valid_between(datetime(2025, 2, 1), datetime(2025, 1, 1)),
     "valid_from must be before valid_until"),
])
def test_invalid_rules_are_rejected(configure, message):
    builder = (RuleBuilder()
               .with_name("Broken")
               .with_type(RuleType.BUSINESS_DISCOUNT)
               .when_country("DE")
               .then_apply_fixed_discount(1))
    configure(builder)

    with pytest.raises(RuleValidationError) as exc_info:
        builder.build()
    assert message in exc_info.value.errors
    assert exc_info.value.code == "INVALID_RULE"


def test_rule_without_actions_is_rejected():
    builder = RuleBuilder().with_name("Empty").with_type(RuleType.BUSINESS_DISCOUNT).when_country("DE")

    with pytest.raises(RuleValidationError) as exc_info:
        builder.build()
    assert exc_info.value.errors == ["At least one action is required"]


def test_default_system_rules():
    rules = RuleTemplates.default_system_rules()
    by_name = {rule.name: rule for rule in rules}

    assert len(rules) == 8
    assert all(not rule.is_editable for rule in rules if rule.is_system)
    assert by_name["Israeli Card Processing Rate"].actions[0].value == Decimal('0.014')
    assert by_name["Foreign Card Processing Rate"].actions[0].value == Decimal('0.045')
    assert by_name["Amex Processing Rate"].priority == 100
    assert by_name["Minimum Price Floor"].priority == 1000
    assert by_name["Minimum Price Floor"].actions[0].value == Decimal('0.01')
    assert by_name["Minimum Profit Margin"].actions[0].value == Decimal('1.50')
    assert by_name["Minimum Profit Margin"].priority == 900
    assert by_name["Unused Days Discount Rate"].actions[0].value == Decimal('0.10')
    assert by_name["Unused Days Discount Rate"].rule_type == RuleType.BUSINESS_UNUSED_DAYS


def test_rule_serialization_round_trip():
    rule = RuleTemplates.seasonal_promotion_rule(
        "Winter Sale", 25, datetime(2025, 12, 1), datetime(2025, 12, 31), region="Europe"
    )
    restored = type(rule).from_dict(rule.to_dict())

    assert restored == rule
