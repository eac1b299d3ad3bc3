from datetime import datetime
from decimal import Decimal

import pytest

from ..core.models import ActionType, RuleType
from ..core.steps import PricingStepType
from ..core.exceptions import (
    MissingProcessingRateError, NoSuitableBundleError, InsufficientProfitMarginError,
)
from ..rules.rule_builder import RuleBuilder, RuleTemplates
from ..rules.rule_engine import PricingRuleEngine
from .fixtures import (
    GROUP, create_test_bundle, create_test_context, processing_rule, worked_example_rules,
)


@pytest.fixture
def engine():
    engine = PricingRuleEngine()
    engine.load_rules(worked_example_rules())
    return engine


def fixed_discount_rule(amount, name="Fixed Discount"):
    return (RuleBuilder()
            .with_name(name)
            .with_type(RuleType.BUSINESS_DISCOUNT)
            .when_country("DE")
            .then_apply_fixed_discount(amount)
            .build())


def unused_days_setup(engine):
    """15-day bundle marked up 27, 10-day bundle marked up 22"""
    engine.load_rules([
        processing_rule(),
        RuleTemplates.markup_rule(GROUP, 10, '22.00'),
        RuleTemplates.markup_rule(GROUP, 15, '27.00'),
    ])
    return create_test_context(
        bundles=[create_test_bundle(10, '20.00'), create_test_bundle(15, '25.00')],
        requested_duration=13,
    )


def test_worked_example(engine):
    calculation = engine.calculate_price(create_test_context())

    assert calculation.base_cost == Decimal('15.00')
    assert calculation.markup == Decimal('12.00')
    assert calculation.subtotal == Decimal('27.00')
    assert [d.amount for d in calculation.discounts] == [Decimal('5.40'), Decimal('4.05')]
    assert calculation.total_discount == Decimal('9.45')
    assert calculation.price_after_discount == Decimal('17.55')
    assert calculation.processing_rate == Decimal('0.014')
    assert calculation.processing_fee == Decimal('0.2457')
    assert calculation.final_price == Decimal('17.7957')
    assert calculation.selected_bundle.unused_days == 2


def test_step_order(engine):
    steps = list(engine.calculate_price_steps(create_test_context()))
    types = [step.step_type for step in steps]

    assert types[0] == PricingStepType.INITIALIZATION
    assert types[-3:] == [
        PricingStepType.FINAL_CALCULATION,
        PricingStepType.PROFIT_VALIDATION,
        PricingStepType.COMPLETED,
    ]
    subtotal_index = types.index(PricingStepType.SUBTOTAL_CALCULATION)
    system = [i for i, t in enumerate(types) if t.name.startswith('SYSTEM_')]
    business = [i for i, t in enumerate(types) if t.name.startswith('BUSINESS_')]
    assert max(system) < subtotal_index < min(business)
    # Only one 7-day bundle, so there is no shorter duration to compare against
    unused = [s for s in steps if s.step_type == PricingStepType.UNUSED_DAYS_CALCULATION]
    assert len(unused) == 1
    assert not unused[0].data.applied


def test_evaluation_is_followed_by_application_only_on_match(engine):
    engine.add_rule(
        RuleBuilder()
        .with_name("France Discount")
        .with_type(RuleType.BUSINESS_DISCOUNT)
        .when_country("FR")
        .then_apply_discount(50)
        .build()
    )
    steps = list(engine.calculate_price_steps(create_test_context()))

    for index, step in enumerate(steps):
        if step.step_type == PricingStepType.BUSINESS_RULE_EVALUATION:
            follower = steps[index + 1].step_type
            if step.data.matched:
                assert follower == PricingStepType.BUSINESS_RULE_APPLICATION
            else:
                assert follower != PricingStepType.BUSINESS_RULE_APPLICATION
                assert step.data.reason == "Condition not met: country"


def test_no_unused_days_step_for_exact_match(engine):
    steps = list(engine.calculate_price_steps(create_test_context(requested_duration=7)))

    assert PricingStepType.UNUSED_DAYS_CALCULATION not in [s.step_type for s in steps]


def test_higher_priority_processing_rate_wins():
    low = processing_rule('0.045', priority=50, name="Low priority rate")
    high = processing_rule('0.014', priority=100, name="High priority rate")

    for rules in ([low, high], [high, low]):
        engine = PricingRuleEngine()
        engine.load_rules(rules)
        calculation = engine.calculate_price(create_test_context(requested_duration=7))

        assert calculation.processing_rate == Decimal('0.014')
        assert calculation.final_price == Decimal('15.00') * Decimal('1.014')
        impacts = {rule.name: rule.impact for rule in calculation.applied_rules}
        assert impacts["Low priority rate"] == 0


def test_partially_matching_rule_is_not_applied(engine):
    engine.add_rule(
        RuleBuilder()
        .with_name("DE in Asia")
        .with_type(RuleType.BUSINESS_DISCOUNT)
        .when_country("DE")
        .when_region("Asia")
        .then_apply_discount(10)
        .build()
    )
    calculation = engine.calculate_price(create_test_context())

    assert "DE in Asia" not in [rule.name for rule in calculation.applied_rules]
    assert calculation.total_discount == Decimal('9.45')


def test_minimum_price_floor(engine):
    engine.add_rules([
        fixed_discount_rule('100.00'),
        RuleTemplates.minimum_price_rule('5.00'),
    ])
    calculation = engine.calculate_price(create_test_context())

    assert calculation.price_after_discount == Decimal('5.00')
    assert calculation.metadata.minimum_price == Decimal('5.00')


def test_price_without_minimum_rule_can_reach_zero(engine):
    engine.add_rule(fixed_discount_rule('100.00'))
    calculation = engine.calculate_price(create_test_context())

    assert calculation.price_after_discount == 0
    assert calculation.final_price == 0


def test_unused_day_discount_formula():
    assert PricingRuleEngine.calculate_unused_day_discount(
        Decimal('27.00'), 15, Decimal('22.00'), 10
    ) == Decimal('1.00')


def test_unused_day_discount_applied(engine):
    context = unused_days_setup(engine)
    run = engine.run(context)
    steps = list(run)
    calculation = run.result

    unused = next(s for s in steps if s.step_type == PricingStepType.UNUSED_DAYS_CALCULATION)
    assert unused.data.applied
    assert unused.data.previous_duration == 10
    assert unused.data.selected_markup == Decimal('27.00')
    assert unused.data.previous_markup == Decimal('22.00')
    assert unused.data.discount_per_day == Decimal('1.00')
    assert unused.data.total_discount == Decimal('2.00')

    assert calculation.selected_bundle.duration == 15
    assert calculation.metadata.unused_days == 2
    assert calculation.metadata.discount_per_unused_day == Decimal('1.00')
    assert calculation.metadata.previous_duration == 10
    assert calculation.discounts[-1].rule_name == "Unused Days Discount"
    assert calculation.discounts[-1].discount_type == "unused_days"
    assert calculation.total_discount == Decimal('2.00')


def test_unused_day_discount_reports_configured_rate(engine):
    context = unused_days_setup(engine)
    engine.add_rule(RuleTemplates.unused_days_rule('0.10'))
    steps = list(engine.calculate_price_steps(context))

    unused = next(s for s in steps if s.step_type == PricingStepType.UNUSED_DAYS_CALCULATION)
    assert unused.data.configured_rate == Decimal('0.10')
    assert unused.data.discount_per_day == Decimal('1.00')


def test_unused_day_discount_skipped_without_previous_markup(engine, caplog):
    engine.load_rules([processing_rule(), RuleTemplates.markup_rule(GROUP, 15, '27.00')])
    context = create_test_context(
        bundles=[create_test_bundle(10, '20.00'), create_test_bundle(15, '25.00')],
        requested_duration=13,
    )
    run = engine.run(context)
    steps = list(run)

    unused = next(s for s in steps if s.step_type == PricingStepType.UNUSED_DAYS_CALCULATION)
    assert not unused.data.applied
    assert unused.data.total_discount == 0
    assert run.result.total_discount == 0
    assert "Unused days discount skipped" in caplog.text


def test_revenue_identities(engine):
    calculation = engine.calculate_price(create_test_context())

    assert calculation.final_price == calculation.price_after_discount + calculation.processing_fee
    assert calculation.final_revenue == calculation.final_price - calculation.base_cost
    assert calculation.profit == (
        calculation.final_price - calculation.processing_fee - calculation.base_cost
    )
    assert calculation.revenue_after_processing == calculation.profit


def test_missing_processing_rule_is_a_configuration_error():
    engine = PricingRuleEngine()
    engine.load_rules([RuleTemplates.markup_rule(GROUP, 7, '12.00')])

    with pytest.raises(MissingProcessingRateError) as exc_info:
        engine.run(create_test_context())
    assert exc_info.value.code == "MISSING_PROCESSING_RATE"


def test_unmatched_payment_method_is_a_configuration_error(engine):
    with pytest.raises(MissingProcessingRateError):
        engine.calculate_price(create_test_context(payment_method='AMEX'))


def test_unmatched_payment_method_raised_before_any_step(engine):
    with pytest.raises(MissingProcessingRateError) as exc_info:
        engine.run(create_test_context(payment_method='AMEX'))
    assert exc_info.value.details == {'payment_method': 'AMEX'}


def test_processing_rule_outside_window_is_not_applicable():
    engine = PricingRuleEngine()
    engine.load_rules([
        RuleTemplates.markup_rule(GROUP, 7, '12.00'),
        processing_rule().with_changes(valid_until=datetime(2025, 1, 1)),
    ])

    with pytest.raises(MissingProcessingRateError):
        engine.run(create_test_context())


def test_selection_error_raised_before_any_step(engine):
    with pytest.raises(NoSuitableBundleError):
        engine.run(create_test_context(requested_duration=30))


def test_determinism(engine):
    first = engine.calculate_price(create_test_context())
    second = engine.calculate_price(create_test_context())

    assert first == second
    assert first.to_dict() == second.to_dict()


def test_inactive_and_expired_rules_are_skipped(engine):
    engine.add_rules([
        fixed_discount_rule('1.00', "Inactive").with_changes(is_active=False),
        fixed_discount_rule('1.00', "Expired").with_changes(
            valid_from=datetime(2024, 1, 1), valid_until=datetime(2024, 12, 31)
        ),
    ])
    steps = list(engine.calculate_price_steps(create_test_context()))

    reasons = {
        s.data.rule_name: s.data.reason
        for s in steps if s.step_type == PricingStepType.BUSINESS_RULE_EVALUATION
    }
    assert reasons["Inactive"] == "Rule is inactive"
    assert reasons["Expired"] == "Outside validity window"


def test_profit_shortfall_is_advisory(engine):
    engine.add_rule(RuleTemplates.minimum_profit_rule('5.00'))
    run = engine.run(create_test_context())
    steps = list(run)

    validation = next(s for s in steps if s.step_type == PricingStepType.PROFIT_VALIDATION)
    assert not validation.data.is_valid
    assert validation.data.minimum_required == Decimal('5.00')
    assert "below minimum" in validation.data.warning
    assert run.result.final_price == Decimal('17.7957')


def test_strict_profit_validation_raises():
    engine = PricingRuleEngine({'strict_profit_validation': True})
    engine.load_rules(worked_example_rules() + [RuleTemplates.minimum_profit_rule('5.00')])

    with pytest.raises(InsufficientProfitMarginError):
        engine.calculate_price(create_test_context())


def test_profit_recommendations(engine):
    engine.add_rule(RuleTemplates.minimum_profit_rule('1.50'))
    calculation = engine.calculate_price(create_test_context())

    assert calculation.profit == Decimal('2.55')
    assert calculation.max_recommended_price == Decimal('16.50')
    assert calculation.max_discount_percentage == (
        Decimal('10.50') / Decimal('27.00') * Decimal('100')
    )


def test_run_is_lazy_and_result_drains_steps(engine):
    run = engine.run(create_test_context())
    first = next(iter(run))

    assert first.step_type == PricingStepType.INITIALIZATION
    assert not run.done
    assert run.result.final_price == Decimal('17.7957')
    assert run.done
    assert list(run) == []


def test_abandoned_run_has_no_side_effects(engine):
    run = engine.run(create_test_context())
    iterator = iter(run)
    next(iterator)
    next(iterator)

    assert engine.calculate_price(create_test_context()).final_price == Decimal('17.7957')


def test_reload_does_not_affect_started_run(engine):
    run = engine.run(create_test_context())
    engine.clear_rules()

    assert run.result.final_price == Decimal('17.7957')
    with pytest.raises(MissingProcessingRateError):
        engine.run(create_test_context())


def test_resolve_configuration_picks_highest_priority(engine):
    context = create_test_context()
    context.bundle = context.bundles[0]
    engine.add_rules([
        RuleTemplates.minimum_price_rule('0.01'),
        RuleTemplates.minimum_price_rule('2.00').with_changes(rule_id="floor-2", priority=500),
    ])

    assert engine.resolve_configuration(
        context, ActionType.SET_MINIMUM_PRICE, RuleType.SYSTEM_MINIMUM_PRICE
    ) == Decimal('0.01')
    assert engine.resolve_configuration(context, ActionType.SET_MINIMUM_PROFIT) is None


def test_markup_lookup_index(engine):
    context = create_test_context()

    assert engine.lookup_markup(GROUP, 7, context) == Decimal('12.00')
    assert engine.lookup_markup(GROUP, 30, context) is None
    assert (GROUP, 7) in engine.rule_set.markup_index


def test_rule_management(engine):
    assert len(engine.get_system_rules()) == 2
    assert len(engine.get_business_rules()) == 2

    business_id = engine.get_business_rules()[0].rule_id
    assert engine.remove_rule(business_id)
    assert not engine.remove_rule(business_id)
    assert len(engine.get_rules()) == 3


def test_add_system_rules_are_not_editable():
    engine = PricingRuleEngine()
    rule = processing_rule().with_changes(is_editable=True)
    engine.add_system_rules([rule])

    assert not engine.get_rules()[0].is_editable


def test_find_conflicts(engine):
    conflicting = RuleTemplates.country_discount_rule('DE', 30)
    identical = RuleTemplates.country_discount_rule('DE', 20)

    assert [r.name for r in engine.find_conflicts(conflicting)] == ["DE Discount"]
    assert engine.find_conflicts(identical) == []


def test_validate_rule(engine):
    rule = RuleTemplates.country_discount_rule('DE', 20).with_changes(priority=5000)

    assert engine.validate_rule(rule) == ["Priority 5000 outside valid range 0-1000"]
