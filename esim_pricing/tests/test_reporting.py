import json

import pytest

from ..core.steps import PricingStepType
from ..rules.rule_engine import PricingRuleEngine
from ..utils.reporting import PricingReport
from .fixtures import create_test_context, worked_example_rules


@pytest.fixture
def priced():
    engine = PricingRuleEngine()
    engine.load_rules(worked_example_rules())
    run = engine.run(create_test_context())
    steps = list(run)
    return engine, steps, run.result


def test_steps_frame(priced):
    _, steps, _ = priced
    frame = PricingReport().steps_frame(steps)

    assert len(frame) == len(steps)
    assert frame.iloc[0]['type'] == PricingStepType.INITIALIZATION.value
    assert frame.iloc[-1]['type'] == PricingStepType.COMPLETED.value
    applications = frame[frame['type'] == 'BUSINESS_RULE_APPLICATION']
    assert list(applications['rule_name']) == ["DE Discount", "Europe Unlimited Discount"]
    assert list(applications['impact']) == pytest.approx([5.40, 4.05])


def test_applied_rules_frame(priced):
    _, _, calculation = priced
    frame = PricingReport().applied_rules_frame(calculation)

    assert list(frame.columns) == ['rule_id', 'name', 'rule_type', 'impact']
    assert len(frame) == 4


def test_discount_breakdown(priced):
    _, _, calculation = priced
    frame = PricingReport().discount_breakdown(calculation)

    assert frame['amount'].sum() == pytest.approx(9.45)
    assert frame['share_pct'].sum() == pytest.approx(100.0)
    assert frame.iloc[0]['share_pct'] == pytest.approx(5.40 / 9.45 * 100)


def test_rule_usage_stats(priced):
    engine, _, first = priced
    second = engine.calculate_price(create_test_context(payment_method='ISRAELI_CARD'))

    stats = PricingReport().rule_usage_stats([first, second])
    de = stats[stats['name'] == "DE Discount"].iloc[0]

    assert len(stats) == 4
    assert de['usage_count'] == 2
    assert de['total_impact'] == pytest.approx(10.80)
    assert de['average_impact'] == pytest.approx(5.40)


def test_rule_usage_stats_without_calculations():
    stats = PricingReport().rule_usage_stats([])

    assert stats.empty
    assert 'usage_count' in stats.columns


def test_export_report(priced):
    _, steps, calculation = priced
    report = PricingReport()
    summary = report.summarize(calculation, steps)

    exported = json.loads(report.export_report(summary))
    assert exported['summary']['country'] == 'DE'
    assert exported['summary']['final_price'] == str(calculation.final_price)
    assert exported['summary']['unused_days_applied'] is False

    markdown = report.export_report(summary, format='markdown')
    assert markdown.startswith("# eSIM Pricing - Calculation Report")

    with pytest.raises(ValueError):
        report.export_report(summary, format='xml')
