from datetime import datetime, timedelta

import pytest

from ..rules.rule_engine import PricingRuleEngine
from ..utils.audit_logger import PricingAuditLogger
from .fixtures import create_test_context, worked_example_rules


@pytest.fixture
def audit_logger(tmp_path):
    return PricingAuditLogger(str(tmp_path / "pricing_logs"))


@pytest.fixture
def calculation_run():
    engine = PricingRuleEngine()
    engine.load_rules(worked_example_rules())
    context = create_test_context()
    run = engine.run(context)
    steps = list(run)
    return context, run.result, steps


def test_directories_created(audit_logger):
    assert audit_logger.calculations_dir.is_dir()
    assert audit_logger.summaries_dir.is_dir()
    assert audit_logger.alerts_dir.is_dir()


def test_log_calculation(audit_logger, calculation_run):
    context, calculation, steps = calculation_run
    log_id = audit_logger.log_calculation(context, calculation, steps)

    entries = audit_logger.query_logs(bundle_id="de-unlimited-7d")
    assert log_id.startswith("CALC_")
    assert [e['log_id'] for e in entries] == [log_id]
    assert entries[0]['request']['requested_duration'] == 5
    assert len(entries[0]['steps']) == len(steps)
    assert audit_logger.query_logs(bundle_id="fr-unlimited-7d") == []


def test_query_logs_spans_days(audit_logger, calculation_run):
    context, calculation, _ = calculation_run
    audit_logger.log_calculation(context, calculation)

    entries = audit_logger.query_logs(start_date=datetime.now() - timedelta(days=40))
    assert len(entries) == 1
    assert 'steps' not in entries[0]


def test_daily_report(audit_logger, calculation_run):
    context, calculation, _ = calculation_run
    audit_logger.log_calculation(context, calculation)
    audit_logger.log_calculation(context, calculation)
    audit_logger.log_alert('low_profit_margin', 'medium', {'profit': calculation.profit})

    report = audit_logger.generate_daily_report()
    assert report['total_calculations'] == 2
    assert report['by_country'] == {'DE': 2}
    assert report['by_payment_method'] == {'ISRAELI_CARD': 2}
    assert report['by_rule']['DE Discount'] == 2
    assert report['with_unused_days'] == 2
    assert report['alerts'] == 1


def test_daily_report_without_activity(audit_logger):
    report = audit_logger.generate_daily_report(datetime(2020, 1, 1))

    assert report == {'date': '2020-01-01', 'total_calculations': 0}
