"""Shared builders for pricing tests."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from ..core.models import Bundle, PricingContext, PricingRule, RuleType
from ..rules.rule_builder import RuleBuilder, RuleTemplates

PRICING_DATE = datetime(2025, 6, 15, 12, 0, 0)
GROUP = "Standard Unlimited Essential"


def create_test_bundle(duration: int = 7, cost: str = '15.00', **overrides) -> Bundle:
    """Create a German unlimited bundle"""
    data = {
        'id': f"de-unlimited-{duration}d",
        'name': f"Germany Unlimited {duration} days",
        'group': GROUP,
        'duration': duration,
        'cost': Decimal(cost),
        'country_id': 'DE',
        'country_name': 'Germany',
        'region_id': 'EU',
        'region_name': 'Europe',
        'is_unlimited': True,
        'data_amount': 'unlimited',
    }
    data.update(overrides)
    return Bundle(**data)


def create_test_context(bundles: Optional[List[Bundle]] = None, requested_duration: int = 5,
                        payment_method: str = 'ISRAELI_CARD', **overrides) -> PricingContext:
    return PricingContext(
        bundles=bundles if bundles is not None else [create_test_bundle()],
        requested_duration=requested_duration,
        payment_method=payment_method,
        current_date=overrides.pop('current_date', PRICING_DATE),
        **overrides,
    )


def processing_rule(rate: str = '0.014', method: str = 'ISRAELI_CARD', priority: int = 100,
                    name: Optional[str] = None) -> PricingRule:
    return (RuleBuilder()
            .with_name(name or f"{method} processing")
            .with_type(RuleType.SYSTEM_PROCESSING)
            .with_priority(priority)
            .when_payment_method(method)
            .then_set_processing_rate(rate)
            .build())


def europe_unlimited_rule(percentage: int = 15) -> PricingRule:
    return (RuleBuilder()
            .with_name("Europe Unlimited Discount")
            .with_type(RuleType.BUSINESS_DISCOUNT)
            .with_priority(40)
            .when_region("Europe")
            .when_unlimited()
            .then_apply_discount(percentage)
            .build())


def worked_example_rules() -> List[PricingRule]:
    """Markup 12, 1.4% processing, 20% for DE and 15% for unlimited Europe bundles"""
    return [
        RuleTemplates.markup_rule(GROUP, 7, '12.00'),
        processing_rule(),
        RuleTemplates.country_discount_rule('DE', 20),
        europe_unlimited_rule(),
    ]
