"""Builder pattern for creating pricing rules dynamically."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Any, Union
import logging
import uuid

from .. import DEFAULT_PROCESSING_RATES, DEFAULT_CONSTRAINTS
from ..core.models import (
    PricingRule, RuleCondition, RuleAction, RuleType, ActionType, ConditionOperator,
)
from ..core.exceptions import RuleValidationError
from ..utils.validation import RuleValidator

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]


class RuleBuilder:
    """Fluent builder for creating pricing rules."""

    def __init__(self):
        self._reset()

    def _reset(self):
        """Reset builder state."""
        self._rule_id: Optional[str] = None
        self._name: Optional[str] = None
        self._description: Optional[str] = None
        self._rule_type: Optional[RuleType] = None
        self._priority: int = 50
        self._conditions: List[RuleCondition] = []
        self._actions: List[RuleAction] = []
        self._active: bool = True
        self._editable: bool = True
        self._valid_from: Optional[datetime] = None
        self._valid_until: Optional[datetime] = None
        self._created_by: str = "system"
        self._metadata: Dict[str, Any] = {}

    def with_id(self, rule_id: str) -> 'RuleBuilder':
        self._rule_id = rule_id
        return self

    def with_name(self, name: str) -> 'RuleBuilder':
        self._name = name
        return self

    def with_description(self, description: str) -> 'RuleBuilder':
        self._description = description
        return self

    def with_type(self, rule_type: RuleType) -> 'RuleBuilder':
        self._rule_type = rule_type
        return self

    def with_priority(self, priority: int) -> 'RuleBuilder':
        """Set rule priority (0-1000, higher runs first)."""
        self._priority = priority
        return self

    def created_by(self, user: str) -> 'RuleBuilder':
        self._created_by = user
        return self

    # Conditions

    def when_country(self, *countries: str) -> 'RuleBuilder':
        """Match bundles for one country, or any of several."""
        return self._when_one_of("country", countries)

    def when_region(self, *regions: str) -> 'RuleBuilder':
        return self._when_one_of("region", regions)

    def when_bundle_group(self, group: str) -> 'RuleBuilder':
        self._conditions.append(RuleCondition("bundleGroup", ConditionOperator.EQUALS, group))
        return self

    def when_duration(self, days: int) -> 'RuleBuilder':
        self._conditions.append(RuleCondition("duration", ConditionOperator.EQUALS, days))
        return self

    def when_duration_between(self, min_days: int, max_days: int) -> 'RuleBuilder':
        self._conditions.append(
            RuleCondition("duration", ConditionOperator.BETWEEN, [min_days, max_days])
        )
        return self

    def when_payment_method(self, method: str) -> 'RuleBuilder':
        self._conditions.append(
            RuleCondition("customer.paymentMethod", ConditionOperator.EQUALS, method)
        )
        return self

    def when_unlimited(self, is_unlimited: bool = True) -> 'RuleBuilder':
        self._conditions.append(
            RuleCondition("bundle.isUnlimited", ConditionOperator.EQUALS, is_unlimited)
        )
        return self

    def when_new_customer(self) -> 'RuleBuilder':
        self._conditions.append(RuleCondition("customer.isNew", ConditionOperator.EQUALS, True))
        return self

    def when_all_bundles(self) -> 'RuleBuilder':
        """Match every priced bundle."""
        self._conditions.append(RuleCondition("bundle.id", ConditionOperator.NOT_EQUALS, ""))
        return self

    def when_custom(self, field: str, operator: Union[ConditionOperator, str], value: Any = None) -> 'RuleBuilder':
        """Add custom condition."""
        self._conditions.append(RuleCondition(field, operator, value))
        return self

    def _when_one_of(self, field: str, values) -> 'RuleBuilder':
        if len(values) == 1:
            self._conditions.append(RuleCondition(field, ConditionOperator.EQUALS, values[0]))
        else:
            self._conditions.append(RuleCondition(field, ConditionOperator.IN, list(values)))
        return self

    # Actions

    def then_add_markup(self, amount: Number) -> 'RuleBuilder':
        return self._then(ActionType.ADD_MARKUP, amount)

    def then_set_processing_rate(self, rate: Number) -> 'RuleBuilder':
        """Rate as a fraction, e.g. 0.014 for 1.4%."""
        return self._then(ActionType.SET_PROCESSING_RATE, rate)

    def then_apply_discount(self, percentage: Number) -> 'RuleBuilder':
        """Percentage of the subtotal, e.g. 20 for 20%."""
        return self._then(ActionType.APPLY_DISCOUNT_PERCENTAGE, percentage)

    def then_apply_fixed_discount(self, amount: Number) -> 'RuleBuilder':
        return self._then(ActionType.APPLY_FIXED_DISCOUNT, amount)

    def then_set_minimum_price(self, price: Number) -> 'RuleBuilder':
        return self._then(ActionType.SET_MINIMUM_PRICE, price)

    def then_set_minimum_profit(self, profit: Number) -> 'RuleBuilder':
        return self._then(ActionType.SET_MINIMUM_PROFIT, profit)

    def then_set_discount_per_unused_day(self, amount: Number) -> 'RuleBuilder':
        return self._then(ActionType.SET_DISCOUNT_PER_UNUSED_DAY, amount)

    def _then(self, action_type: ActionType, value: Number) -> 'RuleBuilder':
        self._actions.append(RuleAction(action_type, value))
        return self

    def valid_between(self, start: Optional[datetime], end: Optional[datetime]) -> 'RuleBuilder':
        """Set validity period."""
        self._valid_from = start
        self._valid_until = end
        return self

    def with_metadata(self, key: str, value: Any) -> 'RuleBuilder':
        self._metadata[key] = value
        return self

    def active(self, is_active: bool = True) -> 'RuleBuilder':
        self._active = is_active
        return self

    def editable(self, is_editable: bool = True) -> 'RuleBuilder':
        self._editable = is_editable
        return self

    def build(self) -> PricingRule:
        """Build and validate the pricing rule."""
        if not self._name:
            raise RuleValidationError(["Rule name is required"])
        if not self._rule_type:
            raise RuleValidationError(["Rule type is required"])

        now = datetime.now()
        rule = PricingRule(
            rule_id=self._rule_id or str(uuid.uuid4()),
            rule_type=self._rule_type,
            name=self._name,
            description=self._description or "",
            conditions=tuple(self._conditions),
            actions=tuple(self._actions),
            priority=self._priority,
            is_active=self._active,
            is_editable=self._editable and not self._rule_type.is_system,
            valid_from=self._valid_from,
            valid_until=self._valid_until,
            created_by=self._created_by,
            created_at=now,
            updated_at=now,
            metadata=self._metadata,
        )

        errors = RuleValidator().validate_rule(rule)
        if errors:
            raise RuleValidationError(errors, details={'rule': rule.name})

        self._reset()
        return rule


class RuleTemplates:
    """Pre-built rule templates for common scenarios."""

    @staticmethod
    def markup_rule(bundle_group: str, duration: int, markup: Number) -> PricingRule:
        """Fixed markup for a bundle group at one duration."""
        return (RuleBuilder()
                .with_name(f"Markup {bundle_group} {duration}d")
                .with_description(f"Add {markup} markup to {bundle_group} bundles of {duration} days")
                .with_type(RuleType.SYSTEM_MARKUP)
                .with_priority(100)
                .when_bundle_group(bundle_group)
                .when_duration(duration)
                .then_add_markup(markup)
                .build())

    @staticmethod
    def processing_rate_rule(payment_method: str, rate: Number) -> PricingRule:
        return (RuleBuilder()
                .with_name(f"{payment_method.replace('_', ' ').title()} Processing Rate")
                .with_description(f"Processing rate for {payment_method} payments")
                .with_type(RuleType.SYSTEM_PROCESSING)
                .with_priority(100)
                .when_payment_method(payment_method)
                .then_set_processing_rate(rate)
                .build())

    @staticmethod
    def minimum_price_rule(price: Number = DEFAULT_CONSTRAINTS['minimum_price']) -> PricingRule:
        return (RuleBuilder()
                .with_name("Minimum Price Floor")
                .with_description(f"Never sell below {price}")
                .with_type(RuleType.SYSTEM_MINIMUM_PRICE)
                .with_priority(1000)
                .when_all_bundles()
                .then_set_minimum_price(price)
                .build())

    @staticmethod
    def minimum_profit_rule(profit: Number = DEFAULT_CONSTRAINTS['minimum_profit']) -> PricingRule:
        return (RuleBuilder()
                .with_name("Minimum Profit Margin")
                .with_description(f"Keep at least {profit} profit per sale")
                .with_type(RuleType.BUSINESS_MINIMUM_PROFIT)
                .with_priority(900)
                .when_all_bundles()
                .then_set_minimum_profit(profit)
                .build())

    @staticmethod
    def unused_days_rule(amount: Number = DEFAULT_CONSTRAINTS['discount_per_unused_day']) -> PricingRule:
        return (RuleBuilder()
                .with_name("Unused Days Discount Rate")
                .with_description(f"{amount} discount per unused day")
                .with_type(RuleType.BUSINESS_UNUSED_DAYS)
                .with_priority(200)
                .when_all_bundles()
                .then_set_discount_per_unused_day(amount)
                .build())

    @staticmethod
    def country_discount_rule(country: str, percentage: Number, priority: int = 50) -> PricingRule:
        return (RuleBuilder()
                .with_name(f"{country} Discount")
                .with_description(f"{percentage}% off bundles for {country}")
                .with_type(RuleType.BUSINESS_DISCOUNT)
                .with_priority(priority)
                .when_country(country)
                .then_apply_discount(percentage)
                .build())

    @staticmethod
    def seasonal_promotion_rule(name: str, percentage: Number, start: datetime, end: datetime,
                                region: Optional[str] = None) -> PricingRule:
        builder = (RuleBuilder()
                   .with_name(name)
                   .with_description(f"{percentage}% promotional discount")
                   .with_type(RuleType.BUSINESS_PROMOTION)
                   .with_priority(60)
                   .valid_between(start, end))
        if region:
            builder.when_region(region)
        return builder.then_apply_discount(percentage).build()

    @staticmethod
    def default_system_rules() -> List[PricingRule]:
        """Rules every deployment starts with: processing rates and constraint floors."""
        rules = [
            RuleTemplates.processing_rate_rule(method, rate)
            for method, rate in DEFAULT_PROCESSING_RATES.items()
        ]
        rules.append(RuleTemplates.minimum_price_rule())
        rules.append(RuleTemplates.minimum_profit_rule())
        rules.append(RuleTemplates.unused_days_rule())
        return rules
