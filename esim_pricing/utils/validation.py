from typing import Dict, List, Any
from decimal import Decimal
import logging

from ..core.models import (
    ActionType, ConditionOperator, RuleType, PricingRule, PricingContext, PaymentMethod,
    RangeValue, ListValue, ZERO,
)


logger = logging.getLogger(__name__)


class RuleValidator:
    """Validation of pricing rules and pricing requests"""

    PRIORITY_LIMITS = {
        'min': 0,
        'max': 1000,
    }

    PERCENTAGE_LIMITS = {
        'min': Decimal('0'),
        'max': Decimal('100'),
    }

    RATE_LIMITS = {
        'min': Decimal('0'),
        'max': Decimal('1'),
    }

    VALID_PAYMENT_METHODS = [method.value for method in PaymentMethod]

    def __init__(self):
        self.validation_stats = {
            'total_validated': 0,
            'passed': 0,
            'failed': 0,
        }

    def validate_rule(self, rule: PricingRule) -> List[str]:
        """Return the list of problems with a rule, empty if it is valid"""
        errors = []

        if not rule.name or not rule.name.strip():
            errors.append("Rule name is required")

        if not isinstance(rule.rule_type, RuleType):
            errors.append(f"Unknown rule type: {rule.rule_type}")

        if not (self.PRIORITY_LIMITS['min'] <= rule.priority <= self.PRIORITY_LIMITS['max']):
            errors.append(
                f"Priority {rule.priority} outside valid range "
                f"{self.PRIORITY_LIMITS['min']}-{self.PRIORITY_LIMITS['max']}"
            )

        for condition in rule.conditions:
            errors.extend(self._validate_condition(condition))

        if not rule.actions:
            errors.append("At least one action is required")
        for action in rule.actions:
            errors.extend(self._validate_action(action))

        if rule.valid_from and rule.valid_until and rule.valid_from >= rule.valid_until:
            errors.append("valid_from must be before valid_until")

        self.validation_stats['total_validated'] += 1
        if errors:
            self.validation_stats['failed'] += 1
            logger.debug(f"Rule '{rule.name}' failed validation: {errors}")
        else:
            self.validation_stats['passed'] += 1

        return errors

    def _validate_condition(self, condition) -> List[str]:
        errors = []
        if not condition.field:
            errors.append("Condition field is required")
        if not isinstance(condition.operator, ConditionOperator):
            errors.append(f"Unsupported operator: {condition.operator}")
            return errors

        if condition.operator == ConditionOperator.BETWEEN and not isinstance(condition.resolved, RangeValue):
            errors.append(f"BETWEEN on '{condition.field}' needs a [start, end] value")
        if condition.operator in (ConditionOperator.IN, ConditionOperator.NOT_IN) \
                and not isinstance(condition.resolved, ListValue):
            errors.append(f"{condition.operator.value} on '{condition.field}' needs a list value")
        return errors

    def _validate_action(self, action) -> List[str]:
        errors = []
        if not isinstance(action.action_type, ActionType):
            return [f"Unknown action type: {action.action_type}"]

        value = action.value
        if action.action_type == ActionType.APPLY_DISCOUNT_PERCENTAGE:
            if not (self.PERCENTAGE_LIMITS['min'] <= value <= self.PERCENTAGE_LIMITS['max']):
                errors.append(f"Discount percentage {value} must be between 0 and 100")
        elif action.action_type == ActionType.SET_PROCESSING_RATE:
            if not (self.RATE_LIMITS['min'] <= value <= self.RATE_LIMITS['max']):
                errors.append(f"Processing rate {value} must be between 0 and 1")
        elif value < ZERO:
            errors.append(f"{action.action_type.value} value cannot be negative")
        return errors

    def validate_context(self, context: PricingContext) -> List[str]:
        """Check a pricing request before it reaches the engine"""
        errors = []

        if not context.bundles:
            errors.append("At least one bundle is required")

        if not isinstance(context.requested_duration, int) or isinstance(context.requested_duration, bool):
            errors.append("Requested duration must be an integer")
        elif context.requested_duration <= 0:
            errors.append(f"Requested duration must be positive, got {context.requested_duration}")

        seen_ids = set()
        for bundle in context.bundles:
            if bundle.cost <= ZERO:
                errors.append(f"Bundle {bundle.id} must have a positive cost, got {bundle.cost}")
            if bundle.duration <= 0:
                errors.append(f"Bundle {bundle.id} has invalid duration {bundle.duration}")
            if bundle.id in seen_ids:
                errors.append(f"Duplicate bundle id {bundle.id}")
            seen_ids.add(bundle.id)

        if context.payment_method not in self.VALID_PAYMENT_METHODS:
            logger.warning(f"Unrecognized payment method: {context.payment_method}")

        return errors

    def get_validation_summary(self) -> Dict[str, Any]:
        total = self.validation_stats['total_validated']
        return {
            **self.validation_stats,
            'pass_rate': self.validation_stats['passed'] / total if total else None,
        }
