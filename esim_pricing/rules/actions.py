"""Rule actions applied to the working pricing state."""

from dataclasses import dataclass
from decimal import Decimal
import logging

from ..core.models import (
    ActionType, RuleAction, PricingState, DiscountApplication, DiscountType, ZERO,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')


@dataclass(frozen=True)
class ActionResult:
    applied_value: Decimal
    changed_state: bool = True


class ActionExecutor:
    """Applies one action to a pricing state in place."""

    def execute(self, action: RuleAction, state: PricingState, rule_name: str) -> ActionResult:
        action_type = action.action_type

        if action_type == ActionType.ADD_MARKUP:
            state.markup += action.value
            return ActionResult(action.value)

        if action_type == ActionType.SET_PROCESSING_RATE:
            return self._set_processing_rate(action, state, rule_name)

        if action_type in (ActionType.APPLY_DISCOUNT, ActionType.APPLY_FIXED_DISCOUNT):
            return self._add_discount(state, rule_name, action.value, DiscountType.FIXED)

        if action_type == ActionType.APPLY_DISCOUNT_PERCENTAGE:
            amount = state.subtotal * action.value / HUNDRED
            return self._add_discount(state, rule_name, amount, DiscountType.PERCENTAGE)

        if action.is_configuration:
            # Floors and ratios are resolved by the engine's configuration lookup
            return ActionResult(ZERO, changed_state=False)

        logger.warning(f"Unknown action type '{action_type}' in rule '{rule_name}'")
        return ActionResult(ZERO, changed_state=False)

    @staticmethod
    def _set_processing_rate(action: RuleAction, state: PricingState, rule_name: str) -> ActionResult:
        # Rules arrive in descending priority, so the first rate set wins
        if state.processing_rate_rule is not None:
            logger.debug(
                f"Processing rate already set by '{state.processing_rate_rule}', "
                f"ignoring '{rule_name}'"
            )
            return ActionResult(ZERO, changed_state=False)

        previous = state.processing_rate
        state.processing_rate = action.value
        state.processing_rate_rule = rule_name
        return ActionResult((action.value - previous) * HUNDRED)

    @staticmethod
    def _add_discount(state: PricingState, rule_name: str, amount: Decimal,
                      discount_type: DiscountType) -> ActionResult:
        state.discounts.append(DiscountApplication(
            rule_name=rule_name,
            amount=amount,
            discount_type=discount_type.value,
        ))
        return ActionResult(amount)
