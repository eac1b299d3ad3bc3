"""Pricing rule engine.

Runs a single, strictly ordered pipeline per calculation:

    bundle selection -> system rules -> subtotal -> business rules
    -> unused-days adjustment -> final pricing -> profit validation

Rules never trigger other rules. Each stage emits a typed ``PricingStep`` and
the final ``PricingCalculation`` is delivered separately through
``PricingRun.result``.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Generator, Iterable, Iterator, List, Optional, Tuple
import json
import logging
import threading

from .. import PRICING_DEFAULTS
from ..core.models import (
    ActionType, RuleType, ConditionOperator, NumberValue, StringValue,
    PricingContext, PricingRule, PricingState, PricingCalculation,
    AppliedRule, DiscountApplication, DiscountType, SelectedBundleSummary,
    CalculationMetadata, ZERO,
)
from ..core.steps import (
    PricingStep, PricingStepType, InitializationData, RuleEvaluationData,
    RuleApplicationData, SubtotalData, UnusedDaysData, FinalCalculationData,
    ProfitValidationData, CompletedData,
)
from ..core.exceptions import MissingProcessingRateError, InsufficientProfitMarginError
from ..selection.bundle_selector import BundleSelector
from ..utils.validation import RuleValidator
from .conditions import ConditionEvaluator
from .actions import ActionExecutor

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')
UNUSED_DAYS_DISCOUNT_NAME = "Unused Days Discount"

GROUP_FIELDS = frozenset({'bundleGroup', 'bundle_group', 'group', 'bundle.group'})
DURATION_FIELDS = frozenset({'duration', 'bundle.duration'})

MarkupKey = Tuple[str, int]


def _priority_order(rules: Iterable[PricingRule]) -> Tuple[PricingRule, ...]:
    # Higher priority first; ties keep insertion order
    return tuple(sorted(rules, key=lambda r: -r.priority))


def _markup_key(rule: PricingRule) -> Optional[MarkupKey]:
    group = None
    duration = None
    for condition in rule.conditions:
        if condition.operator != ConditionOperator.EQUALS:
            continue
        if condition.field in GROUP_FIELDS and isinstance(condition.resolved, StringValue):
            group = condition.resolved.value
        elif condition.field in DURATION_FIELDS and isinstance(condition.resolved, NumberValue):
            if condition.resolved.value == condition.resolved.value.to_integral_value():
                duration = int(condition.resolved.value)
    if group is None or duration is None:
        return None
    return group, duration


@dataclass(frozen=True)
class RuleSet:
    """Immutable snapshot of the loaded rules, shared by concurrent runs."""
    rules: Tuple[PricingRule, ...] = ()
    system_rules: Tuple[PricingRule, ...] = ()
    business_rules: Tuple[PricingRule, ...] = ()
    markup_index: Dict[MarkupKey, Tuple[PricingRule, ...]] = field(default_factory=dict)

    @classmethod
    def build(cls, rules: Iterable[PricingRule]) -> 'RuleSet':
        ordered = _priority_order(rules)
        system_rules = tuple(r for r in ordered if r.is_system)
        business_rules = tuple(r for r in ordered if not r.is_system)

        index: Dict[MarkupKey, List[PricingRule]] = {}
        for rule in system_rules:
            if rule.rule_type != RuleType.SYSTEM_MARKUP or not rule.find_action(ActionType.ADD_MARKUP):
                continue
            key = _markup_key(rule)
            if key is not None:
                index.setdefault(key, []).append(rule)

        return cls(
            rules=ordered,
            system_rules=system_rules,
            business_rules=business_rules,
            markup_index={key: tuple(value) for key, value in index.items()},
        )

    def processing_rules(self) -> Tuple[PricingRule, ...]:
        return tuple(
            rule for rule in self.system_rules
            if rule.is_active
            and rule.rule_type == RuleType.SYSTEM_PROCESSING
            and rule.find_action(ActionType.SET_PROCESSING_RATE) is not None
        )


class PricingRun:
    """One pipeline run: a lazily pulled step stream plus a result channel.

    Iterating yields steps; ``result`` drives any remaining steps and returns
    the final calculation. Abandoning iteration needs no cleanup.
    """

    def __init__(self, pipeline: Generator[PricingStep, None, PricingCalculation]):
        self._pipeline = pipeline
        self._result: Optional[PricingCalculation] = None
        self._done = False

    def steps(self) -> Iterator[PricingStep]:
        while not self._done:
            try:
                step = next(self._pipeline)
            except StopIteration as stop:
                self._result = stop.value
                self._done = True
                return
            yield step

    def __iter__(self) -> Iterator[PricingStep]:
        return self.steps()

    @property
    def done(self) -> bool:
        return self._done

    @property
    def result(self) -> PricingCalculation:
        for _ in self.steps():
            pass
        return self._result


class PricingRuleEngine:
    """Evaluates system and business rules for one bundle at a time."""

    def __init__(self, config: Optional[Dict] = None):
        self.config = PRICING_DEFAULTS.copy()
        if config:
            self.config.update(config)

        self.condition_evaluator = ConditionEvaluator()
        self.action_executor = ActionExecutor()
        self.bundle_selector = BundleSelector()
        self.rule_validator = RuleValidator()

        self._rule_set = RuleSet()
        self._lock = threading.Lock()

    # Rule management

    def add_rule(self, rule: PricingRule) -> 'PricingRuleEngine':
        with self._lock:
            self._rule_set = RuleSet.build(self._rule_set.rules + (rule,))
        logger.debug(f"Added rule: {rule.name} (priority: {rule.priority})")
        return self

    def add_rules(self, rules: Iterable[PricingRule]) -> 'PricingRuleEngine':
        with self._lock:
            self._rule_set = RuleSet.build(self._rule_set.rules + tuple(rules))
        return self

    def add_system_rules(self, rules: Iterable[PricingRule]) -> 'PricingRuleEngine':
        """Add rules as non-editable system rules."""
        return self.add_rules(rule.with_changes(is_editable=False) for rule in rules)

    def load_rules(self, rules: Iterable[PricingRule]) -> None:
        """Replace the whole rule set atomically."""
        rule_set = RuleSet.build(rules)
        with self._lock:
            self._rule_set = rule_set
        logger.info(
            f"Loaded {len(rule_set.rules)} pricing rules "
            f"({len(rule_set.system_rules)} system, {len(rule_set.business_rules)} business)"
        )

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            remaining = tuple(r for r in self._rule_set.rules if r.rule_id != rule_id)
            removed = len(remaining) < len(self._rule_set.rules)
            if removed:
                self._rule_set = RuleSet.build(remaining)
        if removed:
            logger.info(f"Removed rule: {rule_id}")
        return removed

    def clear_rules(self) -> None:
        with self._lock:
            self._rule_set = RuleSet()

    @property
    def rule_set(self) -> RuleSet:
        return self._rule_set

    def get_rules(self) -> List[PricingRule]:
        return list(self._rule_set.rules)

    def get_system_rules(self) -> List[PricingRule]:
        return list(self._rule_set.system_rules)

    def get_business_rules(self) -> List[PricingRule]:
        return list(self._rule_set.business_rules)

    def validate_rule(self, rule: PricingRule) -> List[str]:
        return self.rule_validator.validate_rule(rule)

    def find_conflicts(self, new_rule: PricingRule) -> List[PricingRule]:
        """Rules with the same conditions as ``new_rule`` but different actions."""
        return [
            existing for existing in self._rule_set.rules
            if existing.rule_id != new_rule.rule_id
            and _same_conditions(new_rule, existing)
            and _different_actions(new_rule, existing)
        ]

    # Calculation

    def run(self, context: PricingContext) -> PricingRun:
        """Select the bundle, check configuration and start the pipeline.

        Selection and configuration errors are raised here, before any step
        is produced.
        """
        rule_set = self._rule_set

        context.bundle = self.bundle_selector.select_optimal_bundle(
            context.bundles, context.requested_duration
        )

        processing_rules = rule_set.processing_rules()
        if not processing_rules:
            raise MissingProcessingRateError(
                "No active SYSTEM_PROCESSING rule with a SET_PROCESSING_RATE action is configured"
            )
        if not any(self.is_rule_applicable(rule, context) for rule in processing_rules):
            raise MissingProcessingRateError(
                f"No processing rate rule matched payment method {context.payment_method}",
                details={'payment_method': context.payment_method},
            )

        return PricingRun(self._pipeline(context, rule_set))

    def calculate_price_steps(self, context: PricingContext) -> Iterator[PricingStep]:
        return self.run(context).steps()

    def calculate_price(self, context: PricingContext) -> PricingCalculation:
        return self.run(context).result

    def _pipeline(self, context: PricingContext,
                  rule_set: RuleSet) -> Generator[PricingStep, None, PricingCalculation]:
        bundle = context.bundle
        logger.info(
            f"Starting price calculation for {bundle.id} "
            f"({bundle.country_id}, {bundle.duration} days, requested {context.requested_duration})"
        )

        state = PricingState(
            base_cost=bundle.cost,
            subtotal=bundle.cost,
            unused_days=context.unused_days,
        )
        applied_rules: List[AppliedRule] = []

        yield PricingStep(
            PricingStepType.INITIALIZATION,
            f"Initializing pricing for {bundle.name}",
            InitializationData(
                bundle_id=bundle.id,
                bundle_name=bundle.name,
                base_cost=state.base_cost,
                duration=bundle.duration,
                requested_duration=context.requested_duration,
                unused_days=state.unused_days,
                country=bundle.country_id,
            ),
        )

        # System rules: markup and processing
        for rule in rule_set.system_rules:
            matched, reason = self._evaluate_rule(rule, context)
            yield PricingStep(
                PricingStepType.SYSTEM_RULE_EVALUATION,
                f"Evaluating system rule: {rule.name}",
                self._evaluation_data(rule, matched, reason),
            )
            if matched:
                impact = self._apply_rule(rule, state, applied_rules)
                yield PricingStep(
                    PricingStepType.SYSTEM_RULE_APPLICATION,
                    f"Applied system rule: {rule.name}",
                    RuleApplicationData(
                        rule_id=rule.rule_id,
                        rule_name=rule.name,
                        impact=impact,
                        new_state={'markup': state.markup, 'processing_rate': state.processing_rate},
                    ),
                )

        state.subtotal = state.base_cost + state.markup
        yield PricingStep(
            PricingStepType.SUBTOTAL_CALCULATION,
            "Calculated subtotal after markup",
            SubtotalData(base_cost=state.base_cost, markup=state.markup, subtotal=state.subtotal),
        )

        # Business rules: discounts and promotions
        for rule in rule_set.business_rules:
            matched, reason = self._evaluate_rule(rule, context)
            yield PricingStep(
                PricingStepType.BUSINESS_RULE_EVALUATION,
                f"Evaluating business rule: {rule.name}",
                self._evaluation_data(rule, matched, reason),
            )
            if matched:
                impact = self._apply_rule(rule, state, applied_rules)
                yield PricingStep(
                    PricingStepType.BUSINESS_RULE_APPLICATION,
                    f"Applied business rule: {rule.name}",
                    RuleApplicationData(
                        rule_id=rule.rule_id,
                        rule_name=rule.name,
                        impact=impact,
                        new_state={
                            'discounts': [d.rule_name for d in state.discounts],
                            'total_discount': state.total_discount,
                        },
                    ),
                )

        previous_duration = None
        if state.unused_days > 0:
            unused = self._apply_unused_days_discount(context, rule_set, state)
            previous_duration = unused.previous_duration
            yield PricingStep(
                PricingStepType.UNUSED_DAYS_CALCULATION,
                f"Calculating unused days discount ({state.unused_days} days)",
                unused,
            )

        # Final pricing
        total_discount = state.total_discount
        minimum_price = self.resolve_configuration(
            context, ActionType.SET_MINIMUM_PRICE, RuleType.SYSTEM_MINIMUM_PRICE, rule_set
        ) or ZERO
        price_after_discount = max(minimum_price, state.subtotal - total_discount)
        processing_fee = price_after_discount * state.processing_rate
        final_price = price_after_discount + processing_fee
        revenue_after_processing = final_price - processing_fee - state.base_cost
        final_revenue = final_price - state.base_cost
        profit = revenue_after_processing

        yield PricingStep(
            PricingStepType.FINAL_CALCULATION,
            "Calculating final price",
            FinalCalculationData(
                total_discount=total_discount,
                minimum_price=minimum_price,
                price_after_discount=price_after_discount,
                processing_rate=state.processing_rate,
                processing_fee=processing_fee,
                final_price=final_price,
                profit=profit,
            ),
        )

        # Profit validation is advisory unless strict mode is configured
        minimum_profit = self.resolve_configuration(
            context, ActionType.SET_MINIMUM_PROFIT, RuleType.BUSINESS_MINIMUM_PROFIT, rule_set
        ) or ZERO
        is_profit_valid = profit >= minimum_profit
        warning = None if is_profit_valid else f"Profit {profit:.2f} is below minimum {minimum_profit:.2f}"

        yield PricingStep(
            PricingStepType.PROFIT_VALIDATION,
            "Profit margin validated" if is_profit_valid else "Warning: Low profit margin",
            ProfitValidationData(
                profit=profit,
                minimum_required=minimum_profit,
                is_valid=is_profit_valid,
                warning=warning,
            ),
        )

        if not is_profit_valid:
            logger.warning(
                f"Calculated price below minimum profit margin for {bundle.id}: "
                f"profit {profit:.2f}, required {minimum_profit:.2f}, final price {final_price:.2f}"
            )
            if self.config.get('strict_profit_validation'):
                raise InsufficientProfitMarginError(
                    warning,
                    details={'profit': str(profit), 'minimum_required': str(minimum_profit)},
                )

        max_recommended_price = state.base_cost + minimum_profit
        # Largest discount that still leaves the minimum profit after processing
        max_discount_amount = max(ZERO, state.subtotal - state.base_cost - minimum_profit)
        if state.subtotal > 0:
            max_discount_percentage = max_discount_amount / state.subtotal * HUNDRED
        else:
            max_discount_percentage = ZERO

        calculation = PricingCalculation(
            base_cost=state.base_cost,
            markup=state.markup,
            subtotal=state.subtotal,
            discounts=tuple(state.discounts),
            total_discount=total_discount,
            price_after_discount=price_after_discount,
            processing_fee=processing_fee,
            processing_rate=state.processing_rate,
            final_price=final_price,
            final_revenue=final_revenue,
            revenue_after_processing=revenue_after_processing,
            profit=profit,
            max_recommended_price=max_recommended_price,
            max_discount_percentage=max_discount_percentage,
            applied_rules=tuple(applied_rules),
            selected_bundle=SelectedBundleSummary.from_context(context),
            metadata=CalculationMetadata(
                discount_per_unused_day=state.discount_per_unused_day,
                unused_days=state.unused_days,
                previous_duration=previous_duration,
                minimum_price=minimum_price,
                minimum_profit=minimum_profit,
            ),
        )

        yield PricingStep(
            PricingStepType.COMPLETED,
            "Price calculation completed",
            CompletedData(final_price=final_price, applied_rules_count=len(applied_rules)),
        )

        logger.info(
            f"Price calculation completed for {bundle.id}: final price {final_price:.2f}, "
            f"profit {profit:.2f}, {len(applied_rules)} rules applied"
        )
        return calculation

    # Helpers

    def _evaluate_rule(self, rule: PricingRule, context: PricingContext) -> Tuple[bool, str]:
        if not rule.is_active:
            return False, "Rule is inactive"
        if not rule.is_within_window(context.current_date):
            return False, "Outside validity window"
        for condition in rule.conditions:
            if not self.condition_evaluator.evaluate(condition, context):
                return False, f"Condition not met: {condition.field}"
        return True, "All conditions met"

    def is_rule_applicable(self, rule: PricingRule, context: PricingContext) -> bool:
        return self._evaluate_rule(rule, context)[0]

    @staticmethod
    def _evaluation_data(rule: PricingRule, matched: bool, reason: str) -> RuleEvaluationData:
        return RuleEvaluationData(
            rule_id=rule.rule_id,
            rule_name=rule.name,
            rule_type=rule.rule_type.value,
            priority=rule.priority,
            matched=matched,
            reason=reason,
        )

    def _apply_rule(self, rule: PricingRule, state: PricingState,
                    applied_rules: List[AppliedRule]) -> Decimal:
        total_impact = ZERO
        for action in rule.actions:
            result = self.action_executor.execute(action, state, rule.name)
            total_impact += result.applied_value

        applied_rules.append(AppliedRule(
            rule_id=rule.rule_id,
            name=rule.name,
            rule_type=rule.rule_type.value,
            impact=total_impact,
        ))
        logger.debug(f"Applied rule {rule.rule_id} ({rule.name}), impact {total_impact}")
        return total_impact

    def resolve_configuration(self, context: PricingContext, action_type: ActionType,
                              rule_type: Optional[RuleType] = None,
                              rule_set: Optional[RuleSet] = None) -> Optional[Decimal]:
        """Value of the highest-priority applicable rule carrying ``action_type``."""
        rule_set = rule_set or self._rule_set
        for rule in rule_set.rules:
            if rule_type is not None and rule.rule_type != rule_type:
                continue
            action = rule.find_action(action_type)
            if action is not None and self.is_rule_applicable(rule, context):
                return action.value
        return None

    def lookup_markup(self, bundle_group: str, duration: int, context: PricingContext,
                      rule_set: Optional[RuleSet] = None) -> Optional[Decimal]:
        """Markup configured for a bundle group at a given duration."""
        rule_set = rule_set or self._rule_set
        for rule in rule_set.markup_index.get((bundle_group, duration), ()):
            if rule.is_active and rule.is_within_window(context.current_date):
                return rule.find_action(ActionType.ADD_MARKUP).value
        return None

    @staticmethod
    def calculate_unused_day_discount(selected_markup: Decimal, selected_duration: int,
                                      previous_markup: Decimal, previous_duration: int) -> Decimal:
        """Per-day discount from the markup difference between two durations."""
        days_difference = selected_duration - previous_duration
        if days_difference <= 0:
            return ZERO
        return (selected_markup - previous_markup) / Decimal(days_difference)

    def _apply_unused_days_discount(self, context: PricingContext, rule_set: RuleSet,
                                    state: PricingState) -> UnusedDaysData:
        bundle = context.bundle
        previous_duration = self.bundle_selector.find_previous_duration(
            context.bundles, context.requested_duration
        )
        selected_markup = self.lookup_markup(bundle.group, bundle.duration, context, rule_set)
        if selected_markup is None:
            selected_markup = state.markup
        configured_rate = self.resolve_configuration(
            context, ActionType.SET_DISCOUNT_PER_UNUSED_DAY, rule_set=rule_set
        )

        previous_markup = None
        discount_per_day = ZERO
        total_discount = ZERO
        applied = False

        if previous_duration is None:
            reason = f"No bundle of {context.requested_duration} days or fewer to compare against"
        else:
            previous_markup = self.lookup_markup(bundle.group, previous_duration, context, rule_set)
            if previous_markup is None:
                reason = f"No markup configured for '{bundle.group}' at {previous_duration} days"
            else:
                per_day = self.calculate_unused_day_discount(
                    selected_markup, bundle.duration, previous_markup, previous_duration
                )
                if per_day <= 0:
                    reason = "Markup difference does not produce a discount"
                else:
                    discount_per_day = per_day
                    total_discount = per_day * state.unused_days
                    state.discounts.append(DiscountApplication(
                        rule_name=UNUSED_DAYS_DISCOUNT_NAME,
                        amount=total_discount,
                        discount_type=DiscountType.UNUSED_DAYS.value,
                    ))
                    applied = True
                    reason = (
                        f"{discount_per_day:.2f} per day for {state.unused_days} unused days "
                        f"(markup {selected_markup:.2f} at {bundle.duration} days vs "
                        f"{previous_markup:.2f} at {previous_duration} days)"
                    )

        if not applied:
            logger.warning(f"Unused days discount skipped for {bundle.id}: {reason}")

        state.discount_per_unused_day = discount_per_day
        return UnusedDaysData(
            unused_days=state.unused_days,
            selected_duration=bundle.duration,
            previous_duration=previous_duration,
            selected_markup=selected_markup,
            previous_markup=previous_markup,
            configured_rate=configured_rate,
            discount_per_day=discount_per_day,
            total_discount=total_discount,
            applied=applied,
            reason=reason,
        )


def _condition_signature(rule: PricingRule) -> List[str]:
    return sorted(json.dumps(c.to_dict(), sort_keys=True) for c in rule.conditions)


def _same_conditions(first: PricingRule, second: PricingRule) -> bool:
    if len(first.conditions) != len(second.conditions):
        return False
    return _condition_signature(first) == _condition_signature(second)


def _different_actions(first: PricingRule, second: PricingRule) -> bool:
    if len(first.actions) != len(second.actions):
        return True
    return sorted(json.dumps(a.to_dict(), sort_keys=True) for a in first.actions) != \
        sorted(json.dumps(a.to_dict(), sort_keys=True) for a in second.actions)
