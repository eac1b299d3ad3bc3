from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, date, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any, Tuple, Union
from enum import Enum
import re

from .. import SYSTEM_RULE_TYPES


class RuleType(Enum):
    SYSTEM_MARKUP = "SYSTEM_MARKUP"
    SYSTEM_PROCESSING = "SYSTEM_PROCESSING"
    SYSTEM_MINIMUM_PRICE = "SYSTEM_MINIMUM_PRICE"
    BUSINESS_DISCOUNT = "BUSINESS_DISCOUNT"
    BUSINESS_PROMOTION = "BUSINESS_PROMOTION"
    BUSINESS_MINIMUM_PROFIT = "BUSINESS_MINIMUM_PROFIT"
    BUSINESS_UNUSED_DAYS = "BUSINESS_UNUSED_DAYS"

    @property
    def is_system(self) -> bool:
        return self.value in SYSTEM_RULE_TYPES


class ConditionOperator(Enum):
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    GREATER_THAN_OR_EQUAL = "GREATER_THAN_OR_EQUAL"
    LESS_THAN_OR_EQUAL = "LESS_THAN_OR_EQUAL"
    BETWEEN = "BETWEEN"
    IN = "IN"
    NOT_IN = "NOT_IN"
    CONTAINS = "CONTAINS"
    EXISTS = "EXISTS"
    NOT_EXISTS = "NOT_EXISTS"


class ActionType(Enum):
    ADD_MARKUP = "ADD_MARKUP"
    SET_PROCESSING_RATE = "SET_PROCESSING_RATE"
    APPLY_DISCOUNT = "APPLY_DISCOUNT"
    APPLY_FIXED_DISCOUNT = "APPLY_FIXED_DISCOUNT"
    APPLY_DISCOUNT_PERCENTAGE = "APPLY_DISCOUNT_PERCENTAGE"
    SET_MINIMUM_PRICE = "SET_MINIMUM_PRICE"
    SET_MINIMUM_PROFIT = "SET_MINIMUM_PROFIT"
    SET_DISCOUNT_PER_UNUSED_DAY = "SET_DISCOUNT_PER_UNUSED_DAY"


# Actions that configure floors and ratios instead of mutating running state
CONFIGURATION_ACTIONS = frozenset({
    ActionType.SET_MINIMUM_PRICE,
    ActionType.SET_MINIMUM_PROFIT,
    ActionType.SET_DISCOUNT_PER_UNUSED_DAY,
})


class PaymentMethod(Enum):
    ISRAELI_CARD = "ISRAELI_CARD"
    FOREIGN_CARD = "FOREIGN_CARD"
    BIT = "BIT"
    AMEX = "AMEX"
    DINERS = "DINERS"


class DiscountType(Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    UNUSED_DAYS = "unused_days"


ZERO = Decimal('0')

DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}:\d{2}(?:\.\d{3}(?:\d{3})?)?)?')


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a numeric-looking value to Decimal, None if it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def _naive(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def parse_date(value: Any) -> Optional[datetime]:
    """Parse datetimes, dates and ISO-8601 strings (YYYY-MM-DD[THH:MM:SS])."""
    if isinstance(value, datetime):
        return _naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None
    match = DATE_PATTERN.match(value.strip())
    if not match:
        return None
    try:
        return datetime.fromisoformat(match.group(0))
    except ValueError:
        return None


# Tagged condition values, resolved once when a condition is constructed

@dataclass(frozen=True)
class NullValue:
    raw: Any = None


@dataclass(frozen=True)
class BooleanValue:
    value: bool
    raw: Any = None


@dataclass(frozen=True)
class NumberValue:
    value: Decimal
    raw: Any = None


@dataclass(frozen=True)
class StringValue:
    value: str
    raw: Any = None


@dataclass(frozen=True)
class DateValue:
    value: datetime
    raw: Any = None


@dataclass(frozen=True)
class ListValue:
    items: Tuple[Any, ...]
    raw: Any = None


@dataclass(frozen=True)
class RangeValue:
    start: Any
    end: Any
    raw: Any = None


ConditionValue = Union[NullValue, BooleanValue, NumberValue, StringValue,
                       DateValue, ListValue, RangeValue]


def resolve_condition_value(raw: Any, operator: Any = None) -> ConditionValue:
    """Classify a raw rule value into its tagged variant."""
    if operator == ConditionOperator.BETWEEN and isinstance(raw, (list, tuple)) and len(raw) == 2:
        return RangeValue(
            start=resolve_condition_value(raw[0]),
            end=resolve_condition_value(raw[1]),
            raw=raw,
        )
    if raw is None:
        return NullValue()
    if isinstance(raw, bool):
        return BooleanValue(raw, raw)
    if isinstance(raw, (list, tuple, set, frozenset)):
        return ListValue(tuple(raw), raw)
    if isinstance(raw, (int, float, Decimal)):
        return NumberValue(to_decimal(raw), raw)
    if isinstance(raw, (datetime, date)):
        return DateValue(parse_date(raw), raw)
    if isinstance(raw, str):
        parsed = parse_date(raw)
        if parsed is not None:
            return DateValue(parsed, raw)
        return StringValue(raw, raw)
    if isinstance(raw, Enum):
        return StringValue(str(raw.value), raw)
    return StringValue(str(raw), raw)


@dataclass(frozen=True)
class Bundle:
    """Wholesale data package offered at a cost"""
    id: str
    name: str
    group: str
    duration: int
    cost: Decimal
    country_id: str = ""
    country_name: str = ""
    region_id: str = ""
    region_name: str = ""
    is_unlimited: bool = False
    data_amount: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'cost', to_decimal(self.cost))
        if self.cost is None:
            raise ValueError(f"Bundle {self.id} has a non-numeric cost")


@dataclass
class CustomerInfo:
    id: Optional[str] = None
    is_new: bool = False
    is_first_purchase: bool = False
    purchase_count: int = 0
    segment: Optional[str] = None


@dataclass
class PricingContext:
    """Inputs of one pricing request.

    Only ``bundle`` is written after construction, when the selector attaches
    the bundle that will be priced.
    """
    bundles: List[Bundle]
    requested_duration: int
    payment_method: str = PaymentMethod.ISRAELI_CARD.value
    customer: CustomerInfo = field(default_factory=CustomerInfo)
    current_date: Optional[datetime] = None
    bundle: Optional[Bundle] = None
    request: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.payment_method, Enum):
            self.payment_method = self.payment_method.value
        if self.customer is None:
            self.customer = CustomerInfo()
        if self.current_date is None:
            self.current_date = datetime.now()
        else:
            self.current_date = parse_date(self.current_date)

    # Denormalized helpers for single-segment rule conditions

    @property
    def country(self) -> Optional[str]:
        return self.bundle.country_id if self.bundle else None

    @property
    def region(self) -> Optional[str]:
        return self.bundle.region_name if self.bundle else None

    @property
    def bundle_group(self) -> Optional[str]:
        return self.bundle.group if self.bundle else None

    @property
    def duration(self) -> Optional[int]:
        return self.bundle.duration if self.bundle else None

    @property
    def unused_days(self) -> int:
        if not self.bundle:
            return 0
        return max(0, self.bundle.duration - self.requested_duration)


@dataclass(frozen=True)
class RuleCondition:
    """Condition a rule needs to match; all conditions of a rule are AND-ed."""
    field: str
    operator: Union[ConditionOperator, str]
    value: Any = None
    resolved: ConditionValue = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        operator = self.operator
        if not isinstance(operator, ConditionOperator):
            try:
                operator = ConditionOperator(str(operator).upper())
            except ValueError:
                operator = str(operator)
        object.__setattr__(self, 'operator', operator)
        object.__setattr__(self, 'resolved', resolve_condition_value(self.value, operator))

    def to_dict(self) -> Dict[str, Any]:
        operator = self.operator.value if isinstance(self.operator, ConditionOperator) else self.operator
        return {'field': self.field, 'operator': operator, 'value': _jsonable(self.value)}


@dataclass(frozen=True)
class RuleAction:
    action_type: Union[ActionType, str]
    value: Decimal = ZERO

    def __post_init__(self):
        action_type = self.action_type
        if not isinstance(action_type, ActionType):
            try:
                action_type = ActionType(str(action_type).upper())
            except ValueError:
                action_type = str(action_type)
        object.__setattr__(self, 'action_type', action_type)
        value = to_decimal(self.value)
        if value is None:
            raise ValueError(f"Action value must be numeric, got {self.value!r}")
        object.__setattr__(self, 'value', value)

    @property
    def is_configuration(self) -> bool:
        return self.action_type in CONFIGURATION_ACTIONS

    def to_dict(self) -> Dict[str, Any]:
        action_type = self.action_type.value if isinstance(self.action_type, ActionType) else self.action_type
        return {'type': action_type, 'value': str(self.value)}


@dataclass(frozen=True)
class PricingRule:
    """A pricing rule as loaded from the rule store."""
    rule_id: str
    rule_type: RuleType
    name: str
    conditions: Tuple[RuleCondition, ...]
    actions: Tuple[RuleAction, ...]
    priority: int = 50
    description: str = ""
    is_active: bool = True
    is_editable: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    created_by: str = "system"
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if not isinstance(self.rule_type, RuleType):
            object.__setattr__(self, 'rule_type', RuleType(str(self.rule_type).upper()))
        object.__setattr__(self, 'conditions', tuple(
            c if isinstance(c, RuleCondition) else RuleCondition(**_condition_kwargs(c))
            for c in self.conditions
        ))
        object.__setattr__(self, 'actions', tuple(
            a if isinstance(a, RuleAction) else RuleAction(**_action_kwargs(a))
            for a in self.actions
        ))
        for attr in ('valid_from', 'valid_until'):
            raw = getattr(self, attr)
            if raw is not None:
                parsed = parse_date(raw)
                if parsed is None:
                    raise ValueError(f"Invalid {attr} for rule {self.rule_id}: {raw!r}")
                object.__setattr__(self, attr, parsed)

    @property
    def is_system(self) -> bool:
        return self.rule_type.is_system

    def is_within_window(self, moment: datetime) -> bool:
        moment = _naive(moment)
        if self.valid_from and moment < self.valid_from:
            return False
        if self.valid_until and moment > self.valid_until:
            return False
        return True

    def find_action(self, action_type: ActionType) -> Optional[RuleAction]:
        for action in self.actions:
            if action.action_type == action_type:
                return action
        return None

    def with_changes(self, **changes) -> 'PricingRule':
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule_id': self.rule_id,
            'rule_type': self.rule_type.value,
            'name': self.name,
            'description': self.description,
            'conditions': [c.to_dict() for c in self.conditions],
            'actions': [a.to_dict() for a in self.actions],
            'priority': self.priority,
            'is_active': self.is_active,
            'is_editable': self.is_editable,
            'valid_from': self.valid_from.isoformat() if self.valid_from else None,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'metadata': self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PricingRule':
        return cls(
            rule_id=data['rule_id'],
            rule_type=data['rule_type'],
            name=data['name'],
            description=data.get('description') or "",
            conditions=data.get('conditions', []),
            actions=data.get('actions', []),
            priority=int(data.get('priority', 50)),
            is_active=data.get('is_active', True),
            is_editable=data.get('is_editable', True),
            valid_from=data.get('valid_from'),
            valid_until=data.get('valid_until'),
            created_by=data.get('created_by', 'system'),
            created_at=parse_date(data['created_at']) if data.get('created_at') else datetime.now(),
            updated_at=parse_date(data['updated_at']) if data.get('updated_at') else datetime.now(),
            metadata=data.get('metadata', {}),
        )


def _condition_kwargs(data: Dict[str, Any]) -> Dict[str, Any]:
    return {'field': data['field'], 'operator': data['operator'], 'value': data.get('value')}


def _action_kwargs(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'action_type': data.get('action_type') or data.get('type'),
        'value': data.get('value', 0),
    }


@dataclass(frozen=True)
class DiscountApplication:
    rule_name: str
    amount: Decimal
    discount_type: str


@dataclass
class PricingState:
    """Mutable working state of a single calculation"""
    base_cost: Decimal
    subtotal: Decimal
    markup: Decimal = ZERO
    discounts: List[DiscountApplication] = field(default_factory=list)
    processing_rate: Decimal = ZERO
    processing_rate_rule: Optional[str] = None  # rule that fixed the rate
    discount_per_unused_day: Decimal = ZERO
    unused_days: int = 0

    @property
    def total_discount(self) -> Decimal:
        return sum((d.amount for d in self.discounts), ZERO)


@dataclass(frozen=True)
class AppliedRule:
    rule_id: str
    name: str
    rule_type: str
    impact: Decimal


@dataclass(frozen=True)
class SelectedBundleSummary:
    id: str
    name: str
    group: str
    duration: int
    cost: Decimal
    country_id: str
    region_name: str
    requested_duration: int
    unused_days: int

    @classmethod
    def from_context(cls, context: PricingContext) -> 'SelectedBundleSummary':
        bundle = context.bundle
        return cls(
            id=bundle.id,
            name=bundle.name,
            group=bundle.group,
            duration=bundle.duration,
            cost=bundle.cost,
            country_id=bundle.country_id,
            region_name=bundle.region_name,
            requested_duration=context.requested_duration,
            unused_days=context.unused_days,
        )


@dataclass(frozen=True)
class CalculationMetadata:
    discount_per_unused_day: Decimal
    unused_days: int
    previous_duration: Optional[int] = None
    minimum_price: Decimal = ZERO
    minimum_profit: Decimal = ZERO


@dataclass(frozen=True)
class PricingCalculation:
    """Final, immutable price breakdown"""
    base_cost: Decimal
    markup: Decimal
    subtotal: Decimal
    discounts: Tuple[DiscountApplication, ...]
    total_discount: Decimal
    price_after_discount: Decimal
    processing_fee: Decimal
    processing_rate: Decimal
    final_price: Decimal
    final_revenue: Decimal
    revenue_after_processing: Decimal
    profit: Decimal
    max_recommended_price: Decimal
    max_discount_percentage: Decimal
    applied_rules: Tuple[AppliedRule, ...]
    selected_bundle: SelectedBundleSummary
    metadata: CalculationMetadata

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


def _jsonable(value: Any) -> Any:
    """Recursively convert Decimals, datetimes and enums for JSON output."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value
