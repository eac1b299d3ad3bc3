"""Typed pricing steps emitted while a calculation runs.

Steps are read-only audit records. They are produced in a fixed order by the
rule engine and never fed back into pricing state.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union

from .models import _jsonable


class PricingStepType(Enum):
    INITIALIZATION = "INITIALIZATION"
    SYSTEM_RULE_EVALUATION = "SYSTEM_RULE_EVALUATION"
    SYSTEM_RULE_APPLICATION = "SYSTEM_RULE_APPLICATION"
    SUBTOTAL_CALCULATION = "SUBTOTAL_CALCULATION"
    BUSINESS_RULE_EVALUATION = "BUSINESS_RULE_EVALUATION"
    BUSINESS_RULE_APPLICATION = "BUSINESS_RULE_APPLICATION"
    UNUSED_DAYS_CALCULATION = "UNUSED_DAYS_CALCULATION"
    FINAL_CALCULATION = "FINAL_CALCULATION"
    PROFIT_VALIDATION = "PROFIT_VALIDATION"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class InitializationData:
    bundle_id: str
    bundle_name: str
    base_cost: Decimal
    duration: int
    requested_duration: int
    unused_days: int
    country: str


@dataclass(frozen=True)
class RuleEvaluationData:
    rule_id: str
    rule_name: str
    rule_type: str
    priority: int
    matched: bool
    reason: str


@dataclass(frozen=True)
class RuleApplicationData:
    rule_id: str
    rule_name: str
    impact: Decimal
    new_state: Dict[str, Any]


@dataclass(frozen=True)
class SubtotalData:
    base_cost: Decimal
    markup: Decimal
    subtotal: Decimal


@dataclass(frozen=True)
class UnusedDaysData:
    unused_days: int
    selected_duration: int
    previous_duration: Optional[int]
    selected_markup: Decimal
    previous_markup: Optional[Decimal]
    configured_rate: Optional[Decimal]
    discount_per_day: Decimal
    total_discount: Decimal
    applied: bool
    reason: str


@dataclass(frozen=True)
class FinalCalculationData:
    total_discount: Decimal
    minimum_price: Decimal
    price_after_discount: Decimal
    processing_rate: Decimal
    processing_fee: Decimal
    final_price: Decimal
    profit: Decimal


@dataclass(frozen=True)
class ProfitValidationData:
    profit: Decimal
    minimum_required: Decimal
    is_valid: bool
    warning: Optional[str] = None


@dataclass(frozen=True)
class CompletedData:
    final_price: Decimal
    applied_rules_count: int


StepData = Union[InitializationData, RuleEvaluationData, RuleApplicationData,
                 SubtotalData, UnusedDaysData, FinalCalculationData,
                 ProfitValidationData, CompletedData]


@dataclass(frozen=True)
class PricingStep:
    step_type: PricingStepType
    message: str
    data: StepData
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.step_type.value,
            'message': self.message,
            'timestamp': self.timestamp.isoformat(),
            'data': _jsonable(asdict(self.data)),
        }
