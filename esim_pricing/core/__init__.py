"""Core data models, pricing steps and errors."""

from .models import (
    Bundle,
    CustomerInfo,
    PricingContext,
    PricingRule,
    RuleCondition,
    RuleAction,
    RuleType,
    ConditionOperator,
    ActionType,
    PaymentMethod,
    DiscountType,
    PricingState,
    PricingCalculation,
)
from .steps import PricingStep, PricingStepType
from .exceptions import (
    PricingEngineError,
    ConfigurationError,
    MissingProcessingRateError,
    NoBundleAvailableError,
    NoSuitableBundleError,
    InsufficientProfitMarginError,
    RuleValidationError,
    RuleNotFoundError,
)

__all__ = [
    'Bundle',
    'CustomerInfo',
    'PricingContext',
    'PricingRule',
    'RuleCondition',
    'RuleAction',
    'RuleType',
    'ConditionOperator',
    'ActionType',
    'PaymentMethod',
    'DiscountType',
    'PricingState',
    'PricingCalculation',
    'PricingStep',
    'PricingStepType',
    'PricingEngineError',
    'ConfigurationError',
    'MissingProcessingRateError',
    'NoBundleAvailableError',
    'NoSuitableBundleError',
    'InsufficientProfitMarginError',
    'RuleValidationError',
    'RuleNotFoundError',
]
