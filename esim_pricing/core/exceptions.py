"""Error taxonomy for pricing calculations and rule management."""

from typing import Any, Dict, Optional


class PricingEngineError(Exception):
    """Base error carrying a machine-readable code."""

    code = "PRICING_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ConfigurationError(PricingEngineError):
    code = "CONFIGURATION_ERROR"


class MissingProcessingRateError(ConfigurationError):
    """No processing rate rule is configured, or none applies."""
    code = "MISSING_PROCESSING_RATE"


class NoBundleAvailableError(PricingEngineError):
    code = "NO_BUNDLE_AVAILABLE"


class NoSuitableBundleError(PricingEngineError):
    code = "NO_SUITABLE_BUNDLE"


class InsufficientProfitMarginError(PricingEngineError):
    code = "INSUFFICIENT_PROFIT_MARGIN"


class RuleValidationError(PricingEngineError):
    code = "INVALID_RULE"

    def __init__(self, errors, details: Optional[Dict[str, Any]] = None):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors), details)


class RuleNotFoundError(PricingEngineError):
    code = "RULE_NOT_FOUND"
