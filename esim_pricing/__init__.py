"""eSIM Pricing Rule Engine - Core Module"""

from typing import Dict, Any

__version__ = "1.0.0"

# Rule types evaluated in the system pass; every other type is a business rule
SYSTEM_RULE_TYPES = (
    'SYSTEM_MARKUP',
    'SYSTEM_PROCESSING',
    'SYSTEM_MINIMUM_PRICE',
)

# Pricing behaviour switches
PRICING_DEFAULTS: Dict[str, Any] = {
    'strict_profit_validation': False,  # raise instead of warn on low profit
    'seed_default_rules': True,
    'audit_enabled': False,
    'log_directory': 'pricing_logs',
}

# Seeded processing rates per payment method (fraction of price after discount)
DEFAULT_PROCESSING_RATES = {
    'ISRAELI_CARD': '0.014',
    'FOREIGN_CARD': '0.045',
    'BIT': '0.014',
    'AMEX': '0.035',
    'DINERS': '0.035',
}

# Seeded constraint values
DEFAULT_CONSTRAINTS = {
    'minimum_price': '0.01',
    'minimum_profit': '1.50',
    'discount_per_unused_day': '0.10',
}

PERFORMANCE_THRESHOLDS = {
    'slow_calculation_ms': 500.0,
    'max_history': 1000,
    'recent_window': 50,
    'summary_every': 100,
}
