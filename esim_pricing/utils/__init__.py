"""Pricing Engine Utilities"""

from .validation import RuleValidator
from .audit_logger import PricingAuditLogger
from .reporting import PricingReport

__all__ = [
    'RuleValidator',
    'PricingAuditLogger',
    'PricingReport'
]
