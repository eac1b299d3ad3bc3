"""Calculation performance monitoring."""

from .performance_monitor import PricingPerformanceMonitor, PerformanceThresholds, CalculationSample

__all__ = [
    'PricingPerformanceMonitor',
    'PerformanceThresholds',
    'CalculationSample'
]
