"""Performance monitoring for price calculations."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Any
import logging
from collections import deque

import numpy as np

from .. import PERFORMANCE_THRESHOLDS

logger = logging.getLogger(__name__)


@dataclass
class CalculationSample:
    duration_ms: float
    rule_count: int
    bundle_id: Optional[str] = None
    error: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class PerformanceThresholds:
    """Thresholds for performance monitoring."""
    slow_calculation_ms: float = PERFORMANCE_THRESHOLDS['slow_calculation_ms']
    max_history: int = PERFORMANCE_THRESHOLDS['max_history']
    recent_window: int = PERFORMANCE_THRESHOLDS['recent_window']
    summary_every: int = PERFORMANCE_THRESHOLDS['summary_every']


class PricingPerformanceMonitor:
    """Tracks how long calculations take and how often they fail."""

    def __init__(self, thresholds: Optional[PerformanceThresholds] = None):
        self.thresholds = thresholds or PerformanceThresholds()
        self._samples: deque = deque(maxlen=self.thresholds.max_history)
        self._total_recorded = 0
        self._slow_count = 0

        logger.info("Performance monitor initialized")

    def record_calculation(self, duration_ms: float, rule_count: int,
                           bundle_id: Optional[str] = None, error: bool = False) -> CalculationSample:
        """Record one calculation."""
        sample = CalculationSample(
            duration_ms=duration_ms,
            rule_count=rule_count,
            bundle_id=bundle_id,
            error=error,
        )
        self._samples.append(sample)
        self._total_recorded += 1

        if duration_ms > self.thresholds.slow_calculation_ms:
            self._slow_count += 1
            logger.warning(
                f"Slow price calculation: {duration_ms:.1f}ms for {bundle_id or 'unknown bundle'} "
                f"({rule_count} rules)"
            )

        if self._total_recorded % self.thresholds.summary_every == 0:
            metrics = self.get_current_metrics()
            logger.info(
                f"Pricing performance after {self._total_recorded} calculations: "
                f"avg {metrics['average_ms']:.1f}ms, p95 {metrics['p95_ms']:.1f}ms, "
                f"error rate {metrics['error_rate']:.1%}"
            )

        return sample

    def get_current_metrics(self) -> Dict[str, Any]:
        """Statistics over the most recent calculations."""
        recent = list(self._samples)[-self.thresholds.recent_window:]
        if not recent:
            return self._create_empty_metrics()

        durations = np.array([s.duration_ms for s in recent], dtype=float)
        rule_counts = np.array([s.rule_count for s in recent], dtype=float)
        errors = sum(1 for s in recent if s.error)

        return {
            'sample_size': len(recent),
            'total_recorded': self._total_recorded,
            'average_ms': float(np.mean(durations)),
            'p50_ms': float(np.percentile(durations, 50)),
            'p95_ms': float(np.percentile(durations, 95)),
            'p99_ms': float(np.percentile(durations, 99)),
            'max_ms': float(np.max(durations)),
            'average_rule_count': float(np.mean(rule_counts)),
            'error_rate': errors / len(recent),
            'slow_calculations': self._slow_count,
        }

    def _create_empty_metrics(self) -> Dict[str, Any]:
        return {
            'sample_size': 0,
            'total_recorded': self._total_recorded,
            'average_ms': 0.0,
            'p50_ms': 0.0,
            'p95_ms': 0.0,
            'p99_ms': 0.0,
            'max_ms': 0.0,
            'average_rule_count': 0.0,
            'error_rate': 0.0,
            'slow_calculations': self._slow_count,
        }

    def reset_metrics(self):
        self._samples.clear()
        self._total_recorded = 0
        self._slow_count = 0
        logger.info("Performance metrics reset")
