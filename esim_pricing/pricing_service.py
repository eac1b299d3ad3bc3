"""Pricing Service

Facade over the rule store and the rule engine. Keeps the engine's rule set in
sync with the store and wraps calculations with timing and audit logging.
"""

from typing import Dict, List, Optional, Iterable, Tuple
import logging
import threading
import time

from . import PRICING_DEFAULTS
from .core.models import PricingContext, PricingRule, PricingCalculation
from .core.exceptions import PricingEngineError
from .rules.rule_engine import PricingRuleEngine, PricingRun
from .rules.rule_store import RuleStore
from .utils.validation import RuleValidator
from .utils.audit_logger import PricingAuditLogger
from .monitoring.performance_monitor import PricingPerformanceMonitor

logger = logging.getLogger(__name__)


class PricingService:
    """Entry point for price calculations and rule administration"""

    def __init__(self, rule_store: RuleStore,
                 config: Optional[Dict] = None,
                 engine: Optional[PricingRuleEngine] = None,
                 audit_logger: Optional[PricingAuditLogger] = None,
                 performance_monitor: Optional[PricingPerformanceMonitor] = None):
        self.config = PRICING_DEFAULTS.copy()
        if config:
            self.config.update(config)

        self.rule_store = rule_store
        self.engine = engine or PricingRuleEngine(self.config)
        self.validator = RuleValidator()
        self.performance_monitor = performance_monitor or PricingPerformanceMonitor()

        if audit_logger is None and self.config.get('audit_enabled'):
            audit_logger = PricingAuditLogger(self.config['log_directory'])
        self.audit_logger = audit_logger

        self._initialized = False
        self._init_lock = threading.RLock()

    def initialize(self):
        """Load rules, seeding the default system rules into an empty store."""
        with self._init_lock:
            if not self.rule_store.find_active_rules() and self.config.get('seed_default_rules'):
                logger.info("No active pricing rules found, seeding defaults")
                self.rule_store.initialize_default_rules()
            self.reload_rules()
            self._initialized = True

    def reload_rules(self) -> int:
        """Replace the engine's rules with the store's active rules."""
        # Validity windows are checked per calculation against the pricing date
        rules = self.rule_store.find_all(is_active=True)
        self.engine.load_rules(rules)
        return len(rules)

    def _ensure_initialized(self):
        if self._initialized:
            return
        with self._init_lock:
            if not self._initialized:
                self.initialize()

    # Calculation

    def validate_context(self, context: PricingContext) -> List[str]:
        return self.validator.validate_context(context)

    def calculate_price(self, context: PricingContext) -> PricingCalculation:
        self._ensure_initialized()

        started = time.perf_counter()
        steps = []
        try:
            run = self.engine.run(context)
            if self.audit_logger:
                steps = list(run.steps())
            calculation = run.result
        except PricingEngineError as e:
            self.performance_monitor.record_calculation(
                (time.perf_counter() - started) * 1000,
                len(self.engine.rule_set.rules),
                bundle_id=context.bundle.id if context.bundle else None,
                error=True,
            )
            logger.error(f"Price calculation failed [{e.code}]: {e.message}")
            raise

        self.performance_monitor.record_calculation(
            (time.perf_counter() - started) * 1000,
            len(self.engine.rule_set.rules),
            bundle_id=calculation.selected_bundle.id,
        )

        if self.audit_logger:
            self._audit(context, calculation, steps)

        return calculation

    def stream_pricing_steps(self, context: PricingContext) -> PricingRun:
        """Start a calculation whose steps the caller pulls one by one."""
        self._ensure_initialized()
        return self.engine.run(context)

    def _audit(self, context: PricingContext, calculation: PricingCalculation, steps):
        self.audit_logger.log_calculation(context, calculation, steps)
        if calculation.profit < calculation.metadata.minimum_profit:
            self.audit_logger.log_alert('low_profit_margin', 'medium', {
                'bundle_id': calculation.selected_bundle.id,
                'profit': calculation.profit,
                'minimum_profit': calculation.metadata.minimum_profit,
                'final_price': calculation.final_price,
            })

    def get_performance_metrics(self) -> Dict:
        return self.performance_monitor.get_current_metrics()

    # Rule administration

    def get_loaded_rules(self) -> Dict[str, List[PricingRule]]:
        self._ensure_initialized()
        return {
            'all': self.engine.get_rules(),
            'system': self.engine.get_system_rules(),
            'business': self.engine.get_business_rules(),
        }

    def create_rule(self, rule: PricingRule, created_by: Optional[str] = None) -> PricingRule:
        try:
            return self.rule_store.create(rule, created_by=created_by)
        finally:
            self.reload_rules()

    def update_rule(self, rule_id: str, **changes) -> PricingRule:
        try:
            return self.rule_store.update(rule_id, **changes)
        finally:
            self.reload_rules()

    def delete_rule(self, rule_id: str) -> PricingRule:
        try:
            return self.rule_store.delete(rule_id)
        finally:
            self.reload_rules()

    def toggle_rule(self, rule_id: str) -> PricingRule:
        try:
            return self.rule_store.toggle_active(rule_id)
        finally:
            self.reload_rules()

    def clone_rule(self, rule_id: str, new_name: str) -> PricingRule:
        try:
            return self.rule_store.clone(rule_id, new_name)
        finally:
            self.reload_rules()

    def reorder_rules(self, priorities: Iterable[Tuple[str, int]]) -> List[PricingRule]:
        try:
            return self.rule_store.bulk_update_priorities(priorities)
        finally:
            self.reload_rules()

    def find_conflicting_rules(self, rule_id: str) -> List[PricingRule]:
        return self.rule_store.find_conflicting_rules(rule_id)
