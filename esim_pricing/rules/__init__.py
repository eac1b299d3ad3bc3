"""Pricing rules: evaluation, execution, engine, builder and storage."""

from .conditions import ConditionEvaluator
from .actions import ActionExecutor, ActionResult
from .rule_engine import PricingRuleEngine, PricingRun, RuleSet
from .rule_builder import RuleBuilder, RuleTemplates
from .rule_store import RuleStore, InMemoryRuleStore

__all__ = [
    'ConditionEvaluator',
    'ActionExecutor',
    'ActionResult',
    'PricingRuleEngine',
    'PricingRun',
    'RuleSet',
    'RuleBuilder',
    'RuleTemplates',
    'RuleStore',
    'InMemoryRuleStore',
]
