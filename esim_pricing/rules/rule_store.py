"""Rule persistence: the store interface and an in-memory / JSON-file store."""

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple
import json
import logging
import threading
import uuid

from ..core.models import PricingRule, RuleType
from ..core.exceptions import RuleValidationError, RuleNotFoundError
from ..utils.validation import RuleValidator
from .rule_builder import RuleTemplates

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    'rule_type', 'name', 'description', 'conditions', 'actions', 'priority',
    'is_active', 'valid_from', 'valid_until', 'metadata',
})


class RuleStore(ABC):
    """Source of pricing rules for the pricing service."""

    def __init__(self):
        self.validator = RuleValidator()

    @abstractmethod
    def find_all(self, rule_type: Optional[RuleType] = None,
                 is_active: Optional[bool] = None,
                 is_editable: Optional[bool] = None) -> List[PricingRule]:
        pass

    @abstractmethod
    def find_by_id(self, rule_id: str) -> Optional[PricingRule]:
        pass

    @abstractmethod
    def create(self, rule: PricingRule, created_by: Optional[str] = None) -> PricingRule:
        pass

    @abstractmethod
    def update(self, rule_id: str, **changes) -> PricingRule:
        pass

    @abstractmethod
    def delete(self, rule_id: str) -> PricingRule:
        pass

    def find_active_rules(self, at: Optional[datetime] = None) -> List[PricingRule]:
        """Active rules whose validity window contains ``at`` (now by default)."""
        moment = at or datetime.now()
        return [r for r in self.find_all(is_active=True) if r.is_within_window(moment)]

    def find_system_rules(self) -> List[PricingRule]:
        return self.find_all(is_editable=False)

    def find_business_rules(self) -> List[PricingRule]:
        return self.find_all(is_editable=True)

    def toggle_active(self, rule_id: str) -> PricingRule:
        existing = self._require(rule_id)
        return self.update(rule_id, is_active=not existing.is_active)

    def clone(self, rule_id: str, new_name: str) -> PricingRule:
        """Copy a rule under a new name; the copy starts inactive."""
        existing = self._require(rule_id)
        description = (f"Clone of: {existing.description}" if existing.description
                       else f"Clone of {existing.name}")
        clone = existing.with_changes(
            rule_id=str(uuid.uuid4()),
            name=new_name,
            description=description,
            is_active=False,
            metadata=dict(existing.metadata),
        )
        return self.create(clone)

    def bulk_update_priorities(self, updates: Iterable[Tuple[str, int]]) -> List[PricingRule]:
        """Change several priorities; nothing is written unless every change is valid."""
        updates = list(updates)
        logger.info(f"Bulk updating {len(updates)} rule priorities")
        staged = self._stage_priorities(updates)
        return [self.update(rule.rule_id, priority=rule.priority) for rule in staged]

    def _stage_priorities(self, updates: List[Tuple[str, int]]) -> List[PricingRule]:
        staged = [self._require(rule_id).with_changes(priority=priority) for rule_id, priority in updates]
        errors = []
        for rule in staged:
            errors.extend(f"{rule.name}: {error}" for error in self.validator.validate_rule(rule))
        if errors:
            raise RuleValidationError(errors, details={'rules': [rule_id for rule_id, _ in updates]})
        return staged

    def find_conflicting_rules(self, rule_id: str) -> List[PricingRule]:
        """Active rules sharing at least one identical condition with ``rule_id``."""
        rule = self.find_by_id(rule_id)
        if rule is None:
            return []
        signatures = {_signature(c) for c in rule.conditions}
        return [
            other for other in self.find_active_rules()
            if other.rule_id != rule_id
            and any(_signature(c) in signatures for c in other.conditions)
        ]

    def initialize_default_rules(self) -> List[PricingRule]:
        """Seed the default system rules; rules already present by name are skipped."""
        existing_names = {r.name for r in self.find_all()}
        created = []
        for rule in RuleTemplates.default_system_rules():
            if rule.name in existing_names:
                continue
            created.append(self.create(rule.with_changes(is_editable=False), created_by="system"))
        logger.info(f"Initialized {len(created)} default pricing rules")
        return created

    def _require(self, rule_id: str) -> PricingRule:
        rule = self.find_by_id(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Pricing rule {rule_id} not found", details={'rule_id': rule_id})
        return rule


class InMemoryRuleStore(RuleStore):
    """Rules held in memory, optionally mirrored to a JSON file."""

    def __init__(self, rules: Optional[Iterable[PricingRule]] = None,
                 rules_file: Optional[Path] = None):
        super().__init__()
        self.rules: Dict[str, PricingRule] = {}
        self.rules_file = Path(rules_file) if rules_file else None
        self._lock = threading.RLock()

        if self.rules_file and self.rules_file.exists():
            self.load_rules()

        for rule in rules or ():
            self.rules[rule.rule_id] = rule

        logger.info(f"Rule store initialized with {len(self.rules)} rules")

    def find_all(self, rule_type: Optional[RuleType] = None,
                 is_active: Optional[bool] = None,
                 is_editable: Optional[bool] = None) -> List[PricingRule]:
        with self._lock:
            rules = list(self.rules.values())
        if rule_type is not None:
            rules = [r for r in rules if r.rule_type == rule_type]
        if is_active is not None:
            rules = [r for r in rules if r.is_active == is_active]
        if is_editable is not None:
            rules = [r for r in rules if r.is_editable == is_editable]
        return sorted(rules, key=lambda r: -r.priority)

    def find_by_id(self, rule_id: str) -> Optional[PricingRule]:
        with self._lock:
            return self.rules.get(rule_id)

    def create(self, rule: PricingRule, created_by: Optional[str] = None) -> PricingRule:
        logger.info(f"Creating pricing rule: {rule.name} ({rule.rule_type.value})")
        self._validate(rule, require_conditions=True)

        now = datetime.now()
        with self._lock:
            rule_id = rule.rule_id if rule.rule_id and rule.rule_id not in self.rules else str(uuid.uuid4())
            stored = rule.with_changes(
                rule_id=rule_id,
                is_editable=rule.is_editable and not rule.is_system,
                created_by=created_by or rule.created_by,
                created_at=now,
                updated_at=now,
            )
            self.rules[stored.rule_id] = stored
            self._persist()
        return stored

    def update(self, rule_id: str, **changes) -> PricingRule:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        with self._lock:
            existing = self._require(rule_id)
            if not existing.is_editable:
                # Admins may still edit system rules
                logger.warning(f"Updating system rule {rule_id} ({existing.name})")
            updated = existing.with_changes(updated_at=datetime.now(), **changes)
            self._validate(updated, require_conditions=False)
            self.rules[rule_id] = updated
            self._persist()

        logger.info(f"Pricing rule updated: {updated.name}")
        return updated

    def delete(self, rule_id: str) -> PricingRule:
        with self._lock:
            existing = self._require(rule_id)
            if not existing.is_editable:
                logger.warning(f"Deleting system rule {rule_id} ({existing.name})")
            del self.rules[rule_id]
            self._persist()
        logger.info(f"Pricing rule deleted: {rule_id}")
        return existing

    def bulk_update_priorities(self, updates: Iterable[Tuple[str, int]]) -> List[PricingRule]:
        updates = list(updates)
        logger.info(f"Bulk updating {len(updates)} rule priorities")
        now = datetime.now()
        with self._lock:
            staged = [rule.with_changes(updated_at=now) for rule in self._stage_priorities(updates)]
            for rule in staged:
                self.rules[rule.rule_id] = rule
            self._persist()
        return staged

    def _validate(self, rule: PricingRule, require_conditions: bool):
        errors = []
        if require_conditions and not rule.conditions:
            errors.append("Rule must have at least one condition")
        errors.extend(self.validator.validate_rule(rule))
        if errors:
            raise RuleValidationError(errors, details={'rule': rule.name})

    # Persistence

    def _persist(self):
        if self.rules_file:
            self.save_rules()

    def save_rules(self, path: Optional[Path] = None):
        """Save rules to file."""
        target = Path(path) if path else self.rules_file
        if target is None:
            raise ValueError("No rules file configured")

        with self._lock:
            rules_data = [rule.to_dict() for rule in self.rules.values()]

        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w') as f:
            json.dump(rules_data, f, indent=2, default=str)

    def load_rules(self, path: Optional[Path] = None):
        """Load rules from file, replacing the current set."""
        source = Path(path) if path else self.rules_file
        with open(source, 'r') as f:
            rules_data = json.load(f)

        loaded = {}
        for rule_dict in rules_data:
            rule = PricingRule.from_dict(rule_dict)
            loaded[rule.rule_id] = rule

        with self._lock:
            self.rules = loaded
        logger.info(f"Loaded {len(loaded)} rules from {source}")


def _signature(condition) -> str:
    return json.dumps(condition.to_dict(), sort_keys=True)
