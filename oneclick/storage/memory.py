"""
Dict-backed rule storage, loadable from a YAML rules file.

Used by the CLI simulator and the tests. Every write bumps the cache
stamp of the affected scope, mirroring what the server does.

YAML layout::

    settings:               # optional, apply to every scope
      globalRulesEnabled: true
    scopes:
      - projectId: Fabrikam
        workItemType: Bug
        cacheStamp: 3
        settings:
          workItemTypeEnabled: true
        ruleGroups:
          - id: triage
            name: Triage
            rules:
              - id: set-owner
                name: Assign to me
                triggers: [{name: WorkItemLoadedTrigger, attributes: {newOnly: true}}]
                actions: [{name: SetFieldValueAction, attributes: {fieldName: System.AssignedTo, fieldValue: "@Me"}}]
    globalRules:            # optional, keyed by project id
      Fabrikam: [...]
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..constants import GLOBAL_RULE_GROUP_ID, PERSONAL_RULE_GROUP_ID
from ..core.errors import StorageError
from ..schemas.rule import RuleGroupRecord, RuleRecord
from .base import RuleStorage

Scope = Tuple[str, str]


def _scope(work_item_type: str, project_id: str) -> Scope:
    return (work_item_type.lower(), project_id)


class InMemoryRuleStorage(RuleStorage):
    def __init__(self) -> None:
        self.logger = logging.getLogger("storage.memory")
        self._rule_groups: Dict[Scope, List[RuleGroupRecord]] = defaultdict(list)
        # (rule group id, project id) -> rules
        self._rules: Dict[Tuple[str, str], List[RuleRecord]] = defaultdict(list)
        self._stamps: Dict[Scope, int] = {}
        self._settings: Dict[str, Any] = {}
        self._scoped_settings: Dict[Tuple[str, str, str], Any] = {}
        # When set, every call raises StorageError with this message.
        self.unavailable: Optional[str] = None
        self.stamp_reads = 0
        self.rule_group_fetches = 0
        self.rule_fetches = 0

    @classmethod
    def from_yaml(cls, path: str | Path) -> "InMemoryRuleStorage":
        target = Path(path)
        try:
            raw = yaml.safe_load(target.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise StorageError(f"Could not read rules file {target}: {exc}") from exc
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "InMemoryRuleStorage":
        if not isinstance(raw, dict):
            raise StorageError("Rules document must be a mapping")
        storage = cls()
        for key, value in (raw.get("settings") or {}).items():
            storage.set_setting(key, value)
        for scope in raw.get("scopes") or []:
            wit = str(scope.get("workItemType") or "")
            project_id = str(scope.get("projectId") or "")
            if not wit or not project_id:
                raise StorageError("Every scope needs workItemType and projectId")
            for key, value in (scope.get("settings") or {}).items():
                storage.set_setting(key, value, wit, project_id)
            for group in scope.get("ruleGroups") or []:
                rules = group.get("rules") or []
                group_doc = {k: v for k, v in group.items() if k != "rules"}
                group_doc.setdefault("workItemType", wit)
                group_doc.setdefault("projectId", project_id)
                record = storage.add_rule_group(RuleGroupRecord.model_validate(group_doc))
                for rule in rules:
                    storage.put_rule(_rule_from_doc(rule, record.id, wit, project_id))
            storage._stamps[_scope(wit, project_id)] = int(scope.get("cacheStamp") or 0)
        for group_id, key in ((GLOBAL_RULE_GROUP_ID, "globalRules"), (PERSONAL_RULE_GROUP_ID, "personalRules")):
            for project_id, rules in (raw.get(key) or {}).items():
                for rule in rules or []:
                    storage.put_rule(_rule_from_doc(rule, group_id, rule.get("workItemType", ""), str(project_id)))
        return storage

    # seeding helpers

    def add_rule_group(self, record: RuleGroupRecord) -> RuleGroupRecord:
        self._rule_groups[_scope(record.work_item_type, record.project_id)].append(record)
        return record

    def put_rule(self, record: RuleRecord) -> RuleRecord:
        """Store ``record`` as-is, without touching any cache stamp."""
        if not record.rule_group_id:
            raise StorageError("Rule has no rule group")
        rules = self._rules[(record.rule_group_id, record.project_id)]
        for idx, existing in enumerate(rules):
            if existing.id == record.id:
                rules[idx] = record
                return record
        rules.append(record)
        return record

    def set_setting(self, key: str, value: Any, work_item_type: Optional[str] = None, project_id: Optional[str] = None) -> None:
        if work_item_type and project_id:
            self._scoped_settings[(key, work_item_type.lower(), project_id)] = value
        else:
            self._settings[key] = value

    def bump_stamp(self, work_item_type: str, project_id: str) -> int:
        scope = _scope(work_item_type, project_id)
        self._stamps[scope] = self._stamps.get(scope, 0) + 1
        return self._stamps[scope]

    def _check_available(self) -> None:
        if self.unavailable:
            raise StorageError(self.unavailable)

    # RuleStorage

    async def load_rule_groups(self, work_item_type: str, project_id: str) -> List[RuleGroupRecord]:
        self._check_available()
        self.rule_group_fetches += 1
        return [g.model_copy() for g in self._rule_groups.get(_scope(work_item_type, project_id), [])]

    async def load_rules(self, rule_group_id: str, project_id: str) -> List[RuleRecord]:
        self._check_available()
        self.rule_fetches += 1
        return [r.model_copy(deep=True) for r in self._rules.get((rule_group_id, project_id), [])]

    async def read_cache_stamp(self, work_item_type: str, project_id: str) -> int:
        self._check_available()
        self.stamp_reads += 1
        return self._stamps.get(_scope(work_item_type, project_id), 0)

    async def write_cache_stamp(self, work_item_type: str, project_id: str, stamp: int) -> None:
        self._check_available()
        self._stamps[_scope(work_item_type, project_id)] = int(stamp)

    async def load_setting(self, key: str, default: Any, work_item_type: str, project_id: str) -> Any:
        self._check_available()
        scoped = (key, work_item_type.lower(), project_id)
        if scoped in self._scoped_settings:
            return self._scoped_settings[scoped]
        return self._settings.get(key, default)

    async def save_rule(self, record: RuleRecord) -> RuleRecord:
        self._check_available()
        update: Dict[str, Any] = {"etag": (record.etag or 0) + 1}
        if not record.id:
            update["id"] = uuid.uuid4().hex
        stored = self.put_rule(record.model_copy(update=update, deep=True))
        self.bump_stamp(record.work_item_type, record.project_id)
        self.logger.info("Saved rule %s in group %s", stored.id, stored.rule_group_id)
        return stored.model_copy(deep=True)

    async def delete_rule(self, rule_group_id: str, rule_id: str, project_id: str) -> None:
        self._check_available()
        rules = self._rules.get((rule_group_id, project_id), [])
        for idx, existing in enumerate(rules):
            if existing.id == rule_id:
                del rules[idx]
                self.bump_stamp(existing.work_item_type, project_id)
                return
        raise StorageError(f"Rule {rule_id} not found in group {rule_group_id}")


def _rule_from_doc(doc: Dict[str, Any], rule_group_id: str, work_item_type: str, project_id: str) -> RuleRecord:
    data = dict(doc)
    data.setdefault("ruleGroupId", rule_group_id)
    data.setdefault("workItemType", work_item_type)
    data.setdefault("projectId", project_id)
    return RuleRecord.model_validate(data)


__all__ = ["InMemoryRuleStorage"]
