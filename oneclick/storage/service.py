"""
Save and delete rules, keeping the scope cache stamp in step.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..core.errors import RuleValidationError
from ..rules.rule import Rule
from ..schemas.rule import IdentityRef
from .base import RuleStorage


class RuleSaveService:
    def __init__(self, storage: RuleStorage, default_rule_group_id: Optional[str] = None) -> None:
        self.storage = storage
        self.default_rule_group_id = default_rule_group_id
        self.logger = logging.getLogger("storage.save")

    async def save(self, rule: Rule, updated_by: Optional[IdentityRef] = None) -> Rule:
        if not rule.is_valid():
            raise RuleValidationError(f"Rule {rule.name!r} is not valid and cannot be saved")
        record = rule.updated_model
        update = {}
        if updated_by is not None:
            update["last_updated_by"] = updated_by
            if record.created_by is None:
                update["created_by"] = updated_by
        if not record.rule_group_id:
            if not self.default_rule_group_id:
                raise RuleValidationError(f"Rule {rule.name!r} has no rule group")
            update["rule_group_id"] = self.default_rule_group_id
        if update:
            record = record.model_copy(update=update)

        saved = await self.storage.save_rule(record)
        await self._bump_stamp(saved.work_item_type, saved.project_id)
        rule.mark_saved(saved)
        self.logger.info("Saved rule %s (%s) etag=%s", saved.id, saved.name, saved.etag)
        return rule

    async def delete(self, rule: Rule) -> None:
        """Remove ``rule`` on the server; a new rule is only disposed."""
        rule.mark_delete_pending()
        if rule.is_new:
            rule.dispose()
            return
        record = rule.original_model
        try:
            await self.storage.delete_rule(record.rule_group_id or "", record.id or "", record.project_id)
        except Exception:
            rule.cancel_delete()
            raise
        await self._bump_stamp(record.work_item_type, record.project_id)
        self.logger.info("Deleted rule %s", record.id)
        rule.dispose()

    async def _bump_stamp(self, work_item_type: str, project_id: str) -> int:
        stamp = await self.storage.read_cache_stamp(work_item_type, project_id)
        await self.storage.write_cache_stamp(work_item_type, project_id, stamp + 1)
        return stamp + 1


__all__ = ["RuleSaveService"]
