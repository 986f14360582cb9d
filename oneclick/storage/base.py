"""
Server-side rule storage contract.

Implementations raise ``StorageError`` for any transport or decoding
failure so callers only need to handle one error type.
"""

from __future__ import annotations

from typing import Any, List

from ..schemas.rule import RuleGroupRecord, RuleRecord


class RuleStorage:
    async def load_rule_groups(self, work_item_type: str, project_id: str) -> List[RuleGroupRecord]:
        raise NotImplementedError

    async def load_rules(self, rule_group_id: str, project_id: str) -> List[RuleRecord]:
        raise NotImplementedError

    async def read_cache_stamp(self, work_item_type: str, project_id: str) -> int:
        """Current version stamp of the scope; 0 when none was ever written."""
        raise NotImplementedError

    async def write_cache_stamp(self, work_item_type: str, project_id: str, stamp: int) -> None:
        raise NotImplementedError

    async def load_setting(self, key: str, default: Any, work_item_type: str, project_id: str) -> Any:
        raise NotImplementedError

    async def save_rule(self, record: RuleRecord) -> RuleRecord:
        """Create or update ``record`` and return the stored version (id and etag set)."""
        raise NotImplementedError

    async def delete_rule(self, rule_group_id: str, rule_id: str, project_id: str) -> None:
        raise NotImplementedError


__all__ = ["RuleStorage"]
