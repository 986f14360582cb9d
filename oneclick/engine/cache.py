"""
Stamp-validated local cache of rule definitions.

The server keeps a version stamp per (project, work item type) scope and
bumps it on every rule or rule group write. A load reads that stamp
first and only fetches the full definitions when the local entry is
missing or carries a different stamp. A mismatch always replaces the
whole scoped entry.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..constants import GLOBAL_RULE_GROUP_ID, PERSONAL_RULE_GROUP_ID, SettingKey
from ..core.errors import CacheFetchError, StorageError
from ..rules.rule import Rule
from ..schemas.rule import LocalRulesData, RuleRecord
from ..storage.base import RuleStorage
from ..storage.local import LocalSettingsStore, scoped_key


class RuleCache:
    def __init__(
        self,
        storage: RuleStorage,
        local_store: LocalSettingsStore,
        key_prefix: str = "OneClick_Rules",
    ) -> None:
        self.storage = storage
        self.local_store = local_store
        self.key_prefix = key_prefix
        self.logger = logging.getLogger("rules.cache")
        self._stamps: Dict[Tuple[str, str], int] = {}

    def cache_key(self, work_item_type: str, project_id: str) -> str:
        return scoped_key(self.key_prefix, project_id, work_item_type)

    def stamp_for(self, work_item_type: str, project_id: str) -> Optional[int]:
        """Stamp of the last snapshot returned for the scope, if any."""
        return self._stamps.get((work_item_type, project_id))

    async def load(self, work_item_type: str, project_id: str, force_refresh: bool = False) -> List[Rule]:
        try:
            stamp = await self.storage.read_cache_stamp(work_item_type, project_id)
        except StorageError as exc:
            raise CacheFetchError(work_item_type, project_id, f"cache stamp unavailable: {exc}") from exc

        key = self.cache_key(work_item_type, project_id)
        if not force_refresh:
            entry = self._read_entry(key)
            if entry is not None and entry.cache_stamp == stamp:
                self.logger.debug("Rule cache hit for %s (stamp %s)", key, stamp)
                self._stamps[(work_item_type, project_id)] = stamp
                return self._build(entry.rules)

        records = await self._fetch(work_item_type, project_id)
        entry = LocalRulesData(
            cache_stamp=stamp,
            work_item_type=work_item_type,
            project_id=project_id,
            rules=records,
        )
        if not self.local_store.write(key, entry.model_dump(by_alias=True, mode="json")):
            self.logger.warning("Could not persist rule cache entry %s; next load will refetch", key)
        self._stamps[(work_item_type, project_id)] = stamp
        self.logger.info("Fetched %s rules for %s (stamp %s)", len(records), key, stamp)
        return self._build(records)

    def invalidate(self, work_item_type: str, project_id: str) -> None:
        self.local_store.delete(self.cache_key(work_item_type, project_id))
        self._stamps.pop((work_item_type, project_id), None)

    def _read_entry(self, key: str) -> Optional[LocalRulesData]:
        raw = self.local_store.read(key)
        if raw is None:
            return None
        try:
            return LocalRulesData.model_validate(raw)
        except ValidationError as exc:
            self.logger.warning("Discarding unreadable rule cache entry %s: %s", key, exc)
            return None

    async def _fetch(self, work_item_type: str, project_id: str) -> List[RuleRecord]:
        try:
            groups = await self.storage.load_rule_groups(work_item_type, project_id)
            group_ids = [g.id for g in groups if not g.disabled]
            if await self.storage.load_setting(SettingKey.GLOBAL_RULES_ENABLED, False, work_item_type, project_id):
                group_ids.append(GLOBAL_RULE_GROUP_ID)
            if await self.storage.load_setting(SettingKey.PERSONAL_RULES_ENABLED, False, work_item_type, project_id):
                group_ids.append(PERSONAL_RULE_GROUP_ID)

            records: List[RuleRecord] = []
            for group_id in group_ids:
                for record in await self.storage.load_rules(group_id, project_id):
                    # Global and personal groups span work item types.
                    if record.work_item_type and record.work_item_type.lower() != work_item_type.lower():
                        continue
                    if not record.rule_group_id:
                        record = record.model_copy(update={"rule_group_id": group_id})
                    records.append(record)
            return records
        except StorageError as exc:
            raise CacheFetchError(work_item_type, project_id, str(exc)) from exc

    def _build(self, records: List[RuleRecord]) -> List[Rule]:
        return [Rule.from_record(record) for record in records]


__all__ = ["RuleCache"]
