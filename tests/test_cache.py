from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest

from oneclick.core.errors import CacheFetchError
from oneclick.engine.cache import RuleCache
from oneclick.storage import InMemoryRuleStorage, LocalSettingsStore


def _rule(rule_id: str, name: str, **extra) -> dict:
    return {
        "id": rule_id,
        "name": name,
        "triggers": [{"name": "WorkItemSavedTrigger"}],
        "actions": [{"name": "SaveWorkItemAction"}],
        **extra,
    }


def _storage(**settings) -> InMemoryRuleStorage:
    return InMemoryRuleStorage.from_dict(
        {
            "settings": settings,
            "scopes": [
                {
                    "projectId": "Fabrikam",
                    "workItemType": "Bug",
                    "cacheStamp": 5,
                    "ruleGroups": [
                        {"id": "triage", "rules": [_rule("r1", "First"), _rule("r2", "Second")]},
                        {"id": "old", "disabled": True, "rules": [_rule("r3", "Disabled group")]},
                    ],
                }
            ],
            "globalRules": {
                "Fabrikam": [
                    _rule("g1", "Global bug rule", workItemType="Bug"),
                    _rule("g2", "Global task rule", workItemType="Task"),
                ]
            },
            "personalRules": {"Fabrikam": [_rule("p1", "Mine", workItemType="Bug")]},
        }
    )


def _names(rules) -> list[str]:
    return [r.name for r in rules]


def test_second_load_is_a_cache_hit(tmp_path: Path):
    storage = _storage()
    cache = RuleCache(storage, LocalSettingsStore(tmp_path))

    first = asyncio.run(cache.load("Bug", "Fabrikam"))
    second = asyncio.run(cache.load("Bug", "Fabrikam"))

    assert _names(first) == ["First", "Second"]
    assert _names(second) == ["First", "Second"]
    assert storage.rule_fetches == 1
    assert storage.rule_group_fetches == 1
    assert storage.stamp_reads == 2
    assert cache.stamp_for("Bug", "Fabrikam") == 5
    # Each load hands out fresh Rule objects.
    assert first[0] is not second[0]


def test_stamp_bump_forces_refetch_and_overwrites_entry(tmp_path: Path):
    storage = _storage()
    local = LocalSettingsStore(tmp_path)
    cache = RuleCache(storage, local)

    asyncio.run(cache.load("Bug", "Fabrikam"))
    storage.bump_stamp("Bug", "Fabrikam")
    rules = asyncio.run(cache.load("Bug", "Fabrikam"))

    assert _names(rules) == ["First", "Second"]
    assert storage.rule_fetches == 2
    entry = local.read(cache.cache_key("Bug", "Fabrikam"))
    assert entry["cacheStamp"] == 6
    assert entry["workItemType"] == "Bug"
    assert [r["id"] for r in entry["rules"]] == ["r1", "r2"]
    assert cache.cache_key("Bug", "Fabrikam") == "OneClick_Rules_Fabrikam_Bug"


def test_force_refresh_skips_local_snapshot(tmp_path: Path):
    storage = _storage()
    cache = RuleCache(storage, LocalSettingsStore(tmp_path))

    asyncio.run(cache.load("Bug", "Fabrikam"))
    asyncio.run(cache.load("Bug", "Fabrikam", force_refresh=True))

    assert storage.rule_fetches == 2


def test_global_and_personal_groups_follow_settings(tmp_path: Path):
    storage = _storage(globalRulesEnabled=True, personalRulesEnabled=True)
    cache = RuleCache(storage, LocalSettingsStore(tmp_path))

    rules = asyncio.run(cache.load("Bug", "Fabrikam"))

    assert _names(rules) == ["First", "Second", "Global bug rule", "Mine"]
    assert rules[2].rule_group_id == "global"
    assert rules[3].rule_group_id == "personal"


def test_fetch_failure_raises_cache_fetch_error(tmp_path: Path):
    storage = _storage()
    storage.unavailable = "503 Service Unavailable"
    cache = RuleCache(storage, LocalSettingsStore(tmp_path))

    with pytest.raises(CacheFetchError) as excinfo:
        asyncio.run(cache.load("Bug", "Fabrikam"))
    assert excinfo.value.work_item_type == "Bug"
    assert "503" in str(excinfo.value)
    assert cache.stamp_for("Bug", "Fabrikam") is None


def test_unreadable_entry_is_refetched(tmp_path: Path, caplog):
    caplog.set_level(logging.WARNING, logger="rules.cache")
    storage = _storage()
    local = LocalSettingsStore(tmp_path)
    cache = RuleCache(storage, local)
    local.write(cache.cache_key("Bug", "Fabrikam"), {"cacheStamp": "not-a-number"})

    rules = asyncio.run(cache.load("Bug", "Fabrikam"))

    assert _names(rules) == ["First", "Second"]
    assert storage.rule_fetches == 1
    assert any("Discarding unreadable rule cache entry" in rec.message for rec in caplog.records)


def test_empty_snapshot_with_matching_stamp_is_a_hit(tmp_path: Path):
    storage = InMemoryRuleStorage()
    storage.bump_stamp("Epic", "Fabrikam")
    cache = RuleCache(storage, LocalSettingsStore(tmp_path))

    assert asyncio.run(cache.load("Epic", "Fabrikam")) == []
    assert asyncio.run(cache.load("Epic", "Fabrikam")) == []
    assert storage.rule_group_fetches == 1


def test_invalidate_drops_local_entry(tmp_path: Path):
    storage = _storage()
    local = LocalSettingsStore(tmp_path)
    cache = RuleCache(storage, local)
    asyncio.run(cache.load("Bug", "Fabrikam"))

    cache.invalidate("Bug", "Fabrikam")

    assert local.read(cache.cache_key("Bug", "Fabrikam")) is None
    assert cache.stamp_for("Bug", "Fabrikam") is None
    asyncio.run(cache.load("Bug", "Fabrikam"))
    assert storage.rule_fetches == 2
