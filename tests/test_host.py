from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest

from oneclick.constants import FormEvent, SettingKey
from oneclick.core.errors import ActionError, CacheFetchError
from oneclick.engine import RuleCache, RuleEngineHost
from oneclick.platform import InMemoryFormEventRegistry
from oneclick.rules.actions import BaseAction
from oneclick.storage import InMemoryRuleStorage, LocalSettingsStore

SAVED = [{"name": "WorkItemSavedTrigger"}]


def _storage() -> InMemoryRuleStorage:
    return InMemoryRuleStorage.from_dict(
        {
            "scopes": [
                {
                    "projectId": "Fabrikam",
                    "workItemType": "Bug",
                    "cacheStamp": 1,
                    "ruleGroups": [
                        {
                            "id": "triage",
                            "rules": [
                                {
                                    "id": "r1",
                                    "name": "Tag then fail",
                                    "triggers": SAVED,
                                    "actions": [
                                        {"name": "AddTagsAction", "attributes": {"tags": "r1"}},
                                        {"name": "SetFieldValueAction", "attributes": {"fieldName": "Custom.Missing", "fieldValue": "x"}},
                                        {"name": "AddTagsAction", "attributes": {"tags": "never"}},
                                    ],
                                },
                                {
                                    "id": "r2",
                                    "name": "Tag",
                                    "triggers": SAVED,
                                    "actions": [{"name": "AddTagsAction", "attributes": {"tags": "r2"}}],
                                },
                                {
                                    "id": "r3",
                                    "name": "Assign new bugs",
                                    "triggers": [{"name": "WorkItemLoadedTrigger", "attributes": {"newOnly": True}}],
                                    "actions": [
                                        {"name": "SetFieldValueAction", "attributes": {"fieldName": "System.AssignedTo", "fieldValue": "@Me"}}
                                    ],
                                },
                                {
                                    "id": "r4",
                                    "name": "Disabled",
                                    "disabled": True,
                                    "triggers": SAVED,
                                    "actions": [{"name": "AddTagsAction", "attributes": {"tags": "disabled"}}],
                                },
                            ],
                        }
                    ],
                }
            ]
        }
    )


def _host(tmp_path: Path, context, storage: InMemoryRuleStorage) -> RuleEngineHost:
    return RuleEngineHost(RuleCache(storage, LocalSettingsStore(tmp_path)), context)


def test_sweep_runs_every_matching_rule_and_reports_first_error(tmp_path: Path, context, form):
    host = _host(tmp_path, context, _storage())
    asyncio.run(host.load_rules("Bug", "Fabrikam"))

    error = asyncio.run(host.run_event_sweep(FormEvent.ON_SAVED, {"id": 42}))

    assert form.fields["System.Tags"] == "r1; r2"
    assert error == ActionError(
        action_name="Set field value",
        message="Field Custom.Missing does not exist on this work item type",
    )
    assert host.get_last_error() == error

    # No rule matches a reset, so the last error stays visible.
    assert asyncio.run(host.run_event_sweep(FormEvent.ON_RESET, {"id": 42})) is None
    assert host.get_last_error() == error

    assert asyncio.run(host.run_rule("r2")) is None
    assert host.get_last_error() is None
    with pytest.raises(KeyError):
        asyncio.run(host.run_rule("missing"))


def test_registry_lifecycle(tmp_path: Path, context, form):
    host = _host(tmp_path, context, _storage())
    registry = InMemoryFormEventRegistry()
    host.attach(registry)
    assert registry.registered
    assert set(registry.handlers) == set(FormEvent)

    asyncio.run(registry.fire(FormEvent.ON_LOADED, {"id": 42, "isNew": True}))
    assert [r.id for r in host.rules] == ["r1", "r2", "r3", "r4"]
    assert form.fields["System.AssignedTo"] == "Jamie Reyes"

    asyncio.run(registry.fire(FormEvent.ON_UNLOADED, {"id": 42}))
    assert host.rules == []
    assert not registry.registered
    assert not host.attached


def test_load_failure_keeps_active_set(tmp_path: Path, context, caplog):
    caplog.set_level(logging.ERROR, logger="rules.host")
    storage = _storage()
    host = _host(tmp_path, context, storage)
    asyncio.run(host.load_rules("Bug", "Fabrikam"))
    before = host.rules

    storage.unavailable = "connection reset"
    with pytest.raises(CacheFetchError):
        asyncio.run(host.load_rules("Bug", "Fabrikam", force_refresh=True))
    assert host.rules == before

    asyncio.run(host.handle_event(FormEvent.ON_LOADED, {"id": 42}))
    assert host.rules == before
    assert any("Rules unavailable" in rec.message for rec in caplog.records)


def test_reorder_is_persisted_locally_and_reapplied(tmp_path: Path, context):
    storage = _storage()
    host = _host(tmp_path, context, storage)
    asyncio.run(host.load_rules("Bug", "Fabrikam"))

    reordered = host.reorder_rules(3, 0)
    assert [r.id for r in reordered] == ["r4", "r1", "r2", "r3"]
    record = host.local_store.read("OneClick_RuleOrder_Fabrikam_Bug")
    assert record["order"] == {"r4": 0, "r1": 1, "r2": 2, "r3": 3}
    with pytest.raises(IndexError):
        host.reorder_rules(0, 9)

    # The cache stamp is untouched by reordering.
    assert asyncio.run(storage.read_cache_stamp("Bug", "Fabrikam")) == 1

    fresh = _host(tmp_path, context, storage)
    assert [r.id for r in asyncio.run(fresh.load_rules("Bug", "Fabrikam"))] == ["r4", "r1", "r2", "r3"]


def test_disabled_work_item_type_loads_nothing(tmp_path: Path, context):
    storage = _storage()
    storage.set_setting(SettingKey.WORK_ITEM_TYPE_ENABLED, False, "Bug", "Fabrikam")
    host = _host(tmp_path, context, storage)

    assert asyncio.run(host.load_rules("Bug", "Fabrikam")) == []
    assert storage.rule_fetches == 0


def test_refresh_bypasses_local_snapshot(tmp_path: Path, context):
    storage = _storage()
    host = _host(tmp_path, context, storage)
    asyncio.run(host.load_rules("Bug", "Fabrikam"))
    asyncio.run(host.load_rules("Bug", "Fabrikam"))
    assert storage.rule_fetches == 1

    asyncio.run(host.refresh())
    assert storage.rule_fetches == 2


class SlowAction(BaseAction):
    def __init__(self, log):
        super().__init__()
        self.log = log

    async def run(self, context) -> None:
        self.log.append("start")
        await asyncio.sleep(0.01)
        self.log.append("end")


def test_sweeps_do_not_overlap(tmp_path: Path, context):
    host = _host(tmp_path, context, _storage())
    log = []

    async def scenario():
        await host.load_rules("Bug", "Fabrikam")
        host.rules[1].add_action(SlowAction(log))
        await asyncio.gather(
            host.run_event_sweep(FormEvent.ON_SAVED, {"id": 42}),
            host.run_event_sweep(FormEvent.ON_SAVED, {"id": 42}),
        )

    asyncio.run(scenario())
    assert log == ["start", "end", "start", "end"]


def test_unreadable_payload_does_not_abort_sweep(tmp_path: Path, context, form, caplog):
    caplog.set_level(logging.ERROR, logger="rules.rule")
    host = _host(tmp_path, context, _storage())
    asyncio.run(host.load_rules("Bug", "Fabrikam"))

    assert asyncio.run(host.run_event_sweep(FormEvent.ON_SAVED, {"id": "not-an-int"})) is None
    assert asyncio.run(host.handle_event(FormEvent.ON_FIELD_CHANGED, {"changedFields": None})) is None

    assert form.fields["System.Tags"] == ""
    assert host.get_last_error() is None
    assert any("Unreadable event payload" in rec.message for rec in caplog.records)
