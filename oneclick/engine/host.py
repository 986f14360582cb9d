"""
Rule engine host for one work item form session.

The host subscribes to the form lifecycle events, owns the active rule
set of the open work item and runs every matching rule for each event.
Sweeps are serialized: an event that arrives while a sweep is still
awaiting actions waits for that sweep to finish.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..constants import FormEvent, SettingKey
from ..core.errors import ActionError, CacheFetchError, StorageError
from ..platform import EventHandler, FormEventRegistry, RuleContext
from ..rules.rule import Rule
from ..schemas.rule import RuleOrderData
from ..storage.base import RuleStorage
from ..storage.local import LocalSettingsStore, scoped_key
from .cache import RuleCache


class RuleEngineHost:
    def __init__(
        self,
        cache: RuleCache,
        context: RuleContext,
        order_key_prefix: str = "OneClick_RuleOrder",
    ) -> None:
        self.cache = cache
        self.context = context
        self.order_key_prefix = order_key_prefix
        self.logger = logging.getLogger("rules.host")
        self._rules: List[Rule] = []
        self._scope: Optional[tuple[str, str]] = None
        self._last_error: Optional[ActionError] = None
        self._registry: Optional[FormEventRegistry] = None
        self._lock = asyncio.Lock()

    @property
    def storage(self) -> RuleStorage:
        return self.cache.storage

    @property
    def local_store(self) -> LocalSettingsStore:
        return self.cache.local_store

    @property
    def rules(self) -> List[Rule]:
        return list(self._rules)

    @property
    def attached(self) -> bool:
        return self._registry is not None

    # registration

    def attach(self, registry: FormEventRegistry) -> None:
        if self._registry is not None:
            self.detach()
        handlers: Dict[FormEvent, EventHandler] = {event: self._handler_for(event) for event in FormEvent}
        registry.register(handlers)
        self._registry = registry

    def detach(self) -> None:
        if self._registry is None:
            return
        self._registry.unregister()
        self._registry = None

    def _handler_for(self, event: FormEvent) -> EventHandler:
        async def _handler(payload: Any = None) -> None:
            await self.handle_event(event, payload)

        return _handler

    async def handle_event(self, event: FormEvent, payload: Any = None) -> Optional[ActionError]:
        """Entry point for events delivered by the form registry."""
        event = FormEvent(event)
        async with self._lock:
            if event == FormEvent.ON_UNLOADED:
                self._discard_rules()
                self.detach()
                return None
            if event == FormEvent.ON_LOADED:
                try:
                    await self._load_rules(self.context.work_item_type, self.context.project_id)
                except CacheFetchError as exc:
                    self.logger.error("Rules unavailable for this form session: %s", exc)
                    return None
            return await self._sweep(event, payload)

    # upward API

    async def load_rules(self, work_item_type: str, project_id: str, force_refresh: bool = False) -> List[Rule]:
        async with self._lock:
            return await self._load_rules(work_item_type, project_id, force_refresh)

    async def run_event_sweep(self, event: FormEvent, payload: Any = None) -> Optional[ActionError]:
        async with self._lock:
            return await self._sweep(FormEvent(event), payload)

    async def refresh(self) -> List[Rule]:
        """Reload the current scope, bypassing the local snapshot."""
        work_item_type, project_id = self._scope or (self.context.work_item_type, self.context.project_id)
        return await self.load_rules(work_item_type, project_id, force_refresh=True)

    async def run_rule(self, rule_id: str) -> Optional[ActionError]:
        """Run one rule on demand, ignoring its triggers."""
        async with self._lock:
            rule = next((r for r in self._rules if r.id == rule_id), None)
            if rule is None:
                raise KeyError(rule_id)
            self._last_error = await rule.run(self.context)
            return self._last_error

    def get_last_error(self) -> Optional[ActionError]:
        return self._last_error

    def reorder_rules(self, old_index: int, new_index: int) -> List[Rule]:
        count = len(self._rules)
        if not (0 <= old_index < count) or not (0 <= new_index < count):
            raise IndexError(f"Cannot move rule {old_index} -> {new_index} in a list of {count}")
        rule = self._rules.pop(old_index)
        self._rules.insert(new_index, rule)
        if self._scope is not None:
            work_item_type, project_id = self._scope
            order = RuleOrderData(
                work_item_type=work_item_type,
                project_id=project_id,
                order={r.id: idx for idx, r in enumerate(self._rules) if r.id},
            )
            if not self.local_store.write(self._order_key(work_item_type, project_id), order.model_dump(by_alias=True)):
                self.logger.warning("Could not persist rule order for %s/%s", project_id, work_item_type)
        return list(self._rules)

    # internals

    async def _load_rules(self, work_item_type: str, project_id: str, force_refresh: bool = False) -> List[Rule]:
        try:
            enabled = await self.storage.load_setting(SettingKey.WORK_ITEM_TYPE_ENABLED, True, work_item_type, project_id)
        except StorageError as exc:
            raise CacheFetchError(work_item_type, project_id, f"settings unavailable: {exc}") from exc

        if enabled:
            rules = await self.cache.load(work_item_type, project_id, force_refresh=force_refresh)
        else:
            self.logger.info("OneClick rules are disabled for %s in %s", work_item_type, project_id)
            rules = []

        self._discard_rules()
        self._rules = self._apply_order(rules, work_item_type, project_id)
        self._scope = (work_item_type, project_id)
        return list(self._rules)

    async def _sweep(self, event: FormEvent, payload: Any) -> Optional[ActionError]:
        first_error: Optional[ActionError] = None
        ran_any = False
        for rule in list(self._rules):
            if rule.disabled:
                continue
            if not await rule.should_run_on_event(event, payload, self.context):
                continue
            ran_any = True
            self.logger.debug("Running rule %s on %s", rule.id or rule.name, event.value)
            error = await rule.run(self.context)
            if error is not None and first_error is None:
                first_error = error
        if ran_any:
            self._last_error = first_error
        return first_error

    def _apply_order(self, rules: List[Rule], work_item_type: str, project_id: str) -> List[Rule]:
        raw = self.local_store.read(self._order_key(work_item_type, project_id))
        if not raw:
            return list(rules)
        try:
            order = RuleOrderData.model_validate(raw).order
        except ValidationError as exc:
            self.logger.warning("Ignoring unreadable rule order for %s/%s: %s", project_id, work_item_type, exc)
            return list(rules)
        unranked = len(rules)
        # Rules missing from the record keep their fetched order after the ranked ones.
        return sorted(rules, key=lambda r: order.get(r.id or "", unranked))

    def _order_key(self, work_item_type: str, project_id: str) -> str:
        return scoped_key(self.order_key_prefix, project_id, work_item_type)

    def _discard_rules(self) -> None:
        for rule in self._rules:
            rule.dispose()
        self._rules = []


__all__ = ["RuleEngineHost"]
