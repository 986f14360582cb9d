"""
Rule: an ordered pairing of triggers and actions for one work item type.

Edits are written to an overlay on top of the record the rule was built
from; the original record is never modified in place, which keeps
``is_dirty`` a clean diff and ``discard_changes`` a simple reset.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..constants import DEFAULT_RULE_COLOR, DEFAULT_RULE_NAME, FormEvent, RuleField, SizeLimits
from ..core.errors import ActionError, log_exception
from ..platform import RuleContext
from ..schemas.events import parse_event_args
from ..schemas.rule import ActionRecord, IdentityRef, RuleRecord, TriggerRecord
from .actions import BaseAction, create_action
from .base import ChangedListener
from .triggers import BaseTrigger, create_trigger

logger = logging.getLogger("rules.rule")

# Fields compared case-insensitively by ``is_dirty``.
_CASE_INSENSITIVE_FIELDS = {RuleField.COLOR.value, RuleField.DESCRIPTION.value}


class RuleState(str, Enum):
    NEW = "new"
    PERSISTED = "persisted"
    MODIFIED = "modified"
    DELETE_PENDING = "deletePending"


def _field_key(field_name: RuleField | str) -> str:
    return field_name.value if isinstance(field_name, RuleField) else str(field_name)


def _same(key: str, left: Any, right: Any) -> bool:
    if key in _CASE_INSENSITIVE_FIELDS:
        return (left or "").lower() == (right or "").lower()
    if key == RuleField.NAME.value:
        return (left or "") == (right or "")
    return left == right


class Rule:
    @classmethod
    def new(
        cls,
        work_item_type: str,
        project_id: str,
        created_by: Optional[IdentityRef] = None,
    ) -> "Rule":
        return cls(
            RuleRecord(
                name=DEFAULT_RULE_NAME,
                description="",
                disabled=False,
                hide_on_form=False,
                color=DEFAULT_RULE_COLOR,
                project_id=project_id,
                work_item_type=work_item_type,
                created_by=created_by,
                last_updated_by=created_by,
            )
        )

    @classmethod
    def from_record(cls, record: RuleRecord | Dict[str, Any]) -> "Rule":
        if not isinstance(record, RuleRecord):
            record = RuleRecord.model_validate(record)
        return cls(record)

    def __init__(self, record: RuleRecord) -> None:
        self._original: Dict[str, Any] = record.to_document()
        self._updates: Dict[str, Any] = {}
        self._changed_listeners: List[ChangedListener] = []
        self._actions: List[BaseAction] = []
        self._triggers: List[BaseTrigger] = []
        self._original_action_kinds: List[str] = []
        self._original_trigger_kinds: List[str] = []
        self._build_children(record)
        self._state = RuleState.NEW if self.is_new else RuleState.PERSISTED
        self._state_before_delete = self._state

    # identity and state

    @property
    def id(self) -> Optional[str]:
        return self._original.get("id")

    @property
    def is_new(self) -> bool:
        return not self.id

    @property
    def version(self) -> Optional[int]:
        return self._original.get("__etag")

    @property
    def rule_group_id(self) -> Optional[str]:
        return self._original.get("ruleGroupId")

    @property
    def state(self) -> RuleState:
        return self._state

    @property
    def name(self) -> str:
        return self.get_field_value(RuleField.NAME) or ""

    @property
    def disabled(self) -> bool:
        return bool(self.get_field_value(RuleField.DISABLED))

    @property
    def actions(self) -> List[BaseAction]:
        return list(self._actions)

    @property
    def triggers(self) -> List[BaseTrigger]:
        return list(self._triggers)

    @property
    def has_triggers(self) -> bool:
        return bool(self._triggers)

    @property
    def original_model(self) -> RuleRecord:
        return RuleRecord.model_validate(self._original)

    @property
    def updated_model(self) -> RuleRecord:
        document = {**self._original, **self._updates}
        document["actions"] = [{"name": a.name, "attributes": a.updated_attributes} for a in self._actions]
        document["triggers"] = [{"name": t.name, "attributes": t.updated_attributes} for t in self._triggers]
        return RuleRecord.model_validate(document)

    # field overlay

    def set_field_value(self, field_name: RuleField | str, value: Any) -> None:
        self._updates[_field_key(field_name)] = value
        self._on_mutated()

    def get_field_value(self, field_name: RuleField | str, original: bool = False) -> Any:
        key = _field_key(field_name)
        if original:
            return self._original.get(key)
        if key in self._updates:
            return self._updates[key]
        return self._original.get(key)

    def is_dirty(self) -> bool:
        for field_name in RuleField:
            key = field_name.value
            if not _same(key, self.get_field_value(key), self._original.get(key)):
                return True
        if [a.name for a in self._actions] != self._original_action_kinds:
            return True
        if [t.name for t in self._triggers] != self._original_trigger_kinds:
            return True
        return any(a.is_dirty() for a in self._actions) or any(t.is_dirty() for t in self._triggers)

    def is_valid(self) -> bool:
        name = self.get_field_value(RuleField.NAME)
        if not isinstance(name, str) or not name.strip():
            return False
        if len(name) > SizeLimits.RULE_NAME_MAX_LENGTH:
            return False
        description = self.get_field_value(RuleField.DESCRIPTION)
        if description and len(description) > SizeLimits.RULE_DESCRIPTION_MAX_LENGTH:
            return False
        if not self._actions or not self._triggers:
            return False
        return all(a.is_valid() for a in self._actions) and all(t.is_valid() for t in self._triggers)

    def discard_changes(self) -> None:
        """Drop the overlay and every child edit, restoring the original record."""
        self._updates = {}
        self._dispose_children()
        self._build_children(RuleRecord.model_validate(self._original))
        if self._state == RuleState.MODIFIED:
            self._state = RuleState.PERSISTED
        self._notify()

    # children

    def add_action(self, action: BaseAction) -> None:
        self._actions.append(action)
        action.add_changed_listener(self._on_mutated)
        self._on_mutated()

    def remove_action(self, action: BaseAction) -> None:
        if action in self._actions:
            self._actions.remove(action)
            action.remove_changed_listener(self._on_mutated)
            self._on_mutated()

    def add_trigger(self, trigger: BaseTrigger) -> None:
        self._triggers.append(trigger)
        trigger.add_changed_listener(self._on_mutated)
        self._on_mutated()

    def remove_trigger(self, trigger: BaseTrigger) -> None:
        if trigger in self._triggers:
            self._triggers.remove(trigger)
            trigger.remove_changed_listener(self._on_mutated)
            self._on_mutated()

    # execution

    async def run(self, context: RuleContext) -> Optional[ActionError]:
        """Run actions in order, stopping at the first failure, which is returned."""
        for action in self._actions:
            try:
                await action.run(context)
            except Exception as exc:
                error = ActionError.from_exception(action.get_friendly_name(), exc)
                logger.warning(
                    "Rule %s action %s failed: %s",
                    self.id or self.name,
                    error.action_name,
                    error.message,
                )
                return error
        return None

    async def should_run_on_event(self, event: FormEvent, args: Any, context: RuleContext) -> bool:
        """
        True if any trigger bound to ``event`` fires.

        Every matching trigger is evaluated, in order, even after one has
        fired. A trigger that raises, or a payload that does not parse,
        counts as not firing.
        """
        event = FormEvent(event)
        try:
            parsed = parse_event_args(event, args)
        except ValidationError as exc:
            log_exception(
                logger,
                "Unreadable event payload",
                extra={"rule_id": self.id, "event": event.value},
                exc=exc,
            )
            return False
        fired = False
        for trigger in self._triggers:
            if trigger.get_associated_form_event() != event:
                continue
            try:
                if await trigger.should_trigger(parsed, context):
                    fired = True
            except Exception as exc:
                log_exception(
                    logger,
                    "Trigger evaluation failed",
                    extra={"rule_id": self.id, "trigger": trigger.name, "event": event.value},
                    exc=exc,
                )
        return fired

    # persistence transitions

    def mark_saved(self, record: RuleRecord) -> None:
        """Adopt the record acknowledged by the server as the new original."""
        self._original = record.to_document()
        self._updates = {}
        self._dispose_children()
        self._build_children(record)
        self._state = RuleState.PERSISTED
        self._notify()

    def mark_delete_pending(self) -> None:
        if self._state != RuleState.DELETE_PENDING:
            self._state_before_delete = self._state
        self._state = RuleState.DELETE_PENDING
        self._notify()

    def cancel_delete(self) -> None:
        """Return to the pre-delete state after the server rejected the removal."""
        if self._state == RuleState.DELETE_PENDING:
            self._state = self._state_before_delete
            self._notify()

    # change notification

    def add_changed_listener(self, listener: Callable[[], None]) -> None:
        self._changed_listeners.append(listener)

    def remove_changed_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._changed_listeners:
            self._changed_listeners.remove(listener)

    def dispose(self) -> None:
        self._dispose_children()
        self._changed_listeners = []

    def _on_mutated(self) -> None:
        if self._state == RuleState.PERSISTED:
            self._state = RuleState.MODIFIED
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._changed_listeners):
            listener()

    def _build_children(self, record: RuleRecord) -> None:
        self._actions = []
        self._triggers = []
        for action_record in record.actions:
            action = self._prepare(create_action, action_record)
            if action is not None:
                action.add_changed_listener(self._on_mutated)
                self._actions.append(action)
        for trigger_record in record.triggers:
            trigger = self._prepare(create_trigger, trigger_record)
            if trigger is not None:
                trigger.add_changed_listener(self._on_mutated)
                self._triggers.append(trigger)
        self._original_action_kinds = [a.name for a in self._actions]
        self._original_trigger_kinds = [t.name for t in self._triggers]

    def _prepare(self, factory, record: ActionRecord | TriggerRecord):
        try:
            return factory(record)
        except Exception as exc:
            log_exception(logger, "Error preparing rule artifact", extra={"rule_id": self.id, "kind": record.name}, exc=exc)
            return None

    def _dispose_children(self) -> None:
        for action in self._actions:
            action.remove_changed_listener(self._on_mutated)
        for trigger in self._triggers:
            trigger.remove_changed_listener(self._on_mutated)

    def __repr__(self) -> str:
        return f"Rule(id={self.id!r}, name={self.name!r}, state={self._state.value})"


__all__ = ["Rule", "RuleState"]
