"""
Rule triggers.

Each trigger kind answers for exactly one form lifecycle event and
decides, from that event's payload, whether its rule should run.
Triggers never raise for a malformed attribute bag; they report that
they do not fire instead.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Optional

from ..constants import EXCLUDED_FIELDS, FormEvent
from ..core.errors import TriggerEvaluationError
from ..macros import MacroResolver, is_any_macro, is_macro, translate_to_field_value, validate_macro
from ..macros.utils import DATE_FORMAT
from ..platform import FieldType, Iteration, RuleContext
from ..schemas.events import (
    EventArgs,
    WorkItemFieldChangedArgs,
    WorkItemLoadedArgs,
)
from ..schemas.rule import IdentityRef, TriggerRecord
from .base import ArtifactRegistry, RuleArtifact, is_blank

logger = logging.getLogger("rules.triggers")

TRIGGERS = ArtifactRegistry("trigger")
register_trigger = TRIGGERS.register


class BaseTrigger(RuleArtifact):
    associated_event: FormEvent = FormEvent.ON_SAVED

    def get_associated_form_event(self) -> FormEvent:
        return self.associated_event

    async def should_trigger(self, args: EventArgs, context: RuleContext) -> bool:
        try:
            return bool(await self._evaluate(args, context))
        except (TriggerEvaluationError, KeyError, TypeError, ValueError) as exc:
            logger.debug("Trigger %s did not evaluate: %s", self.name, exc)
            return False

    async def _evaluate(self, args: EventArgs, context: RuleContext) -> bool:
        raise NotImplementedError


def _canonical(value: Any) -> Any:
    if isinstance(value, datetime.datetime):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, datetime.date):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, IdentityRef):
        return value.display_name
    if isinstance(value, Iteration):
        return value.path
    return value


def values_equal(expected: Any, actual: Any) -> bool:
    expected = _canonical(expected)
    actual = _canonical(actual)
    if isinstance(expected, str) or isinstance(actual, str):
        left = "" if expected is None else str(expected)
        right = "" if actual is None else str(actual)
        return left.strip().casefold() == right.strip().casefold()
    return expected == actual


async def value_matches(expected: Any, actual: Any, field_type: Optional[FieldType], context: RuleContext) -> bool:
    """True when ``actual`` satisfies the configured ``expected`` value (blank and @Any match anything)."""
    if is_blank(expected) or is_any_macro(expected):
        return True
    translated = await translate_to_field_value(expected, field_type, MacroResolver(context))
    return values_equal(translated, actual)


def _require_field_name(trigger: BaseTrigger) -> str:
    field_name = trigger.get_attribute("fieldName")
    if not isinstance(field_name, str) or not field_name.strip():
        raise TriggerEvaluationError(f"{trigger.name} has no fieldName")
    return field_name.strip()


def _macro_value_is_valid(value: Any) -> bool:
    if is_blank(value) or is_any_macro(value) or not is_macro(value):
        return True
    return validate_macro(value.strip()).is_valid


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


@register_trigger("FieldChangedTrigger")
class FieldChangedTrigger(BaseTrigger):
    friendly_name = "Field changed"
    description = "Triggers when a field changes on the open work item"
    associated_event = FormEvent.ON_FIELD_CHANGED
    required_attributes = ("fieldName",)

    def default_attributes(self) -> Dict[str, Any]:
        return {"fieldName": "", "oldFieldValue": "", "newFieldValue": ""}

    async def _evaluate(self, args: EventArgs, context: RuleContext) -> bool:
        if not isinstance(args, WorkItemFieldChangedArgs):
            return False
        field_name = _require_field_name(self)
        changed_key = next((k for k in args.changed_fields if k.lower() == field_name.lower()), None)
        if changed_key is None:
            return False

        field_type = await context.form.get_field_type(field_name)
        if not await value_matches(self.get_attribute("newFieldValue"), args.changed_fields[changed_key], field_type, context):
            return False

        old_expected = self.get_attribute("oldFieldValue")
        old_values = args.old_values or {}
        old_key = next((k for k in old_values if k.lower() == field_name.lower()), None)
        if not is_blank(old_expected) and old_key is not None:
            return await value_matches(old_expected, old_values[old_key], field_type, context)
        return True

    def is_valid(self) -> bool:
        field_name = self.get_attribute("fieldName")
        if not isinstance(field_name, str) or not field_name.strip() or field_name.strip() in EXCLUDED_FIELDS:
            return False
        return _macro_value_is_valid(self.get_attribute("oldFieldValue")) and _macro_value_is_valid(
            self.get_attribute("newFieldValue")
        )


@register_trigger("FieldValueSavedTrigger")
class FieldValueSavedTrigger(BaseTrigger):
    friendly_name = "Field value saved"
    description = "Triggers when the work item is saved and a field holds the configured value"
    associated_event = FormEvent.ON_SAVED
    required_attributes = ("fieldName",)

    def default_attributes(self) -> Dict[str, Any]:
        return {"fieldName": "", "newFieldValue": ""}

    async def _evaluate(self, args: EventArgs, context: RuleContext) -> bool:
        field_name = _require_field_name(self)
        field_type = await context.form.get_field_type(field_name)
        if field_type is None:
            return False
        current = await context.form.get_field_value(field_name)
        return await value_matches(self.get_attribute("newFieldValue"), current, field_type, context)

    def is_valid(self) -> bool:
        field_name = self.get_attribute("fieldName")
        if not isinstance(field_name, str) or not field_name.strip() or field_name.strip() in EXCLUDED_FIELDS:
            return False
        return _macro_value_is_valid(self.get_attribute("newFieldValue"))


@register_trigger("WorkItemLoadedTrigger")
class WorkItemLoadedTrigger(BaseTrigger):
    friendly_name = "Work item loaded"
    description = "Triggers when a work item is opened, optionally only for new work items"
    associated_event = FormEvent.ON_LOADED

    def default_attributes(self) -> Dict[str, Any]:
        return {"newOnly": False}

    async def _evaluate(self, args: EventArgs, context: RuleContext) -> bool:
        if _as_bool(self.get_attribute("newOnly")):
            return isinstance(args, WorkItemLoadedArgs) and args.is_new
        return True


@register_trigger("WorkItemSavedTrigger")
class WorkItemSavedTrigger(BaseTrigger):
    friendly_name = "Work item saved"
    associated_event = FormEvent.ON_SAVED

    async def _evaluate(self, args: EventArgs, context: RuleContext) -> bool:
        return True


@register_trigger("WorkItemRefreshedTrigger")
class WorkItemRefreshedTrigger(BaseTrigger):
    friendly_name = "Work item refreshed"
    associated_event = FormEvent.ON_REFRESHED

    async def _evaluate(self, args: EventArgs, context: RuleContext) -> bool:
        return True


@register_trigger("WorkItemResetTrigger")
class WorkItemResetTrigger(BaseTrigger):
    friendly_name = "Work item reset"
    associated_event = FormEvent.ON_RESET

    async def _evaluate(self, args: EventArgs, context: RuleContext) -> bool:
        return True


def get_trigger_type(name: str) -> Optional[type]:
    return TRIGGERS.get(name)


def create_trigger(record: TriggerRecord | dict) -> Optional[BaseTrigger]:
    """Instantiate the trigger for ``record``; unknown kinds give None."""
    if isinstance(record, dict):
        record = TriggerRecord.model_validate(record)
    trigger_type = get_trigger_type(record.name)
    if trigger_type is None:
        logger.warning("Unknown trigger kind %s", record.name)
        return None
    return trigger_type(record.attributes)


__all__ = [
    "TRIGGERS",
    "register_trigger",
    "BaseTrigger",
    "FieldChangedTrigger",
    "FieldValueSavedTrigger",
    "WorkItemLoadedTrigger",
    "WorkItemSavedTrigger",
    "WorkItemRefreshedTrigger",
    "WorkItemResetTrigger",
    "get_trigger_type",
    "create_trigger",
    "value_matches",
    "values_equal",
]
