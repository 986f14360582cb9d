"""
Rule actions.

An action performs one side effect against the open work item or the
wider platform. Macro tokens in its attributes are resolved right before
use. Failures raise ``ActionExecutionError``; actions never retry.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..constants import EXCLUDED_FIELDS, TAG_SEPARATOR, CoreFieldRefNames
from ..core.errors import ActionExecutionError
from ..macros import MacroResolver, is_any_macro, is_macro, validate_macro
from ..platform import FieldType, RuleContext
from ..schemas.rule import ActionRecord
from .base import ArtifactRegistry, RuleArtifact, is_blank

logger = logging.getLogger("rules.actions")

ACTIONS = ArtifactRegistry("action")
register_action = ACTIONS.register

_TYPED_FIELD_TYPES = (FieldType.DATETIME, FieldType.IDENTITY)


class BaseAction(RuleArtifact):
    async def run(self, context: RuleContext) -> None:
        raise NotImplementedError

    def fail(self, message: str) -> ActionExecutionError:
        return ActionExecutionError(self.get_friendly_name(), message)

    def is_valid(self) -> bool:
        if not super().is_valid():
            return False
        return all(_macro_is_valid(v) for v in self.updated_attributes.values())


def _macro_is_valid(value: Any) -> bool:
    # @Any is a trigger-only wildcard.
    if is_any_macro(value):
        return False
    if not is_macro(value):
        return True
    return validate_macro(value.strip()).is_valid


def split_tags(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        parts = [str(v) for v in value]
    else:
        parts = str(value).split(TAG_SEPARATOR)
    return [p.strip() for p in parts if p.strip()]


def join_tags(tags: List[str]) -> str:
    return f"{TAG_SEPARATOR} ".join(tags)


async def _writable_field_type(action: BaseAction, context: RuleContext, field_name: str) -> FieldType:
    if field_name in EXCLUDED_FIELDS:
        raise action.fail(f"Field {field_name} cannot be set by a rule")
    field_type = await context.form.get_field_type(field_name)
    if field_type is None:
        raise action.fail(f"Field {field_name} does not exist on this work item type")
    return field_type


async def _set_field(action: BaseAction, context: RuleContext, field_name: str, value: Any) -> None:
    try:
        ok = await context.form.set_field_value(field_name, value)
    except ActionExecutionError:
        raise
    except Exception as exc:
        raise action.fail(f"Could not set {field_name}: {exc}") from exc
    if ok is False:
        raise action.fail(f"Could not set {field_name} to {value!r}")


def _field_name(action: BaseAction, key: str = "fieldName") -> str:
    value = action.get_attribute(key)
    if is_blank(value):
        raise action.fail(f"{key} is not configured")
    return str(value).strip()


@register_action("SetFieldValueAction")
class SetFieldValueAction(BaseAction):
    friendly_name = "Set field value"
    description = "Sets a field on the work item, expanding macros such as @Me or @StartOfMonth"
    required_attributes = ("fieldName",)

    def default_attributes(self) -> Dict[str, Any]:
        return {"fieldName": "", "fieldValue": ""}

    async def run(self, context: RuleContext) -> None:
        field_name = _field_name(self)
        field_type = await _writable_field_type(self, context, field_name)
        value = self.get_attribute("fieldValue")
        resolver = MacroResolver(context)
        value = await resolver.resolve_value(value, typed=field_type in _TYPED_FIELD_TYPES)
        await _set_field(self, context, field_name, value)


@register_action("ClearFieldAction")
class ClearFieldAction(BaseAction):
    friendly_name = "Clear field"
    required_attributes = ("fieldName",)

    def default_attributes(self) -> Dict[str, Any]:
        return {"fieldName": ""}

    async def run(self, context: RuleContext) -> None:
        field_name = _field_name(self)
        await _writable_field_type(self, context, field_name)
        await _set_field(self, context, field_name, None)


@register_action("CopyFieldValueAction")
class CopyFieldValueAction(BaseAction):
    friendly_name = "Copy field value"
    required_attributes = ("sourceFieldName", "targetFieldName")

    def default_attributes(self) -> Dict[str, Any]:
        return {"sourceFieldName": "", "targetFieldName": ""}

    async def run(self, context: RuleContext) -> None:
        source = _field_name(self, "sourceFieldName")
        target = _field_name(self, "targetFieldName")
        if await context.form.get_field_type(source) is None:
            raise self.fail(f"Field {source} does not exist on this work item type")
        await _writable_field_type(self, context, target)
        value = await context.form.get_field_value(source)
        await _set_field(self, context, target, value)


@register_action("AddTagsAction")
class AddTagsAction(BaseAction):
    friendly_name = "Add tags"
    required_attributes = ("tags",)

    def default_attributes(self) -> Dict[str, Any]:
        return {"tags": ""}

    async def run(self, context: RuleContext) -> None:
        existing = split_tags(await context.form.get_field_value(CoreFieldRefNames.TAGS))
        seen = {t.lower() for t in existing}
        for tag in split_tags(self.get_attribute("tags")):
            if tag.lower() not in seen:
                existing.append(tag)
                seen.add(tag.lower())
        await _set_field(self, context, CoreFieldRefNames.TAGS, join_tags(existing))


@register_action("RemoveTagsAction")
class RemoveTagsAction(BaseAction):
    friendly_name = "Remove tags"
    required_attributes = ("tags",)

    def default_attributes(self) -> Dict[str, Any]:
        return {"tags": ""}

    async def run(self, context: RuleContext) -> None:
        removed = {t.lower() for t in split_tags(self.get_attribute("tags"))}
        existing = split_tags(await context.form.get_field_value(CoreFieldRefNames.TAGS))
        kept = [t for t in existing if t.lower() not in removed]
        await _set_field(self, context, CoreFieldRefNames.TAGS, join_tags(kept))


@register_action("SaveWorkItemAction")
class SaveWorkItemAction(BaseAction):
    friendly_name = "Save work item"

    async def run(self, context: RuleContext) -> None:
        try:
            await context.form.save()
        except Exception as exc:
            raise self.fail(f"Save failed: {exc}") from exc


@register_action("CreateLinkedWorkItemAction")
class CreateLinkedWorkItemAction(BaseAction):
    friendly_name = "Create linked work item"
    description = "Creates a new work item and links it to the open one"
    required_attributes = ("workItemType",)

    def default_attributes(self) -> Dict[str, Any]:
        return {"workItemType": "", "linkType": "System.LinkTypes.Hierarchy-Forward", "fieldValues": {}}

    async def run(self, context: RuleContext) -> None:
        work_item_type = _field_name(self, "workItemType")
        link_type = self.get_attribute("linkType") or "System.LinkTypes.Hierarchy-Forward"
        field_values = self.get_attribute("fieldValues") or {}
        if not isinstance(field_values, dict):
            raise self.fail("fieldValues must be a mapping of field reference names to values")

        resolver = MacroResolver(context)
        fields: Dict[str, Any] = {}
        for ref_name, raw in field_values.items():
            fields[ref_name] = await resolver.resolve_value(raw)

        try:
            new_id = await context.work_items.create_work_item(context.project_id, work_item_type, fields)
        except Exception as exc:
            raise self.fail(f"Could not create {work_item_type}: {exc}") from exc
        try:
            await context.form.add_link(new_id, link_type)
        except Exception as exc:
            raise self.fail(f"Created {work_item_type} {new_id} but could not link it: {exc}") from exc
        logger.info("Created linked %s %s (%s)", work_item_type, new_id, link_type)


@register_action("NotifyAction")
class NotifyAction(BaseAction):
    friendly_name = "Send notification"
    required_attributes = ("to", "message")

    def default_attributes(self) -> Dict[str, Any]:
        return {"to": "", "subject": "", "message": ""}

    async def run(self, context: RuleContext) -> None:
        resolver = MacroResolver(context)
        to = await resolver.resolve_value(self.get_attribute("to"))
        subject = await resolver.resolve_value(self.get_attribute("subject") or "")
        message = await resolver.resolve_value(self.get_attribute("message"))
        if is_blank(to):
            raise self.fail("Notification recipient is empty")
        try:
            await context.notifier.notify(str(to), str(subject), str(message))
        except Exception as exc:
            raise self.fail(f"Notification to {to} failed: {exc}") from exc


def get_action_type(name: str) -> Optional[type]:
    return ACTIONS.get(name)


def create_action(record: ActionRecord | dict) -> Optional[BaseAction]:
    """Instantiate the action for ``record``; unknown kinds give None."""
    if isinstance(record, dict):
        record = ActionRecord.model_validate(record)
    action_type = get_action_type(record.name)
    if action_type is None:
        logger.warning("Unknown action kind %s", record.name)
        return None
    return action_type(record.attributes)


__all__ = [
    "ACTIONS",
    "register_action",
    "BaseAction",
    "SetFieldValueAction",
    "ClearFieldAction",
    "CopyFieldValueAction",
    "AddTagsAction",
    "RemoveTagsAction",
    "SaveWorkItemAction",
    "CreateLinkedWorkItemAction",
    "NotifyAction",
    "get_action_type",
    "create_action",
    "split_tags",
    "join_tags",
]
