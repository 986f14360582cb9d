"""
Host platform collaborators consumed by the rule engine.

The engine never talks to the work item form, identity or iteration
services directly; it goes through the small interfaces below. The
in-memory implementations back the CLI simulator and the tests.
"""

from __future__ import annotations

import datetime
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .constants import FormEvent
from .schemas.rule import IdentityRef


class FieldType(str, Enum):
    STRING = "string"
    BOOLEAN = "boolean"
    DATETIME = "dateTime"
    DOUBLE = "double"
    INTEGER = "integer"
    IDENTITY = "identity"
    TREE_PATH = "treePath"


@dataclass
class Iteration:
    id: str
    name: str
    path: str
    time_frame: Optional[str] = None
    start_date: Optional[datetime.date] = None
    finish_date: Optional[datetime.date] = None


class WorkItemFormService:
    """Accessor for the work item currently open in the form."""

    async def get_work_item_id(self) -> Optional[int]:
        raise NotImplementedError

    async def get_field_value(self, ref_name: str) -> Any:
        raise NotImplementedError

    async def set_field_value(self, ref_name: str, value: Any) -> bool:
        raise NotImplementedError

    async def get_field_type(self, ref_name: str) -> Optional[FieldType]:
        """Return the field's type, or None when the work item type has no such field."""
        raise NotImplementedError

    async def add_link(self, target_id: int, link_type: str) -> None:
        raise NotImplementedError

    async def save(self) -> None:
        raise NotImplementedError


class WorkItemService:
    async def create_work_item(self, project_id: str, work_item_type: str, fields: Dict[str, Any]) -> int:
        raise NotImplementedError


class IdentityService:
    async def get_current_user(self) -> IdentityRef:
        raise NotImplementedError


class IterationService:
    async def get_current_iterations(self, project_id: str, team_id: Optional[str]) -> List[Iteration]:
        raise NotImplementedError


class NotificationProvider:
    async def notify(self, to: str, subject: str, message: str) -> Optional[str]:
        raise NotImplementedError


class LogNotificationProvider(NotificationProvider):
    async def notify(self, to: str, subject: str, message: str) -> Optional[str]:
        logging.getLogger("notifications").info("Log notification to=%s subject=%s message=%s", to, subject, message)
        return None


EventHandler = Callable[[Any], Awaitable[None]]


class FormEventRegistry:
    """Registration API for form lifecycle notifications."""

    def register(self, handlers: Dict[FormEvent, EventHandler]) -> None:
        raise NotImplementedError

    def unregister(self) -> None:
        raise NotImplementedError


@dataclass
class RuleContext:
    """Collaborators available to triggers, actions and macros while a rule runs."""

    form: WorkItemFormService
    identity: IdentityService
    iterations: IterationService
    work_items: WorkItemService
    notifier: NotificationProvider = field(default_factory=LogNotificationProvider)
    project_id: str = ""
    team_id: Optional[str] = None
    work_item_type: str = ""
    tz: datetime.tzinfo = datetime.timezone.utc
    clock: Optional[Callable[[], datetime.datetime]] = None

    def now(self) -> datetime.datetime:
        if self.clock is not None:
            return self.clock()
        return datetime.datetime.now(self.tz)


class InMemoryWorkItemForm(WorkItemFormService):
    def __init__(
        self,
        fields: Optional[Dict[str, Any]] = None,
        field_types: Optional[Dict[str, FieldType]] = None,
        work_item_id: Optional[int] = None,
    ) -> None:
        self.fields: Dict[str, Any] = dict(fields or {})
        self.field_types: Dict[str, FieldType] = dict(field_types or {})
        self.work_item_id = work_item_id
        self.links: List[tuple[int, str]] = []
        self.save_count = 0
        self.logger = logging.getLogger("form")

    async def get_work_item_id(self) -> Optional[int]:
        return self.work_item_id

    async def get_field_value(self, ref_name: str) -> Any:
        return self.fields.get(ref_name)

    async def set_field_value(self, ref_name: str, value: Any) -> bool:
        if ref_name not in self.fields and ref_name not in self.field_types:
            return False
        self.fields[ref_name] = value
        return True

    async def get_field_type(self, ref_name: str) -> Optional[FieldType]:
        if ref_name in self.field_types:
            return self.field_types[ref_name]
        if ref_name in self.fields:
            return FieldType.STRING
        return None

    async def add_link(self, target_id: int, link_type: str) -> None:
        self.links.append((target_id, link_type))

    async def save(self) -> None:
        self.save_count += 1
        if self.work_item_id is None:
            self.work_item_id = 1
        self.logger.info("Saved work item %s", self.work_item_id)


class InMemoryWorkItemService(WorkItemService):
    def __init__(self, first_id: int = 1000) -> None:
        self._ids = itertools.count(first_id)
        self.created: Dict[int, Dict[str, Any]] = {}

    async def create_work_item(self, project_id: str, work_item_type: str, fields: Dict[str, Any]) -> int:
        new_id = next(self._ids)
        self.created[new_id] = {
            "projectId": project_id,
            "workItemType": work_item_type,
            "fields": dict(fields),
        }
        return new_id


class StaticIdentityService(IdentityService):
    def __init__(self, identity: IdentityRef) -> None:
        self.identity = identity

    async def get_current_user(self) -> IdentityRef:
        return self.identity


class StaticIterationService(IterationService):
    def __init__(self, iterations: Optional[List[Iteration]] = None) -> None:
        self.iterations = list(iterations or [])

    async def get_current_iterations(self, project_id: str, team_id: Optional[str]) -> List[Iteration]:
        return list(self.iterations)


class InMemoryFormEventRegistry(FormEventRegistry):
    """Registry that lets callers fire events and awaits each handler to completion."""

    def __init__(self) -> None:
        self.handlers: Dict[FormEvent, EventHandler] = {}

    def register(self, handlers: Dict[FormEvent, EventHandler]) -> None:
        self.handlers = dict(handlers)

    def unregister(self) -> None:
        self.handlers = {}

    @property
    def registered(self) -> bool:
        return bool(self.handlers)

    async def fire(self, event: FormEvent, payload: Any = None) -> None:
        handler = self.handlers.get(FormEvent(event))
        if handler is None:
            return
        await handler(payload)


__all__ = [
    "FieldType",
    "Iteration",
    "WorkItemFormService",
    "WorkItemService",
    "IdentityService",
    "IterationService",
    "NotificationProvider",
    "LogNotificationProvider",
    "FormEventRegistry",
    "RuleContext",
    "InMemoryWorkItemForm",
    "InMemoryWorkItemService",
    "StaticIdentityService",
    "StaticIterationService",
    "InMemoryFormEventRegistry",
]
