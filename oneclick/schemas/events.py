"""
Pydantic models for the lifecycle event payloads delivered by the
work item form host.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from ..constants import FormEvent


class WorkItemChangedArgs(BaseModel):
    """Payload for saved, refreshed, reset and unloaded events."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[int] = Field(default=None, validation_alias=AliasChoices("id", "workItemId"))


class WorkItemLoadedArgs(WorkItemChangedArgs):
    is_new: bool = Field(default=False, alias="isNew")
    is_read_only: bool = Field(default=False, alias="isReadOnly")


class WorkItemFieldChangedArgs(WorkItemChangedArgs):
    """
    Field change notification.

    Accepts either the batched form (``changedFields`` and ``oldValues``
    maps) or a single change given as ``changedFieldRefName`` with
    ``newValue`` and an optional ``oldValue``.
    """

    # Reference name -> new value for every field changed in this notification.
    changed_fields: Dict[str, Any] = Field(default_factory=dict, alias="changedFields")
    # Previous values, when the host supplies them.
    old_values: Optional[Dict[str, Any]] = Field(default=None, alias="oldValues")

    @model_validator(mode="before")
    @classmethod
    def _fold_single_change(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        ref_name = data.get("changedFieldRefName")
        if not ref_name or "changedFields" in data or "changed_fields" in data:
            return data
        data = dict(data)
        data["changedFields"] = {ref_name: data.get("newValue")}
        if "oldValue" in data and "oldValues" not in data:
            data["oldValues"] = {ref_name: data["oldValue"]}
        return data


EventArgs = Union[WorkItemChangedArgs, WorkItemLoadedArgs, WorkItemFieldChangedArgs]

_ARGS_BY_EVENT = {
    FormEvent.ON_LOADED: WorkItemLoadedArgs,
    FormEvent.ON_FIELD_CHANGED: WorkItemFieldChangedArgs,
}


def parse_event_args(event: FormEvent, payload: Any) -> EventArgs:
    """Coerce a raw host payload into the model for ``event``."""
    model = _ARGS_BY_EVENT.get(FormEvent(event), WorkItemChangedArgs)
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True)
    return model.model_validate(payload or {})


__all__ = [
    "WorkItemChangedArgs",
    "WorkItemLoadedArgs",
    "WorkItemFieldChangedArgs",
    "EventArgs",
    "parse_event_args",
]
