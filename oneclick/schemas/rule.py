"""
Pydantic schemas for rule records as stored on the server and in the
local cache.

Stored documents use camelCase keys; models accept either the alias or
the Python field name and serialize back with aliases.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IdentityRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    display_name: str = Field(default="", alias="displayName")
    unique_name: Optional[str] = Field(default=None, alias="uniqueName")


class ActionRecord(BaseModel):
    name: str
    attributes: Dict[str, Any] = Field(default_factory=dict)


class TriggerRecord(BaseModel):
    name: str
    attributes: Dict[str, Any] = Field(default_factory=dict)


class RuleRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str = ""
    description: Optional[str] = ""
    color: Optional[str] = None
    disabled: bool = False
    hide_on_form: bool = Field(default=False, alias="hideOnForm")
    project_id: str = Field(default="", alias="projectId")
    work_item_type: str = Field(default="", alias="workItemType")
    rule_group_id: Optional[str] = Field(default=None, alias="ruleGroupId")
    actions: List[ActionRecord] = Field(default_factory=list)
    triggers: List[TriggerRecord] = Field(default_factory=list)
    created_by: Optional[IdentityRef] = Field(default=None, alias="createdBy")
    last_updated_by: Optional[IdentityRef] = Field(default=None, alias="lastUpdatedBy")
    etag: Optional[int] = Field(default=None, alias="__etag")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class RuleGroupRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    description: Optional[str] = None
    disabled: bool = False
    project_id: str = Field(default="", alias="projectId")
    work_item_type: str = Field(default="", alias="workItemType")
    etag: Optional[int] = Field(default=None, alias="__etag")


class LocalRulesData(BaseModel):
    """Cache entry for one (project, work item type) scope."""

    model_config = ConfigDict(populate_by_name=True)

    cache_stamp: int = Field(alias="cacheStamp")
    work_item_type: str = Field(alias="workItemType")
    project_id: str = Field(alias="projectId")
    rules: List[RuleRecord] = Field(default_factory=list)


class RuleOrderData(BaseModel):
    """User-local display order of rules, keyed by rule id."""

    model_config = ConfigDict(populate_by_name=True)

    work_item_type: str = Field(alias="workItemType")
    project_id: str = Field(alias="projectId")
    order: Dict[str, int] = Field(default_factory=dict)


__all__ = [
    "IdentityRef",
    "ActionRecord",
    "TriggerRecord",
    "RuleRecord",
    "RuleGroupRecord",
    "LocalRulesData",
    "RuleOrderData",
]
