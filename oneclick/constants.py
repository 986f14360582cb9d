"""
Shared constants for the OneClick rule engine.
"""

from __future__ import annotations

from enum import Enum


class FormEvent(str, Enum):
    """Work item form lifecycle events delivered by the host platform."""

    ON_LOADED = "onLoaded"
    ON_FIELD_CHANGED = "onFieldChanged"
    ON_SAVED = "onSaved"
    ON_REFRESHED = "onRefreshed"
    ON_RESET = "onReset"
    ON_UNLOADED = "onUnloaded"


class RuleField(str, Enum):
    """Scalar rule fields that can be edited through the overlay."""

    NAME = "name"
    DESCRIPTION = "description"
    COLOR = "color"
    DISABLED = "disabled"
    HIDE_ON_FORM = "hideOnForm"
    WORK_ITEM_TYPE = "workItemType"
    PROJECT_ID = "projectId"


class SizeLimits:
    RULE_NAME_MAX_LENGTH = 128
    RULE_DESCRIPTION_MAX_LENGTH = 256


class SettingKey:
    WORK_ITEM_TYPE_ENABLED = "workItemTypeEnabled"
    PERSONAL_RULES_ENABLED = "personalRulesEnabled"
    GLOBAL_RULES_ENABLED = "globalRulesEnabled"


PERSONAL_RULE_GROUP_ID = "personal"
GLOBAL_RULE_GROUP_ID = "global"

DEFAULT_RULE_NAME = "New rule"
DEFAULT_RULE_COLOR = "#007acc"


class CoreFieldRefNames:
    ID = "System.Id"
    TITLE = "System.Title"
    WORK_ITEM_TYPE = "System.WorkItemType"
    TAGS = "System.Tags"
    ASSIGNED_TO = "System.AssignedTo"
    AREA_PATH = "System.AreaPath"
    ITERATION_PATH = "System.IterationPath"
    STATE = "System.State"


# Fields the engine never writes or triggers on.
EXCLUDED_FIELDS = frozenset(
    {
        "System.Id",
        "System.Rev",
        "System.WorkItemType",
        "System.CreatedDate",
        "System.CreatedBy",
        "System.ChangedDate",
        "System.ChangedBy",
        "System.Watermark",
    }
)

TAG_SEPARATOR = ";"


__all__ = [
    "FormEvent",
    "RuleField",
    "SizeLimits",
    "SettingKey",
    "PERSONAL_RULE_GROUP_ID",
    "GLOBAL_RULE_GROUP_ID",
    "DEFAULT_RULE_NAME",
    "DEFAULT_RULE_COLOR",
    "CoreFieldRefNames",
    "EXCLUDED_FIELDS",
    "TAG_SEPARATOR",
]
