"""
Rule view-model plus the trigger and action kinds it is built from.

Importing this package registers every built-in trigger and action kind.
"""

from .actions import ACTIONS, BaseAction, create_action, get_action_type, register_action
from .rule import Rule, RuleState
from .triggers import TRIGGERS, BaseTrigger, create_trigger, get_trigger_type, register_trigger

__all__ = [
    "ACTIONS",
    "TRIGGERS",
    "BaseAction",
    "BaseTrigger",
    "Rule",
    "RuleState",
    "create_action",
    "create_trigger",
    "get_action_type",
    "get_trigger_type",
    "register_action",
    "register_trigger",
]
