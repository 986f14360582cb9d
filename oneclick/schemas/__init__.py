from .events import (
    EventArgs,
    WorkItemChangedArgs,
    WorkItemFieldChangedArgs,
    WorkItemLoadedArgs,
    parse_event_args,
)
from .rule import (
    ActionRecord,
    IdentityRef,
    LocalRulesData,
    RuleGroupRecord,
    RuleOrderData,
    RuleRecord,
    TriggerRecord,
)

__all__ = [
    "EventArgs",
    "WorkItemChangedArgs",
    "WorkItemFieldChangedArgs",
    "WorkItemLoadedArgs",
    "parse_event_args",
    "ActionRecord",
    "IdentityRef",
    "LocalRulesData",
    "RuleGroupRecord",
    "RuleOrderData",
    "RuleRecord",
    "TriggerRecord",
]
