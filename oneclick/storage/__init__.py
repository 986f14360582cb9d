from .base import RuleStorage
from .local import LocalSettingsStore, scoped_key
from .memory import InMemoryRuleStorage
from .rest import RestRuleStorage
from .service import RuleSaveService

__all__ = [
    "RuleStorage",
    "LocalSettingsStore",
    "scoped_key",
    "InMemoryRuleStorage",
    "RestRuleStorage",
    "RuleSaveService",
]
