from .cache import RuleCache
from .host import RuleEngineHost

__all__ = ["RuleCache", "RuleEngineHost"]
