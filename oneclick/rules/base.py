"""
Attribute overlay and change notification shared by triggers and actions.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

ChangedListener = Callable[[], None]


def _normalize(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip().lower()
    return value


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class RuleArtifact:
    """
    A named trigger or action kind holding an attribute bag.

    Edits go to an overlay on top of the original attributes so the
    original can be compared against (``is_dirty``) or restored
    (``discard_changes``).
    """

    # Registered kind name, set by the registries.
    name: str = ""
    friendly_name: str = ""
    description: str = ""
    required_attributes: Tuple[str, ...] = ()

    def __init__(self, attributes: Optional[Dict[str, Any]] = None) -> None:
        self._original: Dict[str, Any] = {**self.default_attributes(), **dict(attributes or {})}
        self._updates: Dict[str, Any] = {}
        self._changed_listeners: List[ChangedListener] = []

    def default_attributes(self) -> Dict[str, Any]:
        return {}

    def get_friendly_name(self) -> str:
        return self.friendly_name or self.name

    def get_attribute(self, key: str, original: bool = False) -> Any:
        if original:
            return self._original.get(key)
        if key in self._updates:
            return self._updates[key]
        return self._original.get(key)

    def set_attribute(self, key: str, value: Any, notify: bool = True) -> None:
        self._updates[key] = value
        if notify:
            self._emit_changed()

    @property
    def original_attributes(self) -> Dict[str, Any]:
        return dict(self._original)

    @property
    def updated_attributes(self) -> Dict[str, Any]:
        return {**self._original, **self._updates}

    def discard_changes(self) -> None:
        if self._updates:
            self._updates = {}
            self._emit_changed()

    def is_dirty(self) -> bool:
        updated = self.updated_attributes
        keys = set(self._original) | set(updated)
        return any(_normalize(self._original.get(k)) != _normalize(updated.get(k)) for k in keys)

    def is_valid(self) -> bool:
        return all(not is_blank(self.get_attribute(key)) for key in self.required_attributes)

    def add_changed_listener(self, listener: ChangedListener) -> None:
        self._changed_listeners.append(listener)

    def remove_changed_listener(self, listener: ChangedListener) -> None:
        if listener in self._changed_listeners:
            self._changed_listeners.remove(listener)

    def dispose(self) -> None:
        self._changed_listeners = []

    def _emit_changed(self) -> None:
        for listener in list(self._changed_listeners):
            listener()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.updated_attributes!r})"


class ArtifactRegistry:
    """Name-keyed map from kind name to the class implementing it."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._types: Dict[str, type] = {}

    def register(self, name: str) -> Callable[[type], type]:
        def decorator(cls: type) -> type:
            cls.name = name
            self._types[name.lower()] = cls
            return cls

        return decorator

    def get(self, name: str) -> Optional[type]:
        if not name:
            return None
        return self._types.get(name.lower())

    def names(self) -> List[str]:
        return sorted(cls.name for cls in self._types.values())


__all__ = ["RuleArtifact", "ArtifactRegistry", "ChangedListener", "is_blank"]
