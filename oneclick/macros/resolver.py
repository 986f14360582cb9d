"""
Macro resolution for rule action and trigger parameters.

Macros are expanded at execution time so that a value such as
``@StartOfMonth-1`` always reflects the moment the rule runs. Resolution
never raises: on any failure the original token is returned so that the
enclosing action can still write the literal placeholder.
"""

from __future__ import annotations

import datetime
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..core.errors import MacroResolutionError
from ..platform import FieldType, Iteration, RuleContext
from .utils import (
    DATE_FORMAT,
    apply_day_arithmetic,
    apply_month_arithmetic,
    apply_year_arithmetic,
    format_date_for_field,
    parse_operator_and_operand,
    start_of_day,
    start_of_month,
    start_of_year,
)

MACRO_ME = "@me"
MACRO_TODAY = "@today"
MACRO_FIELD_VALUE = "@fieldvalue"
MACRO_ANY = "@any"
MACRO_CURRENT_ITERATION = "@currentiteration"
MACRO_CURRENT_SPRINT = "@currentsprint"
MACRO_START_OF_DAY = "@startofday"
MACRO_START_OF_MONTH = "@startofmonth"
MACRO_START_OF_YEAR = "@startofyear"

SUPPORTED_MACROS = (
    MACRO_ME,
    MACRO_TODAY,
    MACRO_FIELD_VALUE,
    MACRO_ANY,
    MACRO_CURRENT_ITERATION,
    MACRO_START_OF_DAY,
    MACRO_START_OF_MONTH,
    MACRO_START_OF_YEAR,
    MACRO_CURRENT_SPRINT,
)
DATE_MACROS = (MACRO_TODAY, MACRO_START_OF_DAY, MACRO_START_OF_MONTH, MACRO_START_OF_YEAR)

_NAME_SPLIT = re.compile(r"[=+-]")
_TRAILING_ARITHMETIC = re.compile(r"[+-](\d+)$")

logger = logging.getLogger("macros")


@dataclass(frozen=True)
class MacroValidation:
    is_valid: bool
    error: Optional[str] = None


def is_macro(value: Any) -> bool:
    return isinstance(value, str) and value.strip().startswith("@")


def get_macro_name(value: Any) -> Optional[str]:
    """Return the lower-cased macro name of ``value`` if it is a supported macro."""
    if not is_macro(value):
        return None
    name = _NAME_SPLIT.split(value.strip(), maxsplit=1)[0].lower()
    return name if name in SUPPORTED_MACROS else None


def is_any_macro(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() == MACRO_ANY


def validate_macro(token: str) -> MacroValidation:
    if not token or not token.startswith("@"):
        return MacroValidation(False, "Macro must start with @")

    name = _NAME_SPLIT.split(token, maxsplit=1)[0].upper()
    supported = [m.upper() for m in SUPPORTED_MACROS]
    if name not in supported:
        return MacroValidation(
            False,
            f"Unsupported macro: {name}. Supported macros: {', '.join(supported)}",
        )

    if name == MACRO_FIELD_VALUE.upper():
        _, _, ref_name = token.partition("=")
        if not ref_name.strip():
            return MacroValidation(
                False,
                "@FieldValue macro requires field name after = (e.g., @FieldValue=System.AssignedTo)",
            )

    if name.lower() in DATE_MACROS:
        suffix = token[len(name):]
        if suffix and not _TRAILING_ARITHMETIC.fullmatch(suffix):
            return MacroValidation(
                False,
                f"Invalid operand in {name} macro. Expected number after + or -",
            )

    return MacroValidation(True)


class MacroResolver:
    """
    Expand macro tokens into literal or typed field values.

    Date macros only need a clock; ``@Me``, ``@FieldValue`` and the
    iteration macros go through the collaborators of ``context``.
    """

    def __init__(self, context: Optional[RuleContext] = None) -> None:
        self.context = context
        self._handlers: Dict[str, Callable[[str, datetime.datetime, bool], Awaitable[Any]]] = {
            MACRO_TODAY: self._resolve_start_of_day,
            MACRO_START_OF_DAY: self._resolve_start_of_day,
            MACRO_START_OF_MONTH: self._resolve_start_of_month,
            MACRO_START_OF_YEAR: self._resolve_start_of_year,
            MACRO_CURRENT_ITERATION: self._resolve_current_iteration,
            MACRO_CURRENT_SPRINT: self._resolve_current_sprint,
            MACRO_ME: self._resolve_me,
            MACRO_FIELD_VALUE: self._resolve_field_value,
        }

    async def resolve(self, token: str, typed: bool = False, today: Optional[datetime.date] = None) -> Any:
        name = get_macro_name(token)
        if name is None or name == MACRO_ANY:
            return token
        handler = self._handlers[name]
        try:
            return await handler(token.strip(), self._anchor(today), typed)
        except Exception as exc:
            logger.warning("Failed to resolve macro %s: %s", token, exc)
            return token

    async def resolve_value(self, value: Any, typed: bool = False) -> Any:
        """Resolve ``value`` if it is a macro, otherwise return it unchanged."""
        if get_macro_name(value) is None:
            return value
        return await self.resolve(value, typed=typed)

    def _anchor(self, today: Optional[datetime.date]) -> datetime.datetime:
        if isinstance(today, datetime.datetime):
            return today
        if isinstance(today, datetime.date):
            tz = self.context.tz if self.context else None
            return datetime.datetime(today.year, today.month, today.day, tzinfo=tz)
        if self.context is not None:
            return self.context.now()
        return datetime.datetime.now()

    def _require_context(self, token: str) -> RuleContext:
        if self.context is None:
            raise MacroResolutionError(f"{token} needs a work item context")
        return self.context

    async def _resolve_start_of_day(self, token: str, now: datetime.datetime, typed: bool) -> Any:
        value = apply_day_arithmetic(start_of_day(now), parse_operator_and_operand(token))
        return format_date_for_field(value, typed)

    async def _resolve_start_of_month(self, token: str, now: datetime.datetime, typed: bool) -> Any:
        value = apply_month_arithmetic(start_of_month(now), parse_operator_and_operand(token))
        return format_date_for_field(value, typed)

    async def _resolve_start_of_year(self, token: str, now: datetime.datetime, typed: bool) -> Any:
        value = apply_year_arithmetic(start_of_year(now), parse_operator_and_operand(token))
        return format_date_for_field(value, typed)

    async def _current_iterations(self, token: str) -> list[Iteration]:
        context = self._require_context(token)
        return await context.iterations.get_current_iterations(context.project_id, context.team_id)

    async def _resolve_current_iteration(self, token: str, now: datetime.datetime, typed: bool) -> Any:
        iterations = await self._current_iterations(token)
        if not iterations:
            raise MacroResolutionError("No current iteration found")
        iteration = iterations[0]
        return iteration if typed else iteration.path

    async def _resolve_current_sprint(self, token: str, now: datetime.datetime, typed: bool) -> Any:
        iterations = await self._current_iterations(token)
        sprint = next((it for it in iterations if (it.time_frame or "").lower() == "current"), None)
        if sprint is None:
            raise MacroResolutionError("No current sprint found")
        return sprint if typed else sprint.name

    async def _resolve_me(self, token: str, now: datetime.datetime, typed: bool) -> Any:
        context = self._require_context(token)
        identity = await context.identity.get_current_user()
        return identity if typed else identity.display_name

    async def _resolve_field_value(self, token: str, now: datetime.datetime, typed: bool) -> Any:
        context = self._require_context(token)
        _, _, ref_name = token.partition("=")
        ref_name = ref_name.strip()
        if not ref_name:
            raise MacroResolutionError("@FieldValue requires a field reference name")
        return await context.form.get_field_value(ref_name)


def _is_true(value: str) -> bool:
    return value.strip().lower() in {"true", "1"}


async def translate_to_field_value(value: Any, field_type: Optional[FieldType], resolver: MacroResolver) -> Any:
    """
    Turn a configured string into a value comparable with (or writable to) a field.

    Macros are resolved to typed values; literal strings are coerced by
    the field's type and returned unchanged when coercion does not apply.
    """
    if get_macro_name(value) is not None:
        return await resolver.resolve(value, typed=True)
    if not isinstance(value, str):
        return value
    if field_type == FieldType.BOOLEAN:
        return _is_true(value)
    if field_type == FieldType.DATETIME:
        try:
            return datetime.datetime.strptime(value.strip(), DATE_FORMAT)
        except ValueError:
            return value
    if field_type == FieldType.DOUBLE:
        try:
            return float(value)
        except ValueError:
            return value
    if field_type == FieldType.INTEGER:
        try:
            return int(value.strip())
        except ValueError:
            return value
    return value


__all__ = [
    "SUPPORTED_MACROS",
    "DATE_MACROS",
    "MacroValidation",
    "MacroResolver",
    "is_macro",
    "get_macro_name",
    "is_any_macro",
    "validate_macro",
    "translate_to_field_value",
]
