"""
Parsing and date arithmetic helpers for macro tokens.

A macro token looks like ``@StartOfMonth+2``: a name followed by an
optional operator (``+`` or ``-``) and an integer operand.
"""

from __future__ import annotations

import calendar
import datetime
import re
from dataclasses import dataclass
from typing import Optional, Union

ALLOWED_OPERATORS = ("-", "+")
DATE_FORMAT = "%Y-%m-%d"

_INTEGER = re.compile(r"^\d+$")


@dataclass(frozen=True)
class OperatorAndOperand:
    operator: str
    operand: int

    @property
    def signed(self) -> int:
        return -self.operand if self.operator == "-" else self.operand


def parse_operator_and_operand(token: str) -> Optional[OperatorAndOperand]:
    """
    Extract operator and operand from a macro token.

    ``"@startofmonth-2"`` gives ``OperatorAndOperand("-", 2)``; a token
    without an operator, or whose remainder after the first operator is
    not an integer, gives ``None``.
    """
    if not isinstance(token, str):
        return None
    operator = ""
    operator_index = -1
    for sep in ALLOWED_OPERATORS:
        index = token.find(sep)
        if index != -1 and (operator_index == -1 or index < operator_index):
            operator_index = index
            operator = sep
    if not operator:
        return None
    operand = token[operator_index + 1:].strip()
    if not _INTEGER.match(operand):
        return None
    return OperatorAndOperand(operator=operator, operand=int(operand))


def start_of_day(value: datetime.datetime) -> datetime.datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(value: datetime.datetime) -> datetime.datetime:
    return start_of_day(value).replace(day=1)


def start_of_year(value: datetime.datetime) -> datetime.datetime:
    return start_of_day(value).replace(month=1, day=1)


def add_months(value: datetime.datetime, months: int) -> datetime.datetime:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_years(value: datetime.datetime, years: int) -> datetime.datetime:
    return add_months(value, years * 12)


def apply_day_arithmetic(value: datetime.datetime, op: Optional[OperatorAndOperand]) -> datetime.datetime:
    if op is None:
        return value
    return value + datetime.timedelta(days=op.signed)


def apply_month_arithmetic(value: datetime.datetime, op: Optional[OperatorAndOperand]) -> datetime.datetime:
    if op is None:
        return value
    return add_months(value, op.signed)


def apply_year_arithmetic(value: datetime.datetime, op: Optional[OperatorAndOperand]) -> datetime.datetime:
    if op is None:
        return value
    return add_years(value, op.signed)


def format_date_for_field(value: datetime.datetime, typed: bool) -> Union[str, datetime.datetime]:
    return value if typed else value.strftime(DATE_FORMAT)


__all__ = [
    "OperatorAndOperand",
    "parse_operator_and_operand",
    "start_of_day",
    "start_of_month",
    "start_of_year",
    "add_months",
    "add_years",
    "apply_day_arithmetic",
    "apply_month_arithmetic",
    "apply_year_arithmetic",
    "format_date_for_field",
    "DATE_FORMAT",
]
