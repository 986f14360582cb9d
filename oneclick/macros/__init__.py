"""
Macro tokens (``@Today``, ``@StartOfMonth+1``, ``@CurrentIteration`` ...)
expanded into field values when a rule runs.
"""

from .resolver import (
    DATE_MACROS,
    SUPPORTED_MACROS,
    MacroResolver,
    MacroValidation,
    get_macro_name,
    is_any_macro,
    is_macro,
    translate_to_field_value,
    validate_macro,
)
from .utils import OperatorAndOperand, parse_operator_and_operand

__all__ = [
    "DATE_MACROS",
    "SUPPORTED_MACROS",
    "MacroResolver",
    "MacroValidation",
    "OperatorAndOperand",
    "get_macro_name",
    "is_any_macro",
    "is_macro",
    "parse_operator_and_operand",
    "translate_to_field_value",
    "validate_macro",
]
