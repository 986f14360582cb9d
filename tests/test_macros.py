from __future__ import annotations

import asyncio
import datetime
import logging

from oneclick.macros import (
    MacroResolver,
    OperatorAndOperand,
    get_macro_name,
    parse_operator_and_operand,
    translate_to_field_value,
    validate_macro,
)
from oneclick.macros.utils import add_months, apply_month_arithmetic, start_of_month
from oneclick.platform import FieldType, StaticIterationService
from oneclick.schemas.rule import IdentityRef


def test_parse_operator_and_operand():
    assert parse_operator_and_operand("@startofmonth+2") == OperatorAndOperand("+", 2)
    assert parse_operator_and_operand("@StartOfYear-10") == OperatorAndOperand("-", 10)
    assert parse_operator_and_operand("@startofday") is None
    assert parse_operator_and_operand("@startofday+abc") is None
    assert parse_operator_and_operand("@today+-1") is None


def test_start_of_month_arithmetic_from_fixed_date():
    anchor = start_of_month(datetime.datetime(2023, 1, 15, 13, 45))
    plus_one = apply_month_arithmetic(anchor, parse_operator_and_operand("@startofmonth+1"))
    minus_one = apply_month_arithmetic(anchor, parse_operator_and_operand("@startofmonth-1"))
    assert plus_one == datetime.datetime(2023, 2, 1)
    assert minus_one == datetime.datetime(2022, 12, 1)


def test_add_months_clamps_day_to_target_month():
    assert add_months(datetime.datetime(2023, 1, 31), 1) == datetime.datetime(2023, 2, 28)
    assert add_months(datetime.datetime(2024, 3, 31), -1) == datetime.datetime(2024, 2, 29)


def test_resolve_start_of_month_with_explicit_today():
    resolver = MacroResolver()
    today = datetime.date(2023, 1, 15)
    assert asyncio.run(resolver.resolve("@StartOfMonth+1", today=today)) == "2023-02-01"
    assert asyncio.run(resolver.resolve("@startofmonth-1", today=today)) == "2022-12-01"
    typed = asyncio.run(resolver.resolve("@StartOfMonth", typed=True, today=today))
    assert isinstance(typed, datetime.datetime)
    assert typed.date() == datetime.date(2023, 1, 1)


def test_resolve_day_and_year_macros_use_context_clock(context):
    resolver = MacroResolver(context)
    assert asyncio.run(resolver.resolve("@Today")) == "2023-01-15"
    assert asyncio.run(resolver.resolve("@Today-15")) == "2022-12-31"
    assert asyncio.run(resolver.resolve("@StartOfDay+1")) == "2023-01-16"
    assert asyncio.run(resolver.resolve("@StartOfYear-1")) == "2022-01-01"


def test_resolve_platform_macros(context):
    resolver = MacroResolver(context)
    assert asyncio.run(resolver.resolve("@Me")) == "Jamie Reyes"
    me = asyncio.run(resolver.resolve("@me", typed=True))
    assert isinstance(me, IdentityRef)
    assert me.unique_name == "jamie@fabrikam.com"
    assert asyncio.run(resolver.resolve("@CurrentIteration")) == "Fabrikam\\Sprint 3"
    assert asyncio.run(resolver.resolve("@CurrentSprint")) == "Sprint 3"
    assert asyncio.run(resolver.resolve("@FieldValue=System.Title")) == "Crash on start"
    assert asyncio.run(resolver.resolve("@Any")) == "@Any"


def test_resolver_returns_original_token_on_failure(context, caplog):
    caplog.set_level(logging.WARNING, logger="macros")
    context.iterations = StaticIterationService([])
    resolver = MacroResolver(context)

    assert asyncio.run(resolver.resolve("@CurrentIteration")) == "@CurrentIteration"
    assert asyncio.run(MacroResolver().resolve("@Me")) == "@Me"
    assert any("Failed to resolve macro" in rec.message for rec in caplog.records)


def test_resolve_value_leaves_literals_untouched(context):
    resolver = MacroResolver(context)
    assert asyncio.run(resolver.resolve_value("Active")) == "Active"
    assert asyncio.run(resolver.resolve_value(7)) == 7
    assert asyncio.run(resolver.resolve_value("@NotAMacro")) == "@NotAMacro"


def test_validate_macro():
    assert validate_macro("@StartOfMonth+3").is_valid
    assert validate_macro("@FieldValue=System.Title").is_valid
    assert not validate_macro("@StartOfMonth+x").is_valid
    assert not validate_macro("@FieldValue=").is_valid
    unsupported = validate_macro("@Tomorrow")
    assert not unsupported.is_valid
    assert "Unsupported macro" in (unsupported.error or "")
    assert get_macro_name("@CURRENTSPRINT") == "@currentsprint"
    assert get_macro_name("plain") is None


def test_translate_to_field_value_coerces_literals(context):
    resolver = MacroResolver(context)
    assert asyncio.run(translate_to_field_value("true", FieldType.BOOLEAN, resolver)) is True
    assert asyncio.run(translate_to_field_value("3", FieldType.INTEGER, resolver)) == 3
    assert asyncio.run(translate_to_field_value("2.5", FieldType.DOUBLE, resolver)) == 2.5
    assert asyncio.run(translate_to_field_value("2023-02-01", FieldType.DATETIME, resolver)) == datetime.datetime(2023, 2, 1)
    assert asyncio.run(translate_to_field_value("soon", FieldType.DATETIME, resolver)) == "soon"
    typed = asyncio.run(translate_to_field_value("@Me", FieldType.IDENTITY, resolver))
    assert isinstance(typed, IdentityRef)
