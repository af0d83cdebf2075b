from __future__ import annotations

import pytest

from covenant.errors import ContractError, ErrorKind


def test_kind_and_message():
    e = ContractError(ErrorKind.PARSE, "bad yaml")
    assert e.kind is ErrorKind.PARSE
    assert str(e) == "bad yaml"
    assert e.trace == ["bad yaml"]
    assert e.cause is None


def test_kind_accepts_string_values():
    assert ContractError("compilation", "x").kind is ErrorKind.COMPILATION


def test_trace_is_most_recent_first():
    e = ContractError(ErrorKind.RESOLUTION, "no such file 'a.yaml'")
    assert e.add_trace("loading provider") is e
    e.add_trace("negotiating orders")
    assert e.trace == ["negotiating orders", "loading provider", "no such file 'a.yaml'"]
    assert str(e) == "negotiating orders <- loading provider <- no such file 'a.yaml'"


def test_trace_property_is_a_copy():
    e = ContractError(ErrorKind.PARSE, "x")
    e.trace.append("mutated")
    assert e.trace == ["x"]


def test_add_trace_rejects_non_strings():
    e = ContractError(ErrorKind.PARSE, "x")
    with pytest.raises(ContractError) as ei:
        e.add_trace(42)
    assert ei.value.kind is ErrorKind.INVALID_ARGUMENT


def test_wrap_foreign_exception_keeps_cause():
    cause = ValueError("boom")
    e = ContractError.wrap(ErrorKind.COMPILATION, "compiling orders", cause)
    assert e.kind is ErrorKind.COMPILATION
    assert e.cause is cause
    assert e.__cause__ is cause
    assert e.trace == ["compiling orders", "boom"]


def test_wrap_contract_error_keeps_kind():
    original = ContractError(ErrorKind.RESOLUTION, "missing")
    wrapped = ContractError.wrap(ErrorKind.PARSE, "context", original)
    assert wrapped is original
    assert wrapped.kind is ErrorKind.RESOLUTION
    assert wrapped.trace[0] == "context"


def test_report():
    e = ContractError(ErrorKind.PARSE, "bad", cause=KeyError("k")).add_trace("loading terms")
    assert e.report() == "[error] parse\nloading terms\nbad"
    assert e.report(verbose=True).endswith("[caused by] KeyError: 'k'")
