from __future__ import annotations

import asyncio

import pytest

from covenant.contract import Contract
from covenant.errors import ContractError, ErrorKind
from covenant.negotiation import Incompatible, Negotiated
from covenant.schemer import Schemer
from covenant.terms import Terms

from tests.conftest import USER_SCHEMA


def _pair(provider_schema, consumer_schema):
    return Terms({"provides": provider_schema}), Terms({"accepts": consumer_schema})


def test_user_contract_negotiates_and_validates():
    provider, consumer = _pair(USER_SCHEMA, {"type": "object", "required": ["id"]})
    contract = Contract(provider, consumer)

    assert contract.is_negotiated is True
    assert contract.provider_terms is provider
    assert contract.consumer_terms is consumer
    assert isinstance(contract.result, Negotiated)
    assert contract.reasons == ()

    assert contract.validate({"id": "abc"}) is True
    assert contract.errors == []
    assert contract.validate({}) is False
    assert contract.errors
    assert any("id" in e.message for e in contract.errors)


@pytest.mark.parametrize(
    "schema, data",
    [
        (USER_SCHEMA, {"id": "x", "other": [1, 2]}),
        ({"type": "array", "items": {"type": "integer"}}, [1, 2, 3]),
        ({"type": "string", "minLength": 2}, "ok"),
        ({"enum": ["a", "b"]}, "b"),
    ],
)
def test_schema_negotiated_with_itself_accepts_conforming_data(schema, data):
    contract = Contract(*_pair(schema, schema))
    assert contract.is_negotiated
    assert contract.validate(data) is True


@pytest.mark.parametrize(
    "schema, data",
    [
        (USER_SCHEMA, {"id": 7}),
        ({"type": "array", "items": {"type": "integer"}}, [1, "two"]),
        ({"type": "string", "minLength": 2}, "x"),
        ({"enum": ["a", "b"]}, "c"),
    ],
)
def test_violating_data_is_rejected_with_errors(schema, data):
    contract = Contract(*_pair(schema, schema))
    assert contract.validate(data) is False
    assert len(contract.errors) > 0


def test_consumer_requiring_absent_field_does_not_negotiate():
    contract = Contract(*_pair(USER_SCHEMA, {"type": "object", "required": ["email"]}))
    assert contract.is_negotiated is False
    assert contract.validator is None
    assert isinstance(contract.result, Incompatible)
    assert [r.path for r in contract.reasons] == ["email"]


def test_validate_on_unnegotiated_contract_raises():
    contract = Contract(*_pair(USER_SCHEMA, {"type": "object", "required": ["email"]}))
    with pytest.raises(ContractError) as ei:
        contract.validate({"id": "abc", "email": "a@b.c"})
    assert ei.value.kind is ErrorKind.NOT_NEGOTIATED


def test_missing_terms_do_not_negotiate():
    contract = Contract(Terms({"provides": USER_SCHEMA}), None)
    assert contract.is_negotiated is False
    with pytest.raises(ContractError):
        contract.validate({})


def test_malformed_envelope_raises():
    with pytest.raises(ContractError) as ei:
        Contract(Terms({"provides": USER_SCHEMA}), Terms({}))
    assert ei.value.kind is ErrorKind.SCHEMA_EXTRACTION
    assert ei.value.trace[0] == "contract negotiation aborted"


def test_uncompilable_schema_raises():
    with pytest.raises(ContractError) as ei:
        Contract(*_pair({"type": "integer", "minimum": "low"}, {"type": "integer"}))
    assert ei.value.kind is ErrorKind.COMPILATION


def test_ensure_returns_data_or_raises_with_report():
    contract = Contract(*_pair(USER_SCHEMA, {"type": "object", "required": ["id"]}))
    payload = {"id": "abc"}
    assert contract.ensure(payload) is payload
    with pytest.raises(ContractError) as ei:
        contract.ensure({})
    assert ei.value.kind is ErrorKind.VALIDATION
    assert "Missing required field: id" in str(ei.value)


def test_debug_hook_receives_outcome_and_reasons():
    calls = []
    Contract(
        *_pair(USER_SCHEMA, {"type": "object", "required": ["email"]}),
        debug=lambda message, level: calls.append((level, message)),
    )
    levels = [lvl for lvl, _ in calls]
    assert 1 in levels
    assert (2, "provider missing required field 'email' @email") in calls
    assert any(msg.startswith("contract negotiation failed") for lvl, msg in calls if lvl == 1)


def test_from_terms_compiles_the_declared_schema():
    contract = Contract.from_terms("users", {"provides": USER_SCHEMA})
    assert contract.is_negotiated is True
    assert contract.name == "users"
    assert contract.provider_terms is None and contract.consumer_terms is None
    assert contract.validate({"id": "x"}) is True
    assert contract.validate({"id": None}) is False
    assert contract.errors[0].path == "/id"


def test_from_terms_checks_definition_with_supplied_validator():
    meta = Schemer.get_validator({"type": "object", "required": ["provides"]})
    contract = Contract.from_terms("users", {"provides": USER_SCHEMA}, meta)
    assert contract.validator is not meta
    assert contract.validate({"id": "x"}) is True
    assert contract.validate({"id": 1}) is False

    with pytest.raises(ContractError) as ei:
        Contract.from_terms("orders", {"accepts": {"type": "object"}}, meta)
    assert ei.value.kind is ErrorKind.VALIDATION
    assert str(ei.value).startswith("invalid terms definition for orders:")
    assert "Missing required field: provides" in str(ei.value)


def test_from_terms_validator_sees_the_terms_not_the_data():
    seen = []

    def record(definition):
        seen.append(definition)
        return True

    definition = {"provides": {"type": "string"}}
    contract = Contract.from_terms("names", definition, record)
    assert seen == [definition]
    assert contract.validate("text") is True
    assert contract.validate(3) is False
    assert seen == [definition]


def test_from_terms_rejecting_or_failing_validator():
    with pytest.raises(ContractError) as ei:
        Contract.from_terms("strict", {"provides": {"type": "string"}}, lambda d: False)
    assert ei.value.kind is ErrorKind.VALIDATION
    assert str(ei.value) == "invalid terms definition for strict:"

    def explode(definition):
        raise KeyError("provides")

    with pytest.raises(ContractError) as ei:
        Contract.from_terms("broken-check", {"provides": {}}, explode)
    assert ei.value.kind is ErrorKind.VALIDATION
    assert isinstance(ei.value.cause, KeyError)
    assert ei.value.trace[0] == "validator for broken-check failed"


def test_from_terms_rejects_bad_input():
    with pytest.raises(ContractError) as ei:
        Contract.from_terms("broken", {"a": {}, "b": {}})
    assert ei.value.kind is ErrorKind.SCHEMA_EXTRACTION
    assert ei.value.trace[0] == "invalid terms definition for broken"

    with pytest.raises(ContractError) as ei:
        Contract.from_terms("bad-schema", {"provides": {"type": 12}})
    assert ei.value.kind is ErrorKind.COMPILATION

    with pytest.raises(ContractError) as ei:
        Contract.from_terms("not-callable", {"provides": {}}, validator="nope")
    assert ei.value.kind is ErrorKind.INVALID_ARGUMENT


def test_contract_from_files(terms_dir):
    async def _load():
        provider = await Terms.load("ref://provider.yaml", terms_dir)
        consumer = await Terms.load("ref://consumer.json", terms_dir)
        return Contract(provider, consumer)

    contract = asyncio.run(_load())
    assert contract.is_negotiated
    assert contract.validate({"id": "abc"})
    assert not contract.validate({"id": 3})


def test_yaml_terms_with_non_string_keys_raise_extraction_error(tmp_path):
    (tmp_path / "provider.yaml").write_text("provides:\n  1: foo\n", encoding="utf-8")
    provider = asyncio.run(Terms.load("ref://provider.yaml", tmp_path))
    with pytest.raises(ContractError) as ei:
        Contract(provider, Terms({"accepts": {}}))
    assert ei.value.kind is ErrorKind.SCHEMA_EXTRACTION
    assert ei.value.trace[:2] == ["contract negotiation aborted", "provider terms have no usable schema envelope"]
