"""
Contract: the outcome of negotiating provider terms against consumer terms.

Rule of thumb:
- Terms OWN declarations (what one party provides or accepts).
- Contracts OWN the agreement (whether they fit, and the validator enforcing it).

Negotiation failure is state (`is_negotiated is False`), not an exception.
Structural problems (bad envelope, uncompilable schema) raise immediately.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from covenant.common.logging import log_event
from covenant.compatibility import Incompatibility, NegotiationPolicy
from covenant.errors import ContractError, ErrorKind
from covenant.negotiation import Incompatible, Malformed, Negotiated, NegotiationResult, negotiate
from covenant.schemer import OptionsLike, Schemer
from covenant.terms import DeclaredSchema, Terms

logger = logging.getLogger(__name__)

# debug(message, level): level 1 = outcome, 2 = reasons, 3 = steps, 4 = per-value detail.
DebugHook = Callable[[str, int], None]


class Contract:
    __slots__ = (
        "_provider_terms",
        "_consumer_terms",
        "_validator",
        "_is_negotiated",
        "_result",
        "_name",
        "_debug",
    )

    def __init__(
        self,
        provider_terms: Optional[Terms],
        consumer_terms: Optional[Terms],
        *,
        debug: Optional[DebugHook] = None,
        options: OptionsLike = None,
        policy: Optional[NegotiationPolicy] = None,
    ) -> None:
        self._provider_terms = provider_terms
        self._consumer_terms = consumer_terms
        self._debug = debug
        self._name: Optional[str] = None
        self._validator: Optional[Callable[[Any], bool]] = None
        self._is_negotiated = False

        self._trace("negotiating provider terms against consumer terms", 3)
        result = negotiate(provider_terms, consumer_terms, options=options, policy=policy)
        if isinstance(result, Malformed):
            raise result.error.add_trace("contract negotiation aborted")

        self._result: NegotiationResult = result
        if isinstance(result, Negotiated):
            self._validator = result.validator
            self._is_negotiated = True
            self._trace("contract negotiated successfully", 1)
        else:
            self._trace(f"contract negotiation failed: {result.summary}", 1)
            for reason in result.reasons:
                self._trace(str(reason), 2)

    @classmethod
    def from_terms(
        cls,
        name: str,
        terms_definition: Mapping[str, Any],
        validator: Optional[Callable[[Any], bool]] = None,
        debug: Optional[DebugHook] = None,
        *,
        options: OptionsLike = None,
    ) -> "Contract":
        """
        One-sided contract from a single party's terms.

        When `validator` is supplied it checks `terms_definition` itself (for
        example against a terms meta-schema); a rejected definition raises
        ContractError(VALIDATION) with the validator's report. The contract
        validator is always compiled from the schema under the terms envelope.
        """
        if validator is not None:
            if not callable(validator):
                raise ContractError(
                    ErrorKind.INVALID_ARGUMENT,
                    f"validator for {name} must be callable, got {type(validator).__name__}",
                )
            try:
                accepted = validator(terms_definition)
            except Exception as e:
                raise ContractError.wrap(ErrorKind.VALIDATION, f"validator for {name} failed", e)
            if not accepted:
                report = Schemer.report_validation_errors(getattr(validator, "errors", None))
                raise ContractError(ErrorKind.VALIDATION, f"invalid terms definition for {name}:\n{report}".rstrip())

        try:
            envelope = DeclaredSchema.from_definition(terms_definition)
            validator = Schemer.get_validator(envelope.content, options)
        except ContractError as e:
            raise ContractError.wrap(ErrorKind.SCHEMA_EXTRACTION, f"invalid terms definition for {name}", e)

        contract = cls.__new__(cls)
        contract._provider_terms = None
        contract._consumer_terms = None
        contract._debug = debug
        contract._name = name
        contract._validator = validator
        contract._is_negotiated = True
        contract._result = Negotiated(validator=validator, provider=envelope, consumer=envelope)
        contract._trace(f"single-party contract '{name}' accepted", 1)
        return contract

    def _trace(self, message: str, level: int) -> None:
        if self._debug is not None:
            self._debug(message, level)

    def validate(self, data: Any) -> bool:
        """
        Check `data` against the negotiated shape.

        Returns the validator's result; on False inspect `errors`. Raises
        ContractError(NOT_NEGOTIATED) when negotiation did not succeed.
        """
        if not self._is_negotiated or self._validator is None:
            raise ContractError(ErrorKind.NOT_NEGOTIATED, "cannot validate against an unnegotiated contract")

        self._trace(f"validating {type(data).__name__} value", 4)
        valid = bool(self._validator(data))
        if not valid:
            log_event(
                logger,
                "contract.validation_failed",
                severity="DEBUG",
                contract=self._name,
                error_count=len(self.errors),
            )
        return valid

    def ensure(self, data: Any) -> Any:
        """Like `validate`, but raises ContractError(VALIDATION) with a report on mismatch."""
        if self.validate(data):
            return data
        report = Schemer.report_validation_errors(self.errors)
        raise ContractError(ErrorKind.VALIDATION, f"contract validation failed:\n{report}")

    @property
    def is_negotiated(self) -> bool:
        return self._is_negotiated

    @property
    def provider_terms(self) -> Optional[Terms]:
        return self._provider_terms

    @property
    def consumer_terms(self) -> Optional[Terms]:
        return self._consumer_terms

    @property
    def validator(self) -> Optional[Callable[[Any], bool]]:
        return self._validator

    @property
    def name(self) -> Optional[str]:
        return self._name

    @property
    def result(self) -> NegotiationResult:
        return self._result

    @property
    def reasons(self) -> tuple[Incompatibility, ...]:
        if isinstance(self._result, Incompatible):
            return self._result.reasons
        return ()

    @property
    def errors(self) -> list[Any]:
        """Error side-channel of the validator's most recent call."""
        return list(getattr(self._validator, "errors", None) or [])

    def __repr__(self) -> str:
        return f"Contract(name={self._name!r}, is_negotiated={self._is_negotiated})"
