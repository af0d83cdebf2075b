"""
Negotiation between provider and consumer terms.

`negotiate()` is a pure function over two immutable `Terms` values. It never
raises for structural problems; instead it returns one of:

- Negotiated(validator, ...)  the consumer's shape is satisfiable by the provider
- Incompatible(reasons)       both sides are well-formed but do not fit
- Malformed(error)            an envelope or schema is structurally invalid

`covenant.contract.Contract` is the object-oriented wrapper over this result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from covenant.common.logging import log_event
from covenant.compatibility import Incompatibility, NegotiationPolicy, compare
from covenant.errors import ContractError, ErrorKind
from covenant.schemer import OptionsLike, SchemaValidator, Schemer
from covenant.terms import DeclaredSchema, Terms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Negotiated:
    validator: SchemaValidator
    provider: DeclaredSchema
    consumer: DeclaredSchema


@dataclass(frozen=True)
class Incompatible:
    reasons: tuple[Incompatibility, ...]

    @property
    def summary(self) -> str:
        return ", ".join(str(r) for r in self.reasons)


@dataclass(frozen=True)
class Malformed:
    error: ContractError


NegotiationResult = Union[Negotiated, Incompatible, Malformed]


def _extract(terms: Terms, side: str) -> DeclaredSchema:
    try:
        return terms.envelope
    except ContractError as e:
        raise ContractError.wrap(ErrorKind.SCHEMA_EXTRACTION, f"{side} terms have no usable schema envelope", e)


def negotiate(
    provider: Optional[Terms],
    consumer: Optional[Terms],
    *,
    options: OptionsLike = None,
    policy: Optional[NegotiationPolicy] = None,
) -> NegotiationResult:
    """
    Decide whether data described by `provider` satisfies `consumer`.

    On success the returned validator is compiled from the provider's schema,
    since that is the shape runtime data actually has.
    """
    if provider is None or consumer is None:
        reason = Incompatibility("", "both provider and consumer terms are required")
        log_event(logger, "negotiation.incompatible", severity="INFO", reasons=[str(reason)])
        return Incompatible((reason,))

    try:
        provided = _extract(provider, "provider")
        expected = _extract(consumer, "consumer")
        # Compile both sides so a malformed consumer schema is reported, not silently ignored.
        validator = Schemer.get_validator(provided.content, options)
        Schemer.get_validator(expected.content, options)
    except ContractError as e:
        log_event(logger, "negotiation.malformed", severity="WARNING", kind=e.kind.value, error=str(e))
        return Malformed(e)

    reasons = compare(provided.content, expected.content, policy)
    if reasons:
        log_event(
            logger,
            "negotiation.incompatible",
            severity="INFO",
            provider_descriptor=provided.descriptor,
            consumer_descriptor=expected.descriptor,
            reasons=[str(r) for r in reasons],
        )
        return Incompatible(tuple(reasons))

    log_event(
        logger,
        "negotiation.negotiated",
        severity="DEBUG",
        provider_descriptor=provided.descriptor,
        consumer_descriptor=expected.descriptor,
        digest=validator.digest,
    )
    return Negotiated(validator=validator, provider=provided, consumer=expected)


def extract_schema(definition: Any) -> dict[str, Any]:
    """Schema content under a definition's descriptor envelope."""
    return DeclaredSchema.from_definition(definition).content


__all__ = [
    "Incompatible",
    "Malformed",
    "Negotiated",
    "NegotiationResult",
    "extract_schema",
    "negotiate",
]
