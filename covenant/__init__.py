"""
Provider/consumer interface negotiation.

Usage:

    provider = await Terms.load("ref://provider.yaml", terms_dir)
    consumer = await Terms.load("ref://consumer.yaml", terms_dir)
    contract = Contract(provider, consumer)
    if contract.is_negotiated and not contract.validate(payload):
        print(Schemer.report_validation_errors(contract.errors))
"""

__version__ = "0.1.0"

from covenant.compatibility import Incompatibility, NegotiationPolicy, compare, is_compatible
from covenant.contract import Contract
from covenant.errors import ContractError, ErrorKind
from covenant.negotiation import Incompatible, Malformed, Negotiated, NegotiationResult, negotiate
from covenant.schemer import SchemaOptions, SchemaValidator, Schemer, ValidationIssue
from covenant.terms import DeclaredSchema, Terms

__all__ = [
    "Contract",
    "ContractError",
    "DeclaredSchema",
    "ErrorKind",
    "Incompatibility",
    "Incompatible",
    "Malformed",
    "Negotiated",
    "NegotiationPolicy",
    "NegotiationResult",
    "SchemaOptions",
    "SchemaValidator",
    "Schemer",
    "Terms",
    "ValidationIssue",
    "compare",
    "is_compatible",
    "negotiate",
]
