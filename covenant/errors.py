"""
Error taxonomy for terms resolution, schema compilation and negotiation.

Every failure surfaced by this package is a `ContractError` carrying an
`ErrorKind`, so callers can branch on `err.kind` instead of matching messages.

Propagation rules:
- RESOLUTION / PARSE / SCHEMA_EXTRACTION / COMPILATION are raised immediately.
- Negotiation failure is never raised (see `Contract.is_negotiated`).
- Validation mismatches are returned as `False` by validators; VALIDATION is
  only raised by the explicit `Contract.ensure` path.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    RESOLUTION = "resolution"
    PARSE = "parse"
    SCHEMA_EXTRACTION = "schema_extraction"
    COMPILATION = "compilation"
    NOT_NEGOTIATED = "not_negotiated"
    VALIDATION = "validation"
    INVALID_ARGUMENT = "invalid_argument"


class ContractError(Exception):
    """
    Uniform application error with a kind, an optional cause and a trace.

    `trace` holds context messages, most recent first. The original message is
    always the last entry.
    """

    def __init__(self, kind: ErrorKind, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.kind = ErrorKind(kind)
        self.message = message
        self.cause = cause
        self._trace: list[str] = [message]
        if cause is not None:
            self.__cause__ = cause

    @property
    def trace(self) -> list[str]:
        return list(self._trace)

    def add_trace(self, message: str) -> "ContractError":
        if not isinstance(message, str):
            raise ContractError(
                ErrorKind.INVALID_ARGUMENT,
                f"add_trace expected str, got {type(message).__name__}",
            )
        self._trace.insert(0, message)
        return self

    @classmethod
    def wrap(cls, kind: ErrorKind, message: str, error: BaseException) -> "ContractError":
        """
        Attach context to an existing error.

        A `ContractError` keeps its own kind and gains a trace line; any other
        exception becomes the cause of a new `ContractError` of `kind`.
        """
        if isinstance(error, ContractError):
            return error.add_trace(message)
        return cls(kind, str(error) or type(error).__name__, cause=error).add_trace(message)

    def report(self, verbose: bool = False) -> str:
        lines = [f"[error] {self.kind.value}"]
        lines.extend(self._trace)
        if verbose and self.cause is not None:
            lines.append(f"[caused by] {type(self.cause).__name__}: {self.cause}")
        return "\n".join(lines)

    def __str__(self) -> str:
        if len(self._trace) == 1:
            return self.message
        return " <- ".join(self._trace)

    def __repr__(self) -> str:
        return f"ContractError(kind={self.kind.value!r}, message={self.message!r})"
