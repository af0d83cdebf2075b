"""
Terms: one party's interface declaration.

A Terms object only describes what a party provides or accepts; deciding
whether two declarations fit together is the job of `covenant.negotiation`.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from covenant.common.files import PathLike, load_data_file, parse_text, resolve_path
from covenant.common.logging import log_event
from covenant.errors import ContractError, ErrorKind

logger = logging.getLogger(__name__)

REF_PREFIX = "ref://"
_PATH_SUFFIXES = (".json", ".yaml", ".yml")


class DeclaredSchema(BaseModel):
    """
    The descriptor envelope of a terms definition, e.g.

        {"provides": {"type": "object", ...}}

    `descriptor` is the single top-level key; `content` is the schema under it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    descriptor: str = Field(..., min_length=1)
    content: dict[str, Any]

    @classmethod
    def from_definition(cls, definition: Any) -> "DeclaredSchema":
        if not isinstance(definition, Mapping):
            raise ContractError(
                ErrorKind.SCHEMA_EXTRACTION,
                f"terms definition must be a mapping, got {type(definition).__name__}",
            )
        keys = list(definition.keys())
        if len(keys) != 1:
            raise ContractError(
                ErrorKind.SCHEMA_EXTRACTION,
                f"terms definition must have exactly one top-level key (descriptor), found {len(keys)}",
            )
        descriptor = keys[0]
        if not isinstance(descriptor, str) or not descriptor.strip():
            raise ContractError(
                ErrorKind.SCHEMA_EXTRACTION,
                f"terms descriptor must be a non-empty string, got {descriptor!r}",
            )
        content = definition[descriptor]
        if not isinstance(content, Mapping):
            raise ContractError(
                ErrorKind.SCHEMA_EXTRACTION,
                f"declared schema under '{descriptor}' must be a mapping, got {type(content).__name__}",
            )
        try:
            return cls(descriptor=descriptor, content=dict(content))
        except PydanticValidationError as e:
            raise ContractError(
                ErrorKind.SCHEMA_EXTRACTION,
                f"declared schema under '{descriptor}' is not a JSON object: {e.errors()[0]['msg']}",
                cause=e,
            ) from e


def _require_mapping(data: Any, source: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ContractError(
            ErrorKind.PARSE,
            f"terms declaration in {source} must be a mapping, got {type(data).__name__}",
        )
    return data


def _looks_like_path(text: str) -> bool:
    return text.lower().endswith(_PATH_SUFFIXES) or os.sep in text or text.startswith(".")


def _existing_file(text: str, directory: Optional[PathLike]) -> Optional[Path]:
    if "\n" in text or text.startswith(("{", "[")):
        return None
    try:
        candidate = resolve_path(text, directory)
    except (ContractError, OSError, ValueError):
        return None
    return candidate if os.path.isfile(candidate) else None


class Terms:
    """
    Wraps one normalized declaration. `definition` is never replaced after
    construction and is returned as-is (treated as immutable by contract).
    """

    __slots__ = ("_definition", "_envelope")

    def __init__(self, definition: Mapping[str, Any]) -> None:
        self._definition = definition
        self._envelope: Optional[DeclaredSchema] = None

    @property
    def definition(self) -> Mapping[str, Any]:
        return self._definition

    @property
    def envelope(self) -> DeclaredSchema:
        """Validated descriptor envelope (extracted on first access)."""
        if self._envelope is None:
            self._envelope = DeclaredSchema.from_definition(self._definition)
        return self._envelope

    @staticmethod
    async def parse(declaration: Any, directory: Optional[PathLike] = None) -> Mapping[str, Any]:
        """
        Normalize a raw declaration into a definition mapping.

        - mapping: returned unchanged
        - "ref://<file>": resolved against `directory`, read and parsed
        - other strings: an existing file path is loaded, anything else is
          parsed as inline JSON / YAML

        Raises ContractError(RESOLUTION) for unresolvable references and
        ContractError(PARSE) for content that is not a declaration mapping.
        """
        if isinstance(declaration, Mapping):
            return declaration

        if not isinstance(declaration, str):
            raise ContractError(
                ErrorKind.PARSE,
                f"invalid terms declaration type: {type(declaration).__name__}",
            )

        text = declaration.strip()
        if not text:
            raise ContractError(ErrorKind.PARSE, "empty terms declaration")
        if text.startswith(REF_PREFIX):
            path = resolve_path(text[len(REF_PREFIX):], directory)
            return await Terms._load_file(path)

        path = await asyncio.to_thread(_existing_file, text, directory)
        if path is not None:
            return await Terms._load_file(path)

        try:
            data = parse_text(text)
        except ContractError as e:
            raise ContractError.wrap(ErrorKind.PARSE, "could not parse terms declaration as JSON or YAML", e)
        if not isinstance(data, Mapping):
            if _looks_like_path(text):
                raise ContractError(ErrorKind.RESOLUTION, f"terms reference not found: {text}")
            raise ContractError(
                ErrorKind.PARSE,
                f"terms declaration must be a mapping, got {type(data).__name__}",
            )
        return data

    @staticmethod
    async def _load_file(path: Path) -> Mapping[str, Any]:
        data = await load_data_file(path)
        log_event(logger, "terms.resolved", severity="DEBUG", file_path=str(path))
        return _require_mapping(data, str(path))

    @classmethod
    async def load(cls, declaration: Any, directory: Optional[PathLike] = None) -> "Terms":
        return cls(await cls.parse(declaration, directory))

    def __repr__(self) -> str:
        keys = list(self._definition.keys()) if isinstance(self._definition, Mapping) else self._definition
        return f"Terms({keys!r})"
