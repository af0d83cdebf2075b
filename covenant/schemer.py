"""
Schemer: compile JSON Schema documents into validators.

- `Schemer.get_validator(schema, options)` compiles synchronously.
- `Schemer.from_schema(data, options)` asserts a mapping, then compiles.
- `await Schemer.from_file(path, options)` loads a JSON/YAML file, then compiles.
- `Schemer.report_validation_errors(errors)` formats a validator's error list.

Compiled engine validators are cached by a content digest of the schema plus
the options, so two equal schemas share one compilation. Each call still
returns its own `SchemaValidator` wrapper: the `errors` side-channel is never
shared between callers.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import re
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Union

from jsonschema import (
    Draft4Validator,
    Draft6Validator,
    Draft7Validator,
    Draft201909Validator,
    Draft202012Validator,
)
from jsonschema.exceptions import SchemaError, ValidationError
from jsonschema.validators import validator_for
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from covenant.common.config import SchemaDraft, Settings, get_settings
from covenant.common.files import PathLike, load_data_file
from covenant.common.logging import log_event
from covenant.errors import ContractError, ErrorKind

logger = logging.getLogger(__name__)

_DRAFTS = {
    "2020-12": Draft202012Validator,
    "2019-09": Draft201909Validator,
    "7": Draft7Validator,
    "6": Draft6Validator,
    "4": Draft4Validator,
}


class SchemaOptions(BaseModel):
    """
    Compilation options.

    - draft: dialect used when the schema has no `$schema` keyword
    - all_errors: collect every error (True) or stop at the first one
    - format_check: enforce `format` keywords
    - max_errors: cap on recorded errors per call (0 = unbounded)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    draft: SchemaDraft = "2020-12"
    all_errors: bool = True
    format_check: bool = False
    max_errors: int = Field(default=0, ge=0)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SchemaOptions":
        s = settings or get_settings()
        return cls(
            draft=s.SCHEMA_DRAFT,
            all_errors=s.ALL_ERRORS,
            format_check=s.FORMAT_CHECK,
            max_errors=s.MAX_ERRORS,
        )

    def cache_key(self) -> tuple[Any, ...]:
        return (self.draft, self.all_errors, self.format_check, self.max_errors)


OptionsLike = Union[SchemaOptions, Mapping[str, Any], None]


def _coerce_options(options: OptionsLike) -> SchemaOptions:
    if options is None:
        return SchemaOptions.from_settings()
    if isinstance(options, SchemaOptions):
        return options
    if isinstance(options, Mapping):
        try:
            return SchemaOptions.model_validate(dict(options))
        except PydanticValidationError as e:
            raise ContractError(ErrorKind.INVALID_ARGUMENT, f"invalid schema options: {e}", cause=e) from e
    raise ContractError(
        ErrorKind.INVALID_ARGUMENT,
        f"schema options must be a mapping or SchemaOptions, got {type(options).__name__}",
    )


def _json_pointer(parts: Iterable[Any]) -> str:
    out = []
    for p in parts:
        out.append(str(p).replace("~", "~0").replace("/", "~1"))
    return "/" + "/".join(out) if out else ""


def _additional_properties(err: ValidationError) -> list[str]:
    if not isinstance(err.instance, Mapping) or not isinstance(err.schema, Mapping):
        return []
    declared = err.schema.get("properties") or {}
    patterns = list((err.schema.get("patternProperties") or {}).keys())
    extras = []
    for key in err.instance:
        if key in declared:
            continue
        if any(re.search(pat, str(key)) for pat in patterns):
            continue
        extras.append(str(key))
    return extras


def _params_for(err: ValidationError) -> dict[str, Any]:
    kw = err.validator
    if kw == "type":
        return {"type": err.validator_value}
    if kw == "required" and isinstance(err.instance, Mapping):
        missing = [r for r in err.validator_value if r not in err.instance]
        prop = next((r for r in missing if err.message.startswith(repr(r))), missing[0] if missing else None)
        return {"missing_property": prop}
    if kw == "enum":
        return {"allowed_values": list(err.validator_value)}
    if kw == "const":
        return {"allowed_values": [err.validator_value]}
    if kw == "pattern":
        return {"pattern": err.validator_value}
    if kw == "format":
        return {"format": err.validator_value}
    if kw == "additionalProperties":
        extras = _additional_properties(err)
        return {"additional_property": extras[0] if len(extras) == 1 else extras}
    if kw in ("minimum", "maximum", "exclusiveMinimum", "exclusiveMaximum", "minLength", "maxLength",
              "minItems", "maxItems", "multipleOf"):
        return {"limit": err.validator_value}
    return {}


@dataclass(frozen=True)
class ValidationIssue:
    """One validation failure, in the order the engine produced it."""

    path: str
    message: str
    keyword: str
    expected: Any = None
    actual: Any = None
    schema_path: str = ""
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(cls, err: ValidationError) -> "ValidationIssue":
        return cls(
            path=_json_pointer(err.absolute_path),
            message=str(err.message),
            keyword=str(err.validator),
            expected=err.validator_value,
            actual=err.instance,
            schema_path="/".join(str(p) for p in err.absolute_schema_path),
            params=_params_for(err),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "message": self.message,
            "keyword": self.keyword,
            "schema_path": self.schema_path,
            "params": dict(self.params),
        }


class SchemaValidator:
    """
    Callable validator. `validator(data)` returns a bool; after a False result
    `validator.errors` lists the failures. The list is replaced on every call.
    """

    def __init__(self, engine: Any, schema: Any, options: SchemaOptions, digest: str) -> None:
        self._engine = engine
        self.schema = schema
        self.options = options
        self.digest = digest
        self.errors: list[ValidationIssue] = []

    def __call__(self, data: Any) -> bool:
        issues: list[ValidationIssue] = []
        for err in self._engine.iter_errors(data):
            issues.append(ValidationIssue.from_error(err))
            if not self.options.all_errors:
                break
            if self.options.max_errors and len(issues) >= self.options.max_errors:
                break
        self.errors = issues
        return not issues

    def __repr__(self) -> str:
        return f"SchemaValidator(digest={self.digest[:12]!r}, draft={self.options.draft!r})"


def schema_digest(schema: Any) -> str:
    """SHA-256 of the canonical JSON form (sorted keys) of `schema`."""
    canonical = json.dumps(schema, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class _ValidatorCache:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: "OrderedDict[tuple[Any, ...], tuple[Any, Any]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get_or_compile(self, key: tuple[Any, ...], compile_fn) -> tuple[tuple[Any, Any], bool]:
        # Held across compilation so concurrent requests for one schema compile once.
        with self._lock:
            hit = self._entries.get(key)
            if hit is not None:
                self._entries.move_to_end(key)
                self.hits += 1
                return hit, True
            self.misses += 1
            entry = compile_fn()
            self._entries[key] = entry
            limit = get_settings().VALIDATOR_CACHE_SIZE
            while len(self._entries) > limit:
                self._entries.popitem(last=False)
            return entry, False

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def info(self) -> dict[str, int]:
        with self._lock:
            return {"hits": self.hits, "misses": self.misses, "size": len(self._entries)}


_cache = _ValidatorCache()


def _compile(schema: Any, options: SchemaOptions) -> tuple[Any, Any]:
    frozen = copy.deepcopy(schema)
    cls = validator_for(frozen, default=_DRAFTS[options.draft])
    try:
        cls.check_schema(frozen)
    except SchemaError as e:
        where = "/".join(str(p) for p in e.path) or "(root)"
        raise ContractError(
            ErrorKind.COMPILATION,
            f"schema is not valid: {e.message} at {where}",
            cause=e,
        ) from e
    format_checker = cls.FORMAT_CHECKER if options.format_check else None
    return cls(frozen, format_checker=format_checker), frozen


def _levenshtein(a: str, b: str) -> int:
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                cur.append(prev[j - 1])
            else:
                cur.append(1 + min(prev[j], cur[j - 1], prev[j - 1]))
        prev = cur
    return prev[-1]


def find_closest_match(value: Any, allowed: Iterable[Any], threshold: int = 2) -> Optional[str]:
    """
    Closest allowed string by edit distance (ties prefer the closer length),
    or None when nothing is within `threshold`.
    """
    if not isinstance(value, str):
        return None
    best: Optional[str] = None
    best_distance = threshold + 1
    best_len_diff = 0
    for candidate in allowed:
        if not isinstance(candidate, str):
            continue
        distance = _levenshtein(value, candidate)
        len_diff = abs(len(value) - len(candidate))
        if distance < best_distance or (distance == best_distance and best is not None and len_diff < best_len_diff):
            best, best_distance, best_len_diff = candidate, distance, len_diff
    return best


class Schemer:
    @staticmethod
    def get_validator(schema: Any, options: OptionsLike = None) -> SchemaValidator:
        """
        Compile `schema` (a mapping or a boolean schema).

        Raises ContractError(COMPILATION) when the schema is malformed.
        """
        opts = _coerce_options(options)
        if not isinstance(schema, (Mapping, bool)):
            raise ContractError(
                ErrorKind.COMPILATION,
                f"schema must be a mapping or boolean, got {type(schema).__name__}",
            )
        data = dict(schema) if isinstance(schema, Mapping) else schema
        try:
            digest = schema_digest(data)
        except (TypeError, ValueError) as e:
            raise ContractError(ErrorKind.COMPILATION, f"schema is not JSON-serializable: {e}", cause=e) from e
        key = (digest, *opts.cache_key())

        (engine, frozen), hit = _cache.get_or_compile(key, lambda: _compile(data, opts))
        if hit:
            log_event(logger, "schemer.cache_hit", severity="DEBUG", digest=digest)
        else:
            log_event(logger, "schemer.compiled", severity="DEBUG", digest=digest, draft=opts.draft)
        return SchemaValidator(engine, frozen, opts, digest)

    @staticmethod
    def from_schema(schema_data: Any, options: OptionsLike = None) -> SchemaValidator:
        if not isinstance(schema_data, Mapping):
            raise ContractError(
                ErrorKind.INVALID_ARGUMENT,
                f"schema data must be a mapping, got {type(schema_data).__name__}",
            )
        if options is not None and not isinstance(options, (Mapping, SchemaOptions)):
            raise ContractError(
                ErrorKind.INVALID_ARGUMENT,
                f"schema options must be a mapping, got {type(options).__name__}",
            )
        return Schemer.get_validator(schema_data, options)

    @staticmethod
    async def from_file(file: PathLike, options: OptionsLike = None) -> SchemaValidator:
        opts = _coerce_options(options)
        try:
            schema_data = await load_data_file(file)
        except ContractError as e:
            raise ContractError.wrap(ErrorKind.RESOLUTION, f"unable to load schema file '{file}'", e)
        try:
            return Schemer.get_validator(schema_data, opts)
        except ContractError as e:
            raise ContractError.wrap(ErrorKind.COMPILATION, f"schema file '{file}' did not compile", e)

    @staticmethod
    def report_validation_errors(errors: Optional[Iterable[Union[ValidationIssue, ValidationError]]]) -> str:
        """
        Human-readable report, one entry per error in production order:

            - "/user/role" 'admn' is not one of ['admin', 'user']
              ➜ Allowed values: "admin", "user"
              ➜ Received value: "admn"
              ➜ Did you mean: "admin"?
        """
        if not errors:
            return ""
        entries = []
        for raw in errors:
            issue = ValidationIssue.from_error(raw) if isinstance(raw, ValidationError) else raw
            msg = f'- "{issue.path or "(root)"}" {issue.message}'
            params = issue.params or {}
            details = []
            if "type" in params:
                expected = params["type"]
                expected = ", ".join(expected) if isinstance(expected, list) else expected
                details.append(f"  ➜ Expected type: {expected}")
            if params.get("missing_property") is not None:
                details.append(f"  ➜ Missing required field: {params['missing_property']}")
            if "allowed_values" in params:
                allowed = params["allowed_values"]
                details.append("  ➜ Allowed values: " + ", ".join(f'"{v}"' for v in allowed))
                details.append(f'  ➜ Received value: "{issue.actual}"')
                closest = find_closest_match(issue.actual, allowed)
                if closest:
                    details.append(f'  ➜ Did you mean: "{closest}"?')
            if "pattern" in params:
                details.append(f"  ➜ Expected pattern: {params['pattern']}")
            if "format" in params:
                details.append(f"  ➜ Expected format: {params['format']}")
            extra = params.get("additional_property")
            if extra:
                extras = extra if isinstance(extra, list) else [extra]
                details.append("  ➜ Unexpected property: " + ", ".join(extras))
            if details:
                msg += "\n" + "\n".join(details)
            entries.append(msg)
        return "\n".join(entries)

    @staticmethod
    def clear_cache() -> None:
        _cache.clear()

    @staticmethod
    def cache_info() -> dict[str, int]:
        return _cache.info()
