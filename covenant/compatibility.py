"""
Structural compatibility between a provider schema and a consumer schema.

Rule: every constraint the consumer places on a value must already be
guaranteed by the provider's schema. Concretely:

- Deep-equal schemas are compatible (covers keywords the rule cannot reason about).
- `type`: each provider type must be accepted by the consumer (integer ⊂ number).
- `enum`/`const`: provider values must be a subset of the consumer's values.
- Objects: each consumer-required field must be offered by the provider
  (declared in `properties` or `required`; with `require_guaranteed` it must be
  in the provider's `required`). Shared properties recurse. A closed consumer
  (`additionalProperties: false`) rejects provider-only properties and open
  providers; a consumer `additionalProperties` schema is checked against every
  provider-only property. Optional consumer properties the provider never
  declares are not checked.
- Arrays: `items` recurse; `minItems`/`maxItems`/`uniqueItems` must be at least
  as tight on the provider.
- Numeric and length bounds must be at least as tight on the provider (a
  Draft 4 boolean `exclusiveMinimum`/`exclusiveMaximum` marks the inclusive
  bound as exclusive); `multipleOf` must be a multiple of the consumer's;
  `pattern`/`format` must be identical.
- Provider `anyOf`/`oneOf`: every branch (merged with sibling keywords) must
  satisfy the consumer. Provider `allOf`: branches are merged. Consumer
  `allOf`: every branch must be satisfied; `anyOf`: at least one; `oneOf`:
  exactly one.
- Other consumer keywords (`$ref`, `not`, `if`, ...) must be equal on the
  provider, since their inclusion cannot be decided structurally.

Type-specific keywords are only checked when the provider may produce values
of that type.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Iterable, Mapping, Optional

from covenant.common.config import Settings, get_settings

# Keywords that never constrain a value.
_ANNOTATIONS = frozenset(
    {
        "$schema",
        "$id",
        "$anchor",
        "$comment",
        "$defs",
        "definitions",
        "title",
        "description",
        "default",
        "examples",
        "deprecated",
        "readOnly",
        "writeOnly",
        "contentMediaType",
        "contentEncoding",
    }
)

# Consumer keywords the rule cannot decide inclusion for; only equality passes.
_OPAQUE = (
    "$ref",
    "$dynamicRef",
    "$recursiveRef",
    "not",
    "if",
    "then",
    "else",
    "dependentSchemas",
    "dependentRequired",
    "dependencies",
    "propertyNames",
    "patternProperties",
    "contains",
    "minContains",
    "maxContains",
    "prefixItems",
    "unevaluatedProperties",
    "unevaluatedItems",
)

@dataclass(frozen=True)
class Incompatibility:
    """One reason the provider cannot satisfy the consumer; `path` is a dotted breadcrumb."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} @{self.path}" if self.path else self.message


@dataclass(frozen=True)
class NegotiationPolicy:
    # When True a consumer-required field must be required (not merely declared) by the provider.
    require_guaranteed: bool = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "NegotiationPolicy":
        s = settings or get_settings()
        return cls(require_guaranteed=s.REQUIRE_GUARANTEED_FIELDS)


def json_equal(a: Any, b: Any) -> bool:
    """JSON equality: bools are not numbers, 1 == 1.0, containers compare deeply."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if set(a.keys()) != set(b.keys()):
            return False
        return all(json_equal(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(json_equal(x, y) for x, y in zip(a, b))
    return type(a) is type(b) and a == b


def _json_type(v: Any) -> str:
    if v is None:
        return "null"
    if isinstance(v, bool):
        return "boolean"
    if isinstance(v, int):
        return "integer"
    if isinstance(v, float):
        return "integer" if v.is_integer() else "number"
    if isinstance(v, str):
        return "string"
    if isinstance(v, (list, tuple)):
        return "array"
    return "object"


def _unconstrained(schema: Any) -> bool:
    if schema is True:
        return True
    return isinstance(schema, Mapping) and all(k in _ANNOTATIONS for k in schema)


def _without(schema: Mapping[str, Any], *keys: str) -> dict[str, Any]:
    return {k: v for k, v in schema.items() if k not in keys}


def _merge(base: Any, extra: Any) -> Any:
    """
    Conjunction of two schemas, approximated by a keyword merge:
    `required` is unioned, `properties` are unioned (extra wins on conflicts),
    any other keyword takes the value from `extra`.
    """
    if base is False or extra is False:
        return False
    if base is True:
        return extra
    if extra is True:
        return base
    merged = dict(base)
    for k, v in extra.items():
        if k == "required" and "required" in merged:
            merged["required"] = list(dict.fromkeys([*merged["required"], *v]))
        elif k == "properties" and "properties" in merged:
            merged["properties"] = {**merged["properties"], **v}
        else:
            merged[k] = v
    return merged


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _types(schema: Mapping[str, Any]) -> Optional[set[str]]:
    t = schema.get("type")
    if isinstance(t, str):
        return {t}
    if isinstance(t, list):
        return {str(x) for x in t}
    values = _allowed_values(schema)
    if values is not None:
        return {_json_type(v) for v in values}
    return None


def _allowed_values(schema: Mapping[str, Any]) -> Optional[list[Any]]:
    if "const" in schema:
        return [schema["const"]]
    if isinstance(schema.get("enum"), list):
        return list(schema["enum"])
    return None


def _accepts_type(consumer_types: set[str], t: str) -> bool:
    return t in consumer_types or (t == "integer" and "number" in consumer_types)


def _may_be(provider_types: Optional[set[str]], kinds: Iterable[str]) -> bool:
    if provider_types is None:
        return True
    return bool(provider_types & set(kinds)) or ("number" in kinds and "integer" in provider_types)


def _bound(schema: Mapping[str, Any], inclusive_key: str, exclusive_key: str, *, lower: bool) -> Optional[tuple[Any, bool]]:
    """Tightest (value, exclusive) bound from the inclusive/exclusive keyword pair."""
    candidates: list[tuple[Any, bool]] = []
    inc = schema.get(inclusive_key)
    exc = schema.get(exclusive_key)
    if isinstance(inc, (int, float)) and not isinstance(inc, bool):
        # Draft 4: boolean exclusiveMinimum/exclusiveMaximum flags the inclusive bound.
        candidates.append((inc, exc is True))
    if isinstance(exc, (int, float)) and not isinstance(exc, bool):
        candidates.append((exc, True))
    if not candidates:
        return None
    if lower:
        return max(candidates, key=lambda c: (c[0], c[1]))
    return min(candidates, key=lambda c: (c[0], not c[1]))


def _within(provider: tuple[Any, bool], consumer: tuple[Any, bool], *, lower: bool) -> bool:
    pv, pex = provider
    cv, cex = consumer
    if pv == cv:
        return pex or not cex
    return pv > cv if lower else pv < cv


class _Comparer:
    def __init__(self, policy: NegotiationPolicy) -> None:
        self.policy = policy

    def check(self, p: Any, c: Any, path: str) -> list[Incompatibility]:
        if json_equal(p, c) or _unconstrained(c):
            return []
        if p is False:
            return []
        if c is False:
            return [Incompatibility(path, "consumer accepts no values")]
        if _unconstrained(p):
            return [Incompatibility(path, "provider does not constrain a value the consumer restricts")]
        if not isinstance(p, Mapping) or not isinstance(c, Mapping):
            return [Incompatibility(path, "schema must be a mapping or boolean")]

        if "allOf" in p:
            merged: Any = _without(p, "allOf")
            for branch in p["allOf"]:
                merged = _merge(merged, branch)
            return self.check(merged, c, path)

        for kw in ("anyOf", "oneOf"):
            if kw in p:
                base = _without(p, kw)
                if not _unconstrained(base) and not self.check(base, c, path):
                    return []
                out: list[Incompatibility] = []
                for i, branch in enumerate(p[kw]):
                    out.extend(self.check(_merge(base, branch), c, _join(path, f"{kw}[{i}]")))
                return out

        if "allOf" in c:
            out = self.check(p, _without(c, "allOf"), path)
            for branch in c["allOf"]:
                out.extend(self.check(p, branch, path))
            return out

        for kw in ("anyOf", "oneOf"):
            if kw in c:
                out = self.check(p, _without(c, kw), path)
                if out:
                    return out
                passing = sum(1 for branch in c[kw] if not self.check(p, branch, path))
                if kw == "anyOf" and passing == 0:
                    return [Incompatibility(path, "provider satisfies none of the consumer's anyOf branches")]
                if kw == "oneOf" and passing != 1:
                    return [Incompatibility(path, f"provider satisfies {passing} of the consumer's oneOf branches (expected exactly 1)")]
                return []

        return self._check_keywords(p, c, path)

    def _check_keywords(self, p: Mapping[str, Any], c: Mapping[str, Any], path: str) -> list[Incompatibility]:
        out: list[Incompatibility] = []

        for kw in _OPAQUE:
            if kw in c and not json_equal(p.get(kw), c[kw]):
                out.append(Incompatibility(path, f"cannot verify consumer keyword '{kw}' against provider"))

        p_types = _types(p)
        c_types = _types(c)
        if "type" in c and c_types is not None:
            if p_types is None:
                out.append(
                    Incompatibility(path, f"type mismatch: consumer expects {_fmt_types(c_types)}, provider does not declare a type")
                )
            else:
                for t in sorted(p_types):
                    if not _accepts_type(c_types, t):
                        out.append(
                            Incompatibility(path, f"type mismatch: consumer expects {_fmt_types(c_types)}, provider offers {t}")
                        )

        c_values = _allowed_values(c)
        if c_values is not None:
            p_values = _allowed_values(p)
            if p_values is None:
                out.append(Incompatibility(path, f"consumer restricts values to {c_values!r}, provider does not"))
            else:
                extra = [v for v in p_values if not any(json_equal(v, cv) for cv in c_values)]
                if extra:
                    out.append(Incompatibility(path, f"provider may emit values the consumer rejects: {extra!r}"))

        if _may_be(p_types, ("object",)):
            out.extend(self._check_object(p, c, path))
        if _may_be(p_types, ("array",)):
            out.extend(self._check_array(p, c, path))
        if _may_be(p_types, ("number",)):
            out.extend(self._check_range(p, c, path, "minimum", "exclusiveMinimum", lower=True))
            out.extend(self._check_range(p, c, path, "maximum", "exclusiveMaximum", lower=False))
            out.extend(self._check_multiple_of(p, c, path))
        if _may_be(p_types, ("string",)):
            out.extend(self._check_range(p, c, path, "minLength", "", lower=True))
            out.extend(self._check_range(p, c, path, "maxLength", "", lower=False))
            for kw in ("pattern", "format"):
                if kw in c and p.get(kw) != c[kw]:
                    out.append(Incompatibility(path, f"consumer requires {kw} {c[kw]!r}, provider offers {p.get(kw)!r}"))
        return out

    def _check_object(self, p: Mapping[str, Any], c: Mapping[str, Any], path: str) -> list[Incompatibility]:
        out: list[Incompatibility] = []
        p_props: Mapping[str, Any] = p.get("properties") or {}
        c_props: Mapping[str, Any] = c.get("properties") or {}
        p_required = set(p.get("required") or [])
        c_required = list(c.get("required") or [])
        p_additional = p.get("additionalProperties", True)

        missing: set[str] = set()
        for name in c_required:
            offered = name in p_required if self.policy.require_guaranteed else (name in p_props or name in p_required)
            if not offered:
                missing.add(name)
                reason = "does not guarantee" if name in p_props else "missing"
                out.append(Incompatibility(_join(path, name), f"provider {reason} required field '{name}'"))

        for name, c_sub in c_props.items():
            if name in missing:
                continue
            if name in p_props:
                out.extend(self.check(p_props[name], c_sub, _join(path, name)))
            elif name in c_required or isinstance(p_additional, Mapping):
                out.extend(self.check(p_additional, c_sub, _join(path, name)))

        c_additional = c.get("additionalProperties", True)
        if c_additional is False or (isinstance(c_additional, Mapping) and not _unconstrained(c_additional)):
            c_patterns = list((c.get("patternProperties") or {}).keys())
            for name, p_sub in p_props.items():
                if name in c_props or any(re.search(pat, name) for pat in c_patterns):
                    continue
                if c_additional is False:
                    out.append(Incompatibility(_join(path, name), f"consumer does not accept provider property '{name}'"))
                else:
                    out.extend(self.check(p_sub, c_additional, _join(path, name)))
            if c_additional is False:
                if p_additional is not False:
                    out.append(Incompatibility(path, "consumer forbids additional properties, provider allows them"))
            else:
                out.extend(self.check(p_additional, c_additional, _join(path, "*")))

        out.extend(self._check_range(p, c, path, "minProperties", "", lower=True))
        out.extend(self._check_range(p, c, path, "maxProperties", "", lower=False))
        return out

    def _check_array(self, p: Mapping[str, Any], c: Mapping[str, Any], path: str) -> list[Incompatibility]:
        out: list[Incompatibility] = []
        if "items" in c:
            c_items = c["items"]
            p_items = p.get("items", True)
            if isinstance(c_items, list) or isinstance(p_items, list):
                if not json_equal(p_items, c_items):
                    out.append(Incompatibility(f"{path}[]", "cannot verify tuple-form 'items' against provider"))
            else:
                out.extend(self.check(p_items, c_items, f"{path}[]"))
        out.extend(self._check_range(p, c, path, "minItems", "", lower=True))
        out.extend(self._check_range(p, c, path, "maxItems", "", lower=False))
        if c.get("uniqueItems") is True and p.get("uniqueItems") is not True:
            out.append(Incompatibility(path, "consumer requires unique items, provider does not"))
        return out

    def _check_range(
        self, p: Mapping[str, Any], c: Mapping[str, Any], path: str, inclusive_key: str, exclusive_key: str, *, lower: bool
    ) -> list[Incompatibility]:
        c_bound = _bound(c, inclusive_key, exclusive_key, lower=lower)
        if c_bound is None:
            return []
        p_bound = _bound(p, inclusive_key, exclusive_key, lower=lower)
        label = inclusive_key if not c_bound[1] else exclusive_key
        if p_bound is None:
            return [Incompatibility(path, f"consumer requires {label} {c_bound[0]}, provider is unbounded")]
        if not _within(p_bound, c_bound, lower=lower):
            return [Incompatibility(path, f"consumer requires {label} {c_bound[0]}, provider allows {p_bound[0]}")]
        return []

    def _check_multiple_of(self, p: Mapping[str, Any], c: Mapping[str, Any], path: str) -> list[Incompatibility]:
        cm = c.get("multipleOf")
        if not isinstance(cm, (int, float)) or isinstance(cm, bool):
            return []
        pm = p.get("multipleOf")
        if isinstance(pm, (int, float)) and not isinstance(pm, bool):
            if (Fraction(str(pm)) / Fraction(str(cm))).denominator == 1:
                return []
        elif cm == 1 and p.get("type") == "integer":
            return []
        return [Incompatibility(path, f"consumer requires multipleOf {cm}, provider offers {pm!r}")]


def _fmt_types(types: set[str]) -> str:
    return "|".join(sorted(types))


def compare(provider: Any, consumer: Any, policy: Optional[NegotiationPolicy] = None) -> list[Incompatibility]:
    """
    Return every reason `provider` cannot satisfy `consumer` (empty when compatible).
    """
    return _Comparer(policy or NegotiationPolicy.from_settings()).check(provider, consumer, "")


def is_compatible(provider: Any, consumer: Any, policy: Optional[NegotiationPolicy] = None) -> bool:
    return not compare(provider, consumer, policy)
