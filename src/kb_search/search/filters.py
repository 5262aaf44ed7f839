"""
Metadata filter parsing and translation.

Filters arrive either as a compact string (``category=microflows, version in
(9, 10)``) or as a mapping, and are normalized into :class:`MetadataFilter`
conditions. Conditions can be evaluated in-process against a metadata dict
(lexical post-filtering) or rendered as a vector-service filter document.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Literal, Mapping, Sequence


FilterOperator = Literal["eq", "ne", "gt", "gte", "lt", "lte", "in", "contains"]
Scalar = str | bool | int | float

FILTERABLE_FIELDS: frozenset[str] = frozenset({"title", "category", "source", "version"})

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")
_IN_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s+in\s+(.+?)\s*$", flags=re.IGNORECASE)
_OP_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*(<=|>=|!=|=|<|>|~|:)\s*(.+?)\s*$")

_SYMBOL_TO_OPERATOR: dict[str, FilterOperator] = {
    "=": "eq",
    ":": "eq",
    "!=": "ne",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
    "~": "contains",
}
_MONGO_TO_OPERATOR: dict[str, FilterOperator] = {
    "$eq": "eq",
    "$ne": "ne",
    "$gt": "gt",
    "$gte": "gte",
    "$lt": "lt",
    "$lte": "lte",
    "$in": "in",
}
_OPERATOR_TO_MONGO = {operator: key for key, operator in _MONGO_TO_OPERATOR.items()}


class MetadataFilterParseError(ValueError):
    """Raised when metadata filter syntax is invalid."""


@dataclass(frozen=True)
class MetadataFilter:
    """Normalized metadata filter condition."""

    field: str
    operator: FilterOperator
    value: Scalar | list[Scalar]

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        actual = metadata.get(self.field)
        if actual is None:
            return self.operator == "ne"

        if self.operator in {"gt", "gte", "lt", "lte"}:
            try:
                number = float(actual)
            except (TypeError, ValueError):
                return False
            target = float(self.value)  # type: ignore[arg-type]
            return {
                "gt": number > target,
                "gte": number >= target,
                "lt": number < target,
                "lte": number <= target,
            }[self.operator]

        actual_text = _as_text(actual)
        if self.operator == "contains":
            return _as_text(self.value) in actual_text
        if self.operator == "in":
            return actual_text in {_as_text(item) for item in self.value}  # type: ignore[union-attr]
        if self.operator == "ne":
            return actual_text != _as_text(self.value)
        return actual_text == _as_text(self.value)

    def to_vector_filter(self) -> dict[str, Any]:
        """Render as a Pinecone-style ``{field: {"$op": value}}`` clause."""
        if self.operator == "contains":
            raise MetadataFilterParseError(
                f"Substring filters are not supported by the vector index: {self.field!r}"
            )
        value: Any = self.value
        # Stored metadata fields are strings, so equality-style values are sent as strings.
        if self.operator == "in":
            value = [_as_stored(item) for item in self.value]  # type: ignore[union-attr]
        elif self.operator in {"eq", "ne"}:
            value = _as_stored(self.value)
        return {self.field: {_OPERATOR_TO_MONGO[self.operator]: value}}


def _as_stored(value: Any) -> Any:
    if isinstance(value, bool) or isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().lower()


def supported_filter_syntax() -> str:
    """Return a short help text for filter syntax."""
    return (
        "Supported filter syntax: "
        "`field=value`, `field!=value`, `field>=number`, `field<=number`, "
        "`field>number`, `field<number`, `field in (a, b, c)`, `field~substring`; "
        "combine with comma or `and`. "
        f"Fields: {', '.join(sorted(FILTERABLE_FIELDS))}."
    )


def coerce_filters(
    filters: str | Mapping[str, Any] | Sequence[MetadataFilter] | None,
    *,
    allowed_fields: frozenset[str] | set[str] | None = FILTERABLE_FIELDS,
) -> list[MetadataFilter]:
    """Accept any supported filter form and return normalized conditions."""
    if filters is None:
        return []
    if isinstance(filters, str):
        return parse_metadata_filters(filters, allowed_fields=allowed_fields)
    if isinstance(filters, Mapping):
        return _parse_mapping(filters, allowed_fields=allowed_fields)

    parsed = list(filters)
    for condition in parsed:
        if not isinstance(condition, MetadataFilter):
            raise MetadataFilterParseError(f"Unsupported filter condition: {condition!r}")
        _validate_field(condition.field, allowed_fields=allowed_fields)
    return parsed


def build_vector_filter(conditions: Sequence[MetadataFilter]) -> dict[str, Any] | None:
    """Combine conditions into one vector-service filter, or ``None`` when empty."""
    if not conditions:
        return None
    clauses = [condition.to_vector_filter() for condition in conditions]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def matches_all(conditions: Sequence[MetadataFilter], metadata: Mapping[str, Any]) -> bool:
    return all(condition.matches(metadata) for condition in conditions)


def parse_metadata_filters(
    raw_filters: str | None,
    *,
    allowed_fields: frozenset[str] | set[str] | None = None,
) -> list[MetadataFilter]:
    """Parse a raw filter string into normalized metadata conditions."""
    if raw_filters is None or not raw_filters.strip():
        return []
    return [
        _parse_condition(condition, allowed_fields=allowed_fields)
        for condition in _split_conditions(raw_filters)
    ]


def _parse_mapping(
    raw: Mapping[str, Any],
    *,
    allowed_fields: frozenset[str] | set[str] | None,
) -> list[MetadataFilter]:
    parsed: list[MetadataFilter] = []
    for field, spec in raw.items():
        _validate_field(field, allowed_fields=allowed_fields)
        if isinstance(spec, Mapping):
            for key, value in spec.items():
                operator = _MONGO_TO_OPERATOR.get(key)
                if operator is None:
                    raise MetadataFilterParseError(
                        f"Unsupported operator {key!r} for field {field!r}"
                    )
                if operator == "in" and (not isinstance(value, list) or not value):
                    raise MetadataFilterParseError(f"`$in` for {field!r} needs a non-empty list")
                parsed.append(MetadataFilter(field=field, operator=operator, value=value))
        elif isinstance(spec, (list, tuple)):
            if not spec:
                raise MetadataFilterParseError(f"`in` filter for {field!r} has no values")
            parsed.append(MetadataFilter(field=field, operator="in", value=list(spec)))
        else:
            parsed.append(MetadataFilter(field=field, operator="eq", value=spec))
    return parsed


def _parse_condition(
    condition: str, *, allowed_fields: frozenset[str] | set[str] | None
) -> MetadataFilter:
    text = condition.strip()
    if not text:
        raise MetadataFilterParseError("Empty filter condition.")

    in_match = _IN_RE.match(text)
    if in_match:
        field = in_match.group(1)
        _validate_field(field, allowed_fields=allowed_fields)
        values = _parse_list_value(in_match.group(2))
        if not values:
            raise MetadataFilterParseError(f"`in` filter has no values: {text!r}")
        return MetadataFilter(field=field, operator="in", value=values)

    op_match = _OP_RE.match(text)
    if not op_match:
        raise MetadataFilterParseError(f"Invalid filter syntax: {text!r}")

    field, symbol, raw_value = op_match.groups()
    _validate_field(field, allowed_fields=allowed_fields)
    value = _parse_scalar_value(raw_value)
    operator = _SYMBOL_TO_OPERATOR[symbol]
    if operator in {"gt", "gte", "lt", "lte"} and not isinstance(value, (int, float)):
        raise MetadataFilterParseError(f"Operator `{symbol}` requires a numeric value: {text!r}")
    return MetadataFilter(field=field, operator=operator, value=value)


def _validate_field(field: str, *, allowed_fields: frozenset[str] | set[str] | None) -> None:
    if not _FIELD_RE.match(field):
        raise MetadataFilterParseError(f"Invalid field name: {field!r}")
    if allowed_fields is not None and field not in allowed_fields:
        allowed = ", ".join(sorted(allowed_fields)) if allowed_fields else "<none>"
        raise MetadataFilterParseError(
            f"Unknown metadata field {field!r}. Allowed fields: {allowed}"
        )


def _split_conditions(raw: str) -> list[str]:
    """Split on top-level commas and ``and`` keywords, respecting quotes and brackets."""
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    depth = 0
    i = 0
    while i < len(raw):
        ch = raw[i]
        if quote is not None:
            if ch == quote:
                quote = None
        elif ch in {"'", '"'}:
            quote = ch
        elif ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(depth - 1, 0)
        elif depth == 0 and ch == ",":
            _flush_part(parts, current)
            i += 1
            continue
        elif depth == 0 and _is_and_keyword(raw, i):
            _flush_part(parts, current)
            i += 3
            continue
        current.append(ch)
        i += 1

    _flush_part(parts, current)
    return parts


def _is_and_keyword(raw: str, i: int) -> bool:
    return (
        raw[i : i + 3].lower() == "and"
        and (i == 0 or raw[i - 1].isspace())
        and (i + 3 == len(raw) or raw[i + 3].isspace())
    )


def _flush_part(parts: list[str], current: list[str]) -> None:
    text = "".join(current).strip()
    if text:
        parts.append(text)
    current.clear()


def _parse_list_value(raw_value: str) -> list[Scalar]:
    text = raw_value.strip()
    if (text.startswith("(") and text.endswith(")")) or (
        text.startswith("[") and text.endswith("]")
    ):
        text = text[1:-1]
    if not text.strip():
        return []
    return [_parse_scalar_value(item) for item in _split_conditions(text)]


def _parse_scalar_value(raw_value: str) -> Scalar:
    text = raw_value.strip()
    if not text:
        raise MetadataFilterParseError("Missing filter value.")
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {"'", '"'}:
        return text[1:-1]

    lower = text.lower()
    if lower == "true":
        return True
    if lower == "false":
        return False
    if _NUMBER_RE.match(text):
        return float(text) if "." in text else int(text)
    return text
