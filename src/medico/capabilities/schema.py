"""Schema descriptors for capability inputs and outputs.

A ``Schema`` is an ordered tuple of ``Field`` definitions. Descriptors are pure
data: they are built once at startup (in Python or from TOML/JSON dicts) and
shared read-only by every invocation.

Validation never raises; it returns a list of ``Violation`` records so the
normalizer can tell "only optional fields are missing" apart from "a required
field is missing or has the wrong type".
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

_NO_DEFAULT: Any = object()


class FieldKind(str, Enum):
    """Value kind of a field."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ENUM = "enum"
    OBJECT = "object"
    LIST = "list"


class ViolationKind(str, Enum):
    """Why a value failed validation."""

    MISSING = "missing"
    TYPE = "type"
    CONSTRAINT = "constraint"


@dataclass(frozen=True, slots=True)
class Violation:
    """One validation problem, located by a dotted path (``mcqs[0].options``)."""

    path: str
    kind: ViolationKind
    message: str
    optional: bool = False

    def __str__(self) -> str:
        return f"{self.path or '<root>'}: {self.message}"


@dataclass(frozen=True)
class Field:
    """A single named field definition.

    ``fields`` is used by OBJECT fields, ``item`` by LIST fields. List item
    descriptors are nameless fields. ``default`` is only applied to input
    values, before validation.
    """

    name: str
    kind: FieldKind
    required: bool = True
    description: str = ""
    fields: tuple[Field, ...] = ()
    item: Field | None = None
    choices: tuple[str, ...] = ()
    min_length: int | None = None
    max_length: int | None = None
    minimum: float | None = None
    maximum: float | None = None
    default: Any = field(default=_NO_DEFAULT, compare=False)

    def __post_init__(self) -> None:
        if self.kind is FieldKind.LIST and self.item is None:
            raise ValueError(f"list field '{self.name}' needs an item descriptor")
        if self.kind is FieldKind.ENUM and not self.choices:
            raise ValueError(f"enum field '{self.name}' needs choices")

    @property
    def has_default(self) -> bool:
        return self.default is not _NO_DEFAULT

    def optional(self) -> Field:
        """Return a copy of this field marked optional."""
        return replace(self, required=False)

    def get(self, name: str) -> Field | None:
        """Look up a nested field of an OBJECT field."""
        for child in self.fields:
            if child.name == name:
                return child
        return None

    @classmethod
    def from_dict(cls, name: str, spec: str | Mapping[str, Any]) -> Field:
        """Build a field from a plain dict (or a type shorthand string).

        Shorthand: ``"string"`` is a required string, ``"string?"`` optional.
        Full form keys: ``type``, ``required``, ``description``, ``fields``
        (for objects), ``items`` (for lists), ``choices``, ``min_length``,
        ``max_length``, ``minimum``, ``maximum``, ``default``.
        """
        if isinstance(spec, str):
            required = not spec.endswith("?")
            return cls(name=name, kind=FieldKind(spec.rstrip("?")), required=required)

        kind = FieldKind(spec["type"])
        nested = tuple(
            cls.from_dict(child_name, child_spec)
            for child_name, child_spec in (spec.get("fields") or {}).items()
        )
        item = cls.from_dict("", spec["items"]) if "items" in spec else None
        return cls(
            name=name,
            kind=kind,
            required=spec.get("required", True),
            description=spec.get("description", ""),
            fields=nested,
            item=item,
            choices=tuple(spec.get("choices", ())),
            min_length=spec.get("min_length"),
            max_length=spec.get("max_length"),
            minimum=spec.get("minimum"),
            maximum=spec.get("maximum"),
            default=spec.get("default", _NO_DEFAULT),
        )

    def to_json_schema(self) -> dict[str, Any]:
        """Render this field as a JSON Schema fragment."""
        result: dict[str, Any]
        match self.kind:
            case FieldKind.OBJECT:
                result = _object_json_schema(self.fields)
            case FieldKind.LIST:
                assert self.item is not None
                result = {"type": "array", "items": self.item.to_json_schema()}
                if self.min_length is not None:
                    result["minItems"] = self.min_length
                if self.max_length is not None:
                    result["maxItems"] = self.max_length
            case FieldKind.ENUM:
                result = {"type": "string", "enum": list(self.choices)}
            case FieldKind.STRING:
                result = {"type": "string"}
                if self.min_length is not None:
                    result["minLength"] = self.min_length
                if self.max_length is not None:
                    result["maxLength"] = self.max_length
            case _:
                result = {"type": self.kind.value}
        if self.kind in (FieldKind.NUMBER, FieldKind.INTEGER):
            if self.minimum is not None:
                result["minimum"] = self.minimum
            if self.maximum is not None:
                result["maximum"] = self.maximum
        if self.description:
            result["description"] = self.description
        return result


# Constructors used by capability definitions. Item descriptors of lists are
# declared without a name: list_of("points", string()).


def string(name: str = "", **kwargs: Any) -> Field:
    return Field(name=name, kind=FieldKind.STRING, **kwargs)


def number(name: str = "", **kwargs: Any) -> Field:
    return Field(name=name, kind=FieldKind.NUMBER, **kwargs)


def integer(name: str = "", **kwargs: Any) -> Field:
    return Field(name=name, kind=FieldKind.INTEGER, **kwargs)


def boolean(name: str = "", **kwargs: Any) -> Field:
    return Field(name=name, kind=FieldKind.BOOLEAN, **kwargs)


def enum(name: str, choices: tuple[str, ...] | list[str], **kwargs: Any) -> Field:
    return Field(name=name, kind=FieldKind.ENUM, choices=tuple(choices), **kwargs)


def obj(name: str, *fields: Field, **kwargs: Any) -> Field:
    return Field(name=name, kind=FieldKind.OBJECT, fields=fields, **kwargs)


def list_of(name: str, item: Field, **kwargs: Any) -> Field:
    return Field(name=name, kind=FieldKind.LIST, item=item, **kwargs)


@dataclass(frozen=True)
class Schema:
    """An ordered set of top-level fields describing an object value."""

    fields: tuple[Field, ...] = ()

    @classmethod
    def of(cls, *fields: Field) -> Schema:
        names = [f.name for f in fields]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"duplicate field names: {', '.join(sorted(duplicates))}")
        if any(not n for n in names):
            raise ValueError("top-level schema fields must be named")
        return cls(fields=tuple(fields))

    @classmethod
    def from_dict(cls, data: Mapping[str, str | Mapping[str, Any]]) -> Schema:
        return cls.of(*(Field.from_dict(name, spec) for name, spec in data.items()))

    @property
    def names(self) -> list[str]:
        return [f.name for f in self.fields]

    def get(self, name: str) -> Field | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def extend(self, *fields: Field) -> Schema:
        """Return a new schema with extra fields; existing names win."""
        existing = set(self.names)
        return Schema(fields=self.fields + tuple(f for f in fields if f.name not in existing))

    def validate(self, value: Any) -> list[Violation]:
        """Validate a value against this schema, returning every violation."""
        violations: list[Violation] = []
        if not isinstance(value, Mapping):
            violations.append(
                Violation("", ViolationKind.TYPE, f"expected an object, got {_type_name(value)}")
            )
            return violations
        _check_fields(self.fields, value, "", violations)
        return violations

    def is_valid(self, value: Any) -> bool:
        return not self.validate(value)

    def apply_defaults(self, value: Mapping[str, Any]) -> dict[str, Any]:
        """Return a copy of an input value with declared defaults filled in."""
        return _apply_defaults(self.fields, value)

    def fill_missing_optional(self, value: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
        """Fill absent optional fields with type-appropriate empty values.

        Lists become ``[]``; every other kind becomes ``None``. Nested objects
        and list items are filled recursively.

        Returns:
            Tuple of (filled copy, dotted paths that were defaulted).
        """
        defaulted: list[str] = []
        filled = _fill_optional(self.fields, value, "", defaulted)
        return filled, defaulted

    def to_json_schema(self) -> dict[str, Any]:
        return _object_json_schema(self.fields)


def _object_json_schema(fields: tuple[Field, ...]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {f.name: f.to_json_schema() for f in fields},
        "required": [f.name for f in fields if f.required],
    }


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "list"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _check_fields(
    fields: tuple[Field, ...],
    value: Mapping[str, Any],
    path: str,
    out: list[Violation],
) -> None:
    for f in fields:
        field_path = _join(path, f.name)
        if f.name not in value:
            out.append(
                Violation(
                    field_path,
                    ViolationKind.MISSING,
                    "required field is missing" if f.required else "optional field is missing",
                    optional=not f.required,
                )
            )
            continue
        _check_value(f, value[f.name], field_path, out)


def _check_value(f: Field, value: Any, path: str, out: list[Violation]) -> None:
    if value is None:
        if f.required:
            out.append(Violation(path, ViolationKind.TYPE, "required field is null"))
        return

    def mismatch(expected: str) -> None:
        out.append(
            Violation(path, ViolationKind.TYPE, f"expected {expected}, got {_type_name(value)}")
        )

    match f.kind:
        case FieldKind.STRING:
            if not isinstance(value, str):
                return mismatch("string")
            _check_length(f, len(value), "characters", path, out)
        case FieldKind.BOOLEAN:
            if not isinstance(value, bool):
                return mismatch("boolean")
        case FieldKind.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                return mismatch("integer")
            _check_range(f, value, path, out)
        case FieldKind.NUMBER:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return mismatch("number")
            _check_range(f, value, path, out)
        case FieldKind.ENUM:
            if not isinstance(value, str) or value not in f.choices:
                return mismatch(f"one of {', '.join(f.choices)}")
        case FieldKind.OBJECT:
            if not isinstance(value, Mapping):
                return mismatch("object")
            _check_fields(f.fields, value, path, out)
        case FieldKind.LIST:
            if not isinstance(value, list):
                return mismatch("list")
            _check_length(f, len(value), "items", path, out)
            assert f.item is not None
            for index, element in enumerate(value):
                _check_value(f.item, element, f"{path}[{index}]", out)


def _check_length(f: Field, length: int, unit: str, path: str, out: list[Violation]) -> None:
    if f.min_length is not None and length < f.min_length:
        out.append(
            Violation(path, ViolationKind.CONSTRAINT, f"must have at least {f.min_length} {unit}")
        )
    if f.max_length is not None and length > f.max_length:
        out.append(
            Violation(path, ViolationKind.CONSTRAINT, f"must have at most {f.max_length} {unit}")
        )


def _check_range(f: Field, value: float, path: str, out: list[Violation]) -> None:
    if f.minimum is not None and value < f.minimum:
        out.append(Violation(path, ViolationKind.CONSTRAINT, f"must be >= {f.minimum:g}"))
    if f.maximum is not None and value > f.maximum:
        out.append(Violation(path, ViolationKind.CONSTRAINT, f"must be <= {f.maximum:g}"))


def _apply_defaults(fields: tuple[Field, ...], value: Mapping[str, Any]) -> dict[str, Any]:
    result = dict(value)
    for f in fields:
        if f.name not in result and f.has_default:
            result[f.name] = copy.deepcopy(f.default)
        elif f.kind is FieldKind.OBJECT and isinstance(result.get(f.name), Mapping):
            result[f.name] = _apply_defaults(f.fields, result[f.name])
    return result


def _empty_value(f: Field) -> Any:
    return [] if f.kind is FieldKind.LIST else None


def _fill_optional(
    fields: tuple[Field, ...],
    value: Mapping[str, Any],
    path: str,
    defaulted: list[str],
) -> dict[str, Any]:
    result = dict(value)
    for f in fields:
        field_path = _join(path, f.name)
        if f.name not in result:
            if not f.required:
                result[f.name] = _empty_value(f)
                defaulted.append(field_path)
            continue
        result[f.name] = _fill_value(f, result[f.name], field_path, defaulted)
    return result


def _fill_value(f: Field, value: Any, path: str, defaulted: list[str]) -> Any:
    if f.kind is FieldKind.OBJECT and isinstance(value, Mapping):
        return _fill_optional(f.fields, value, path, defaulted)
    if f.kind is FieldKind.LIST and isinstance(value, list):
        assert f.item is not None
        return [
            _fill_value(f.item, element, f"{path}[{index}]", defaulted)
            for index, element in enumerate(value)
        ]
    return value
