"""Schemas for structured responses.

`ResponseSchema` wraps a pydantic `TypeAdapter` and exposes the parse-or-throw
operation the pipeline calls. It also derives `SchemaMetadata`, the property
name sets that tell repair passes which fields are optional, arrays, numbers
or required strings. Repair passes only read the metadata, never the schema.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import dataclasses
from enum import Enum
from typing import Any, NamedTuple

from pydantic import TypeAdapter

from llm_router.core.exceptions import ConfigurationError

_MAX_SCHEMA_DEPTH = 8


class ObjectShape(NamedTuple):
    """Property names of one object schema and which of them are required."""

    properties: frozenset[str]
    required: frozenset[str]
    required_strings: frozenset[str]


@dataclasses.dataclass(frozen=True, slots=True)
class SchemaMetadata:
    """Property-name sets collected from a JSON schema.

    The flat sets are collected across all nesting levels, so a name that is
    an array in one object is treated as an array wherever it appears. Whether
    a name is optional or a required string can differ between objects, so
    `object_shapes` keeps that per object schema and `optional_in` and
    `required_strings_in` answer it for a concrete node.

    A node is matched to schemas by its keys alone. When several object
    schemas declare all of its keys, a name counts as optional only if all of
    them leave it optional, so an ambiguous null is kept rather than dropped.
    """

    all_properties: frozenset[str] = frozenset()
    optional_properties: frozenset[str] = frozenset()
    required_properties: frozenset[str] = frozenset()
    array_properties: frozenset[str] = frozenset()
    numeric_properties: frozenset[str] = frozenset()
    required_string_properties: frozenset[str] = frozenset()
    object_shapes: tuple[ObjectShape, ...] = ()
    # required keys of the object items of each array property
    array_item_required: Mapping[str, frozenset[str]] = dataclasses.field(
        default_factory=dict
    )

    @classmethod
    def from_json_schema(cls, schema: Mapping[str, Any]) -> SchemaMetadata:
        """Collect metadata from a JSON schema document (with `$defs`)."""
        collector = _Collector(schema.get("$defs", {}))
        collector.visit(schema, depth=0)
        return cls(
            all_properties=frozenset(collector.all_properties),
            optional_properties=frozenset(collector.optional),
            required_properties=frozenset(collector.required),
            array_properties=frozenset(collector.arrays),
            numeric_properties=frozenset(collector.numeric),
            required_string_properties=frozenset(collector.required_strings),
            object_shapes=tuple(collector.shapes),
            array_item_required=dict(collector.item_required),
        )

    def _fitting(self, keys: Iterable[str]) -> list[ObjectShape]:
        present = frozenset(keys)
        return [s for s in self.object_shapes if present <= s.properties]

    def optional_in(self, keys: Iterable[str]) -> frozenset[str]:
        """Names an object with these `keys` may omit.

        A name qualifies when every object schema declaring all of `keys`
        leaves it optional. When no schema fits, it qualifies only if no
        schema requires it.
        """
        fitting = self._fitting(keys)
        if not fitting:
            return self.optional_properties - self.required_properties
        return frozenset.intersection(*(s.properties - s.required for s in fitting))

    def required_strings_in(self, keys: Iterable[str]) -> frozenset[str]:
        """Required-string names of the object schemas declaring all of `keys`."""
        fitting = self._fitting(keys)
        if not fitting:
            return self.required_string_properties
        return frozenset().union(*(s.required_strings for s in fitting))


class _Collector:
    def __init__(self, defs: Mapping[str, Any]) -> None:
        self.defs = defs
        self.all_properties: set[str] = set()
        self.optional: set[str] = set()
        self.required: set[str] = set()
        self.arrays: set[str] = set()
        self.numeric: set[str] = set()
        self.required_strings: set[str] = set()
        self.shapes: dict[ObjectShape, None] = {}
        self.item_required: dict[str, frozenset[str]] = {}
        self._visiting: set[str] = set()

    def resolve(self, node: Mapping[str, Any]) -> Mapping[str, Any]:
        ref = node.get("$ref")
        if isinstance(ref, str) and ref.startswith("#/$defs/"):
            return self.defs.get(ref.removeprefix("#/$defs/"), {})
        return node

    def types_of(self, node: Mapping[str, Any], depth: int = 0) -> set[str]:
        if depth > _MAX_SCHEMA_DEPTH:
            return set()
        node = self.resolve(node)
        found: set[str] = set()
        declared = node.get("type")
        if isinstance(declared, str):
            found.add(declared)
        elif isinstance(declared, list):
            found.update(t for t in declared if isinstance(t, str))
        for key in ("anyOf", "oneOf", "allOf"):
            for branch in node.get(key, ()):
                found |= self.types_of(branch, depth + 1)
        if "properties" in node:
            found.add("object")
        return found

    def object_schemas(self, node: Mapping[str, Any], depth: int = 0) -> list[Mapping[str, Any]]:
        """Object schemas `node` may take, looking through refs and unions."""
        if depth > _MAX_SCHEMA_DEPTH:
            return []
        node = self.resolve(node)
        if "properties" in node:
            return [node]
        found: list[Mapping[str, Any]] = []
        for key in ("anyOf", "oneOf"):
            for branch in node.get(key, ()):
                found.extend(self.object_schemas(branch, depth + 1))
        return found

    def record_item_required(self, name: str, prop: Mapping[str, Any]) -> None:
        items = [
            obj
            for branch in (self.resolve(prop), *self.resolve(prop).get("anyOf", ()))
            if isinstance(branch.get("items"), Mapping)
            for obj in self.object_schemas(branch["items"])
        ]
        if not items:
            return
        # a name declared by several objects keeps only what they all require
        required = frozenset.intersection(
            *(frozenset(obj.get("required", ())).intersection(obj["properties"]) for obj in items)
        )
        previous = self.item_required.get(name)
        self.item_required[name] = required if previous is None else previous & required

    def visit(self, node: Mapping[str, Any], depth: int) -> None:
        if depth > _MAX_SCHEMA_DEPTH:
            return
        ref = node.get("$ref")
        if isinstance(ref, str):
            if ref in self._visiting:
                return
            self._visiting.add(ref)
            self.visit(self.resolve(node), depth + 1)
            self._visiting.discard(ref)
            return

        for key in ("anyOf", "oneOf", "allOf"):
            for branch in node.get(key, ()):
                self.visit(branch, depth + 1)

        properties = node.get("properties", {})
        required = set(node.get("required", ())).intersection(properties)
        required_strings: set[str] = set()
        for name, prop in properties.items():
            self.all_properties.add(name)
            types = self.types_of(prop)
            if name not in required:
                self.optional.add(name)
            elif types == {"string"}:
                required_strings.add(name)
            if "array" in types:
                self.arrays.add(name)
                self.record_item_required(name, prop)
            if types & {"number", "integer"} and not types & {"string", "object"}:
                self.numeric.add(name)
            self.visit(prop, depth + 1)
        if properties:
            self.required |= required
            self.required_strings |= required_strings
            self.shapes[
                ObjectShape(
                    frozenset(properties), frozenset(required), frozenset(required_strings)
                )
            ] = None

        items = node.get("items")
        if isinstance(items, Mapping):
            self.visit(items, depth + 1)
        additional = node.get("additionalProperties")
        if isinstance(additional, Mapping):
            self.visit(additional, depth + 1)


class ResponseSchema[T]:
    """A target type for structured responses.

    Example:
        class Summary(TypedDict):
            name: str
            tags: list[str]

        schema = ResponseSchema(Summary)
        schema.parse({"name": "Foo", "tags": ["a"]})
    """

    def __init__(self, target: Any, *, name: str | None = None) -> None:
        self._adapter: TypeAdapter[T] = TypeAdapter(target)
        self.name = name or getattr(target, "__name__", repr(target))
        self.metadata = SchemaMetadata.from_json_schema(self._adapter.json_schema())

    def parse(self, value: Any) -> T:
        """Validate `value`, raising `pydantic.ValidationError` on mismatch."""
        return self._adapter.validate_python(value)

    def dump(self, value: T) -> Any:
        """Return the JSON-compatible form of a parsed value."""
        return self._adapter.dump_python(value, mode="json")

    def __repr__(self) -> str:
        return f"ResponseSchema({self.name})"


class SchemaCatalog[E: Enum]:
    """Closed map from an enum of categories to their response schemas.

    Construction fails unless every member of the enum has a schema, so a
    lookup by category can never miss at call time.
    """

    def __init__(
        self, categories: type[E], schemas: Mapping[E, ResponseSchema[Any]]
    ) -> None:
        missing = [member.name for member in categories if member not in schemas]
        if missing:
            raise ConfigurationError(
                f"No response schema for {categories.__name__} members: {missing}"
            )
        extra = [key for key in schemas if not isinstance(key, categories)]
        if extra:
            raise ConfigurationError(
                f"Schema keys are not {categories.__name__} members: {extra}"
            )
        self.categories = categories
        self._schemas = dict(schemas)

    def __getitem__(self, category: E) -> ResponseSchema[Any]:
        return self._schemas[category]

    def __len__(self) -> int:
        return len(self._schemas)
