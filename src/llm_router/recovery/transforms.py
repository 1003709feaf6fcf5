"""Tree-level repair passes applied to parsed model output.

Every pass has the signature `(tree, metadata) -> tree`. A pass is pure and
idempotent, and it returns the input object itself when it changes nothing,
which is how the recovery pipeline knows whether a pass fired. Passes that
depend on schema metadata do nothing when the metadata is empty.
"""

from __future__ import annotations

from collections.abc import Callable
import json
import re
from typing import Any, NamedTuple

from llm_router.recovery.schema import SchemaMetadata
from llm_router.recovery.traversal import walk

type RepairFunction = Callable[[Any, SchemaMetadata], Any]


class TreeRepair(NamedTuple):
    """A named tree repair pass."""

    name: str
    apply: RepairFunction


# --- Null handling ---


def convert_null_to_undefined(tree: Any, metadata: SchemaMetadata) -> Any:
    """Drop null values of optional properties so they read as absent.

    Optionality is judged per object, so a name that is required in one model
    and optional in another keeps its null where it is required.
    """
    if not metadata.optional_properties:
        return tree

    def visit(node: dict[str, Any]) -> dict[str, Any]:
        # matched on non-null keys so dropping nulls cannot change the answer
        optional = metadata.optional_in(k for k, v in node.items() if v is not None)
        if not any(node[k] is None for k in optional if k in node):
            return node
        return {k: v for k, v in node.items() if not (v is None and k in optional)}

    return walk(tree, on_object=visit)


def convert_null_to_empty_string(tree: Any, metadata: SchemaMetadata) -> Any:
    """Turn null required-string fields into "" on objects that have a name.

    Only objects whose `name` is a string qualify. Other null values are left
    alone.
    """
    if not metadata.required_string_properties - {"name"}:
        return tree

    def visit(node: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(node.get("name"), str):
            return node
        fields = metadata.required_strings_in(node) - {"name"}
        targets = [k for k in fields if k in node and node[k] is None]
        if not targets:
            return node
        return {k: ("" if k in targets else v) for k, v in node.items()}

    return walk(tree, on_object=visit)


# --- String to array coercion ---

_BULLET_RE = re.compile(r"^\s*(?:[-*+]\s+|[•●◦‣▪▹►→➤➢◆■]\s*)(.+?)\s*$")
_NUMBERED_RE = re.compile(r"^\s*\d+[.)]\s+(.+?)\s*$")
_SENTENCE_END_RE = re.compile(r"[.!?](?:\s|$)")
_LIST_SEPARATOR_RE = re.compile(r"[,;]")

_MAX_AVG_TOKEN_LENGTH = 50
_MAX_AVG_LINE_LENGTH = 60


def _stringify_item(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, list):
        return ",".join(_stringify_item(i) for i in item)
    if isinstance(item, dict):
        return json.dumps(item)
    return str(item)


def _parse_array_literal(text: str) -> list[str]:
    for candidate in (text, text.replace("'", '"')):
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, list):
            return [_stringify_item(item) for item in parsed]
    return []


def _match_all(pattern: re.Pattern[str], lines: list[str]) -> list[str] | None:
    items: list[str] = []
    for line in lines:
        match = pattern.match(line)
        if match is None:
            return None
        items.append(match.group(1))
    return items


def split_list_text(text: str) -> list[str]:
    """Extract list items from free text; [] when it does not look like a list.

    Tried in order: an array literal, a bulleted list, a numbered list,
    comma/semicolon separated short tokens, then short newline-separated
    lines. A bracketed list that is not valid JSON falls through to the
    later strategies without its brackets.
    """
    stripped = text.strip()
    if not stripped:
        return []
    if stripped.startswith("["):
        if items := _parse_array_literal(stripped):
            return items
        # not valid JSON, e.g. [alpha, beta]; read what is inside the brackets
        stripped = stripped.removeprefix("[").removesuffix("]").strip()
        if not stripped:
            return []

    lines = [line for line in stripped.splitlines() if line.strip()]
    bullets = _match_all(_BULLET_RE, lines)
    if bullets:
        return bullets
    numbered = _match_all(_NUMBERED_RE, lines)
    if numbered:
        return numbered

    if len(lines) == 1:
        separators = _LIST_SEPARATOR_RE.findall(stripped)
        tokens = [t.strip() for t in _LIST_SEPARATOR_RE.split(stripped) if t.strip()]
        if (
            len(separators) >= 2
            and tokens
            and sum(map(len, tokens)) / len(tokens) < _MAX_AVG_TOKEN_LENGTH
            and not _SENTENCE_END_RE.search(stripped)
        ):
            return tokens
        return []

    cleaned = [line.strip() for line in lines]
    if sum(map(len, cleaned)) / len(cleaned) < _MAX_AVG_LINE_LENGTH:
        return cleaned
    return []


def coerce_string_to_array(tree: Any, metadata: SchemaMetadata) -> Any:
    """Replace string values of array properties with extracted list items."""
    arrays = metadata.array_properties
    if not arrays:
        return tree

    def visit(node: dict[str, Any]) -> dict[str, Any]:
        if not any(isinstance(node[k], str) for k in arrays if k in node):
            return node
        return {
            k: (split_list_text(v) if k in arrays and isinstance(v, str) else v)
            for k, v in node.items()
        }

    return walk(tree, on_object=visit)


# --- Numbers ---

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_THOUSANDS_RE = re.compile(r"(?<=\d),(?=\d{3}(?:\D|$))")


def _extract_number(text: str) -> int | float | None:
    match = _NUMBER_RE.search(_THOUSANDS_RE.sub("", text))
    if match is None:
        return None
    number = float(match.group())
    return int(number) if number.is_integer() and "." not in match.group() else number


def coerce_numeric_properties(tree: Any, metadata: SchemaMetadata) -> Any:
    """Turn strings like "~150 items" into 150 for numeric properties."""
    numeric = metadata.numeric_properties
    if not numeric:
        return tree

    def visit(node: dict[str, Any]) -> dict[str, Any]:
        updates = {
            k: n
            for k in numeric
            if k in node
            and isinstance(node[k], str)
            and (n := _extract_number(node[k])) is not None
        }
        if not updates:
            return node
        return {k: updates.get(k, v) for k, v in node.items()}

    return walk(tree, on_object=visit)


# --- Keys ---


def _typo_base(key: str) -> str | None:
    if len(key) > 1 and key.endswith("_") and not key.endswith("__"):
        return key[:-1]
    return None


def fix_property_name_typos(tree: Any, metadata: SchemaMetadata) -> Any:
    """Rename `key_` to `key`, never overwriting an existing `key`.

    When `key` already exists its value wins and the stray `key_` is dropped.
    Keys the schema itself declares (e.g. `class_`) are left alone.
    """
    known = metadata.all_properties

    def visit(node: dict[str, Any]) -> dict[str, Any]:
        typos = {
            k: base
            for k in node
            if k not in known and (base := _typo_base(k)) is not None
        }
        if not typos:
            return node
        fixed: dict[str, Any] = {}
        for k, v in node.items():
            base = typos.get(k)
            if base is None:
                fixed[k] = v
            elif base not in node:
                fixed[base] = v
        return fixed

    return walk(tree, on_object=visit)


# --- Arrays ---


def _drop_truncated_tail(items: Any, required: frozenset[str]) -> Any:
    if not isinstance(items, list) or len(items) < 2:
        return items
    if not all(isinstance(i, dict) for i in items):
        return items
    *complete, last = items
    if all(required.issubset(i) for i in complete) and not required.issubset(last):
        return complete
    return items


def remove_incomplete_array_items(tree: Any, metadata: SchemaMetadata) -> Any:
    """Drop a trailing array item that lacks required keys its siblings have.

    Applies only to arrays whose item schema requires some keys, and only when
    every earlier item carries all of them, which is the shape of output cut
    off mid-generation. The new last item is then complete, so a second run
    changes nothing. Items that merely omit optional keys are kept.
    """
    tracked = {k: r for k, r in metadata.array_item_required.items() if r}
    if not tracked:
        return tree

    def visit(node: dict[str, Any]) -> dict[str, Any]:
        trimmed = {
            k: new
            for k, required in tracked.items()
            if k in node and (new := _drop_truncated_tail(node[k], required)) is not node[k]
        }
        if not trimmed:
            return node
        return {k: trimmed.get(k, v) for k, v in node.items()}

    return walk(tree, on_object=visit)


# --- Shape ---


def unwrap_json_schema_structure(tree: Any, metadata: SchemaMetadata) -> Any:
    """Replace an echoed `{"type": "object", "properties": {...}}` wrapper.

    Only applies at the root, only when `properties` is a non-empty mapping,
    and never when the target schema itself declares `type` and `properties`.
    """
    if (
        isinstance(tree, dict)
        and tree.get("type") == "object"
        and isinstance(tree.get("properties"), dict)
        and tree["properties"]
        and not {"type", "properties"} <= metadata.all_properties
    ):
        return tree["properties"]
    return tree


DEFAULT_TREE_REPAIRS: tuple[TreeRepair, ...] = (
    TreeRepair("unwrap_json_schema_structure", unwrap_json_schema_structure),
    TreeRepair("convert_null_to_undefined", convert_null_to_undefined),
    TreeRepair("convert_null_to_empty_string", convert_null_to_empty_string),
    TreeRepair("coerce_string_to_array", coerce_string_to_array),
    TreeRepair("coerce_numeric_properties", coerce_numeric_properties),
    TreeRepair("fix_property_name_typos", fix_property_name_typos),
    TreeRepair("remove_incomplete_array_items", remove_incomplete_array_items),
)
