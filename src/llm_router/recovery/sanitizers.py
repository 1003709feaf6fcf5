"""Text-level repair passes applied before parsing.

Each pass is a pure `str -> str` function, idempotent, and returns its input
unchanged when there is nothing to fix. Passes that edit syntax only touch
text outside JSON string literals.
"""

from __future__ import annotations

from collections.abc import Callable
import re
from typing import NamedTuple


class TextRepair(NamedTuple):
    """A named text repair pass."""

    name: str
    apply: Callable[[str], str]


_STRING_LITERAL_RE = re.compile(r'"(?:\\.|[^"\\])*"', re.DOTALL)


def _outside_strings(text: str, fix: Callable[[str], str]) -> str:
    """Apply `fix` to every segment of `text` that is not a string literal."""
    parts: list[str] = []
    last = 0
    for match in _STRING_LITERAL_RE.finditer(text):
        parts.append(fix(text[last : match.start()]))
        parts.append(match.group())
        last = match.end()
    parts.append(fix(text[last:]))
    return "".join(parts)


def trim_whitespace(text: str) -> str:
    """Strip surrounding whitespace."""
    return text.strip()


_FENCED_BLOCK_RE = re.compile(r"```[\w-]*[ \t]*\n?(.*?)\n?[ \t]*```", re.DOTALL)
_FENCE_MARKER_RE = re.compile(r"```[\w-]*")


def remove_code_fences(text: str) -> str:
    """Unwrap markdown code fences, keeping the largest fenced block."""
    if "```" not in text:
        return text
    blocks = _FENCED_BLOCK_RE.findall(text)
    if blocks:
        return max(blocks, key=len).strip()
    # Unterminated fence, typically a truncated response.
    return _FENCE_MARKER_RE.sub("", text).strip()


_OPENERS = {"{": "}", "[": "]"}


def extract_json_span(text: str) -> str:
    """Drop prose before the first opener and after its last matching closer."""
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        return text
    start = min(starts)
    end = text.rfind(_OPENERS[text[start]])
    if end < start:
        return text[start:]
    return text[start : end + 1]


_SMART_QUOTES = str.maketrans(
    {"\u201c": '"', "\u201d": '"', "\u2018": "'", "\u2019": "'"}
)


def normalize_quotes(text: str) -> str:
    """Turn single-quoted (and curly-quoted) strings into double-quoted ones.

    Curly quotes are only translated when the text has no straight double
    quotes, since otherwise they are most likely prose inside valid strings.
    """
    if '"' not in text:
        text = text.translate(_SMART_QUOTES)
    if "'" not in text:
        return text

    out: list[str] = []
    i = 0
    in_double = False
    while i < len(text):
        ch = text[i]
        if in_double:
            out.append(ch)
            if ch == "\\" and i + 1 < len(text):
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_double = False
            i += 1
            continue
        if ch == '"':
            in_double = True
            out.append(ch)
            i += 1
            continue
        if ch != "'":
            out.append(ch)
            i += 1
            continue

        j = i + 1
        buf: list[str] = []
        while j < len(text) and text[j] != "'":
            c = text[j]
            if c == "\\" and j + 1 < len(text):
                nxt = text[j + 1]
                buf.append(nxt if nxt == "'" else c + nxt)
                j += 2
                continue
            buf.append('\\"' if c == '"' else c)
            j += 1
        out.append('"' + "".join(buf) + '"')
        i = j + 1
    return "".join(out)


_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def remove_control_chars(text: str) -> str:
    """Remove control characters other than tab, newline and carriage return."""
    return _CONTROL_CHARS_RE.sub("", text)


_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][\w$-]*)(\s*):")


def fix_unquoted_property_names(text: str) -> str:
    """Quote bare identifiers used as object keys."""
    return _outside_strings(text, lambda seg: _UNQUOTED_KEY_RE.sub(r'\1"\2"\3:', seg))


_UNDEFINED_RE = re.compile(r"(:\s*)undefined\b")


def fix_undefined_values(text: str) -> str:
    """Replace JavaScript `undefined` values with null."""
    return _outside_strings(text, lambda seg: _UNDEFINED_RE.sub(r"\1null", seg))


_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def remove_trailing_commas(text: str) -> str:
    """Remove commas directly before a closing brace or bracket."""
    return _outside_strings(text, lambda seg: _TRAILING_COMMA_RE.sub(r"\1", seg))


_DANGLING_KEY_RE = re.compile(r'([{,])\s*"(?:\\.|[^"\\])*"\s*$', re.DOTALL)


def complete_truncated_structures(text: str) -> str:
    """Close an unterminated string and any unclosed brackets.

    A dangling trailing comma is dropped, a dangling colon gets a null value,
    and a key left without a value is removed.
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in "}]" and stack and stack[-1] == ch:
            stack.pop()

    if not stack and not in_string:
        return text

    completed = text
    if in_string:
        completed += "\\" if escaped else ""
        completed += '"'
    completed = completed.rstrip()
    if completed.endswith(":"):
        completed += " null"
    elif stack and stack[-1] == "}" and (match := _DANGLING_KEY_RE.search(completed)):
        completed = completed[: match.start() + 1]
    completed = completed.rstrip().removesuffix(",").rstrip()
    return completed + "".join(reversed(stack))


DEFAULT_TEXT_REPAIRS: tuple[TextRepair, ...] = (
    TextRepair("trim_whitespace", trim_whitespace),
    TextRepair("remove_code_fences", remove_code_fences),
    TextRepair("extract_json_span", extract_json_span),
    TextRepair("normalize_quotes", normalize_quotes),
    TextRepair("remove_control_chars", remove_control_chars),
    TextRepair("fix_unquoted_property_names", fix_unquoted_property_names),
    TextRepair("fix_undefined_values", fix_undefined_values),
    TextRepair("remove_trailing_commas", remove_trailing_commas),
    TextRepair("complete_truncated_structures", complete_truncated_structures),
)
