"""
BoardForge — Tolerant Structured-Text Decoder

Extracts a JSON value from text produced by a generative model. The text may be
wrapped in prose or a code fence and may carry small syntax defects (trailing
commas, raw newlines, stray backslashes, single quotes, bare keys).

Decoding runs a fixed table of repair passes, parses, and on failure runs a
second, more aggressive table and parses once more. Every repair pass is a
total ``str -> str`` function: it never raises and leaves text it does not
understand untouched. The decoder never invents content; if both attempts
fail a ``DecodeError`` is raised and the caller falls back.
"""

import json
import re
from typing import Any, Callable, List, Optional, Tuple

RepairPass = Callable[[str], str]


class DecodeError(ValueError):
    """Generated text could not be turned into a structured value."""

    def __init__(self, message: str, text: str = "", passes: Optional[List[str]] = None):
        super().__init__(message)
        self.text = text
        self.passes = passes or []


# ============================================================================
# STANDARD REPAIR PASSES
# ============================================================================

_FENCE_OPEN_RE = re.compile(r"^```[a-zA-Z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?[ \t]*```\s*$")
_EMBEDDED_FENCE_RE = re.compile(r"```(?:json|javascript|js)?\s*\n?([\s\S]*?)```", re.IGNORECASE)


def strip_code_fence(text: str) -> str:
    """Remove a Markdown code fence around the payload, wherever it sits."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = _FENCE_OPEN_RE.sub("", stripped, count=1)
        stripped = _FENCE_CLOSE_RE.sub("", stripped, count=1)
        return stripped.strip()
    match = _EMBEDDED_FENCE_RE.search(stripped)
    if match:
        return match.group(1).strip()
    return stripped


def _balanced_end(text: str, start: int) -> int:
    """Index just past the bracket closing ``text[start]``, or -1."""
    stack = []
    in_string = False
    quote = ""
    escaped = False
    pairs = {"{": "}", "[": "]"}
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                in_string = False
            continue
        if ch in ('"', "'"):
            in_string = True
            quote = ch
        elif ch in pairs:
            stack.append(pairs[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return -1
            if not stack:
                return i + 1
    return -1


def extract_balanced_span(text: str) -> str:
    """Return the first balanced ``{...}`` or ``[...]`` span found in ``text``."""
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return text
    start = min(starts)
    end = _balanced_end(text, start)
    if end == -1:
        # Unbalanced (usually truncated) output: keep everything from the opener
        return text[start:].strip()
    return text[start:end]


_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def remove_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


_WHITESPACE_RE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    """Fold newlines and runs of whitespace (including inside strings) to one space."""
    return _WHITESPACE_RE.sub(" ", text).strip()


_ESCAPE_RE = re.compile(r'\\(?:["\\/bfnrt]|u[0-9a-fA-F]{4})|\\')


def fix_backslash_escapes(text: str) -> str:
    """Double every backslash that does not start a valid JSON escape."""
    return _ESCAPE_RE.sub(lambda m: m.group(0) if len(m.group(0)) > 1 else "\\\\", text)


# ============================================================================
# AGGRESSIVE REPAIR PASSES
# ============================================================================

_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][\w$-]*)(\s*:)")


def quote_bare_keys(text: str) -> str:
    return _BARE_KEY_RE.sub(r'\1"\2"\3', text)


_SINGLE_QUOTED_RE = re.compile(r"(?<=[\[{,:])(\s*)'((?:[^'\\]|\\.)*)'(?=\s*[,}\]:])")


def single_to_double_quotes(text: str) -> str:
    """Rewrite single-quoted strings that sit in value or key position."""
    def _swap(match: "re.Match[str]") -> str:
        body = match.group(2).replace("\\'", "'").replace('"', '\\"')
        return f'{match.group(1)}"{body}"'
    return _SINGLE_QUOTED_RE.sub(_swap, text)


_BARE_VALUE_RE = re.compile(r"(:\s*)([A-Za-z_][^,{}\[\]\"]*?)(\s*)(?=[,}\]])")
_LITERALS = {"true": "true", "false": "false", "null": "null", "True": "true", "False": "false", "None": "null"}


def quote_bare_values(text: str) -> str:
    """Coerce bare scalar values to quoted strings (``status: todo`` -> ``"todo"``)."""
    def _quote(match: "re.Match[str]") -> str:
        value = match.group(2).strip()
        if value in _LITERALS:
            return f"{match.group(1)}{_LITERALS[value]}{match.group(3)}"
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'{match.group(1)}"{escaped}"{match.group(3)}'
    return _BARE_VALUE_RE.sub(_quote, text)


STANDARD_REPAIRS: Tuple[Tuple[str, RepairPass], ...] = (
    ("strip_code_fence", strip_code_fence),
    ("extract_balanced_span", extract_balanced_span),
    ("remove_trailing_commas", remove_trailing_commas),
    ("collapse_whitespace", collapse_whitespace),
    ("fix_backslash_escapes", fix_backslash_escapes),
)

AGGRESSIVE_REPAIRS: Tuple[Tuple[str, RepairPass], ...] = (
    ("quote_bare_keys", quote_bare_keys),
    ("single_to_double_quotes", single_to_double_quotes),
    ("quote_bare_values", quote_bare_values),
    ("remove_trailing_commas", remove_trailing_commas),
)


def apply_repairs(text: str, repairs: Tuple[Tuple[str, RepairPass], ...]) -> str:
    for _name, repair in repairs:
        text = repair(text)
    return text


# ============================================================================
# DECODING
# ============================================================================

def decode(text: str) -> Any:
    """Decode the first structured value in ``text``; raise ``DecodeError``."""
    if not isinstance(text, str) or not text.strip():
        raise DecodeError("Generated text is empty", text=text or "")

    candidate = apply_repairs(text, STANDARD_REPAIRS)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as first_error:
        repaired = apply_repairs(candidate, AGGRESSIVE_REPAIRS)
        try:
            return json.loads(repaired)
        except json.JSONDecodeError as second_error:
            passes = [name for name, _ in STANDARD_REPAIRS + AGGRESSIVE_REPAIRS]
            raise DecodeError(
                f"Could not parse generated text: {second_error.msg} "
                f"(first attempt: {first_error.msg})",
                text=text,
                passes=passes,
            ) from second_error


def decode_object(text: str) -> dict:
    value = decode(text)
    if not isinstance(value, dict):
        raise DecodeError(f"Expected an object, got {type(value).__name__}", text=text)
    return value


def decode_array(text: str) -> list:
    value = decode(text)
    if isinstance(value, dict):
        # Models often wrap arrays: {"suggestions": [...]}
        lists = [v for v in value.values() if isinstance(v, list)]
        if len(lists) == 1:
            return lists[0]
    if not isinstance(value, list):
        raise DecodeError(f"Expected an array, got {type(value).__name__}", text=text)
    return value
