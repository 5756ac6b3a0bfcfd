"""Pure text-to-text repairs applied to model output before lenient parsing.

Each function takes and returns a string and is safe to apply to text that is
already valid JSON. ``TEXT_FIXUPS`` lists the last-resort repairs in the order
the parser applies them; the order matters because later fixes assume the
earlier ones have run.
"""
from __future__ import annotations

import re
from typing import Callable, List, Optional, Tuple

_STRING_RE = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)
_FENCE_OPEN_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\n?", re.MULTILINE)
_FENCE_CLOSE_RE = re.compile(r"\n?```[ \t]*$", re.MULTILINE)
_RIR_RANGE_RE = re.compile(r'("RIR"\s*:\s*)(\d+(?:\.\d+)?\s*(?:-|–|to)\s*\d+(?:\.\d+)?)(?=\s*[,}\]])', re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)(\s*:)")
_SINGLE_QUOTED_RE = re.compile(r"'([^'\"\\\n]*)'")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")

_CLOSERS = {"{": "}", "[": "]"}

# Tail fragments that cannot be completed, stripped repeatedly after a cut.
_DANGLING_COMMA_RE = re.compile(r",\s*$")
_KEY_WITHOUT_VALUE_RE = re.compile(r'(^|[{,])\s*"(?:[^"\\]|\\.)*"\s*:\s*$')
_PARTIAL_LITERAL_RE = re.compile(
    r"(?<=[:\[,])(\s*)(?:-|[-+]?\d+(?:\.\d+)?[eE][-+]?|t|tr|tru|f|fa|fal|fals|n|nu|nul)$"
)
_LONE_KEY_RE = re.compile(r'([{,])\s*"(?:[^"\\]|\\.)*"\s*$')
_PARTIAL_UNICODE_RE = re.compile(r"\\u[0-9a-fA-F]{0,3}$")


def _map_outside_strings(text: str, fn: Callable[[str], str]) -> str:
    """Apply ``fn`` to every segment of ``text`` that is not a double-quoted string."""
    parts: List[str] = []
    position = 0
    for match in _STRING_RE.finditer(text):
        parts.append(fn(text[position : match.start()]))
        parts.append(match.group(0))
        position = match.end()
    parts.append(fn(text[position:]))
    return "".join(parts)


def strip_code_fences(text: str) -> str:
    """Remove markdown ```json fences around the payload."""
    cleaned = _FENCE_OPEN_RE.sub("", text)
    cleaned = _FENCE_CLOSE_RE.sub("", cleaned)
    return cleaned.strip()


def scan_structure(text: str) -> Tuple[List[str], bool, bool]:
    """Return the open-container stack, whether the text ends inside a string,
    and whether an escape is pending at the end."""
    stack: List[str] = []
    in_string = False
    escape = False
    for ch in text:
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in ("}", "]") and stack and _CLOSERS[stack[-1]] == ch:
            stack.pop()
    return stack, in_string, escape


def find_balanced(text: str, opener: str = "{") -> Optional[str]:
    """Return the first balanced ``{...}`` (or ``[...]``) substring.

    Braces inside quoted strings are ignored. Returns None when no opener is
    present or the structure never closes.
    """
    closer = _CLOSERS[opener]
    start = text.find(opener)
    if start == -1:
        return None
    depth = 0
    in_string = False
    escape = False
    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def _strip_incomplete_tail(text: str) -> str:
    while True:
        before = text
        text = text.rstrip()
        text = _PARTIAL_LITERAL_RE.sub("", text)
        text = _KEY_WITHOUT_VALUE_RE.sub(r"\1", text)
        stack, _, _ = scan_structure(text)
        if stack and stack[-1] == "{":
            text = _LONE_KEY_RE.sub(lambda m: "{" if m.group(1) == "{" else "", text)
        text = _DANGLING_COMMA_RE.sub("", text)
        if text == before:
            return text


def close_truncated_json(text: str) -> str:
    """Close a JSON document that was cut off mid-stream.

    An open string is terminated, trailing fragments that cannot be completed
    (dangling commas, keys without values, partial literals) are dropped, and
    the exact closers for the still-open containers are appended innermost
    first. Balanced text is returned unchanged.
    """
    text = text.rstrip()
    stack, in_string, escape = scan_structure(text)
    if not stack and not in_string:
        return text
    if in_string:
        if escape:
            text = text[:-1]
        else:
            text = _PARTIAL_UNICODE_RE.sub("", text)
        text += '"'
    text = _strip_incomplete_tail(text)
    stack, _, _ = scan_structure(text)
    return text + "".join(_CLOSERS[opener] for opener in reversed(stack))


def quote_rir_ranges(text: str) -> str:
    """``"RIR": 2-3`` is not JSON; keep the range as a string value."""
    return _RIR_RANGE_RE.sub(lambda m: f'{m.group(1)}"{m.group(2)}"', text)


def remove_trailing_commas(text: str) -> str:
    return _map_outside_strings(text, lambda segment: _TRAILING_COMMA_RE.sub(r"\1", segment))


def quote_bare_keys(text: str) -> str:
    return _map_outside_strings(text, lambda segment: _BARE_KEY_RE.sub(r'\1"\2"\3', segment))


def convert_single_quoted_values(text: str) -> str:
    return _map_outside_strings(text, lambda segment: _SINGLE_QUOTED_RE.sub(r'"\1"', segment))


def strip_control_chars(text: str) -> str:
    return _CONTROL_CHARS_RE.sub(" ", text)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


TEXT_FIXUPS: Tuple[Callable[[str], str], ...] = (
    quote_rir_ranges,
    remove_trailing_commas,
    quote_bare_keys,
    convert_single_quoted_values,
    strip_control_chars,
    collapse_whitespace,
)


def apply_text_fixups(text: str) -> str:
    for fixup in TEXT_FIXUPS:
        text = fixup(text)
    return text
