"""
Recover a JSON value from model output that may be wrapped in prose.

Models are asked for bare JSON but routinely add markdown fences, a
sentence of preamble, or trailing commentary. ``extract_json`` finds the
first balanced JSON object or array in such text, honouring string
literals and escapes so braces inside strings never unbalance the scan.
"""

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)

_OPENERS = {"{": "}", "[": "]"}


class JSONRecoveryError(ValueError):
    """No parseable JSON value could be found in the text."""

    def __init__(self, message: str, text: str = ""):
        self.text = text
        super().__init__(message)


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the text unchanged."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    stripped = text.strip()
    # Unterminated fence: drop the opening marker only
    if stripped.startswith("```"):
        stripped = stripped[3:]
        if stripped[:4].lower() == "json":
            stripped = stripped[4:]
    return stripped.strip()


def find_balanced(text: str, start: int) -> int:
    """
    Return the index one past the bracket that closes ``text[start]``.

    ``text[start]`` must be ``{`` or ``[``. Brackets inside JSON string
    literals are ignored, as are escaped quotes within those strings.

    Raises:
        JSONRecoveryError: If the structure is never closed or brackets mismatch.
    """
    if text[start] not in _OPENERS:
        raise JSONRecoveryError(f"No JSON structure at offset {start}", text)

    stack = [_OPENERS[text[start]]]
    in_string = False
    escaped = False

    for i in range(start + 1, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in ("}", "]"):
            if ch != stack[-1]:
                raise JSONRecoveryError(f"Mismatched '{ch}' at offset {i}", text)
            stack.pop()
            if not stack:
                return i + 1

    raise JSONRecoveryError("Unclosed JSON structure", text)


def extract_json(text: str) -> Any:
    """
    Parse the JSON value embedded in ``text``.

    Order of attempts:
    1. Parse the whole text directly
    2. Strip markdown code fences and parse the remainder
    3. Scan from each ``{``/``[`` for a balanced substring that parses

    Returns:
        The parsed JSON value (dict or list in practice)

    Raises:
        JSONRecoveryError: If nothing parseable is found
    """
    if text is None or not text.strip():
        raise JSONRecoveryError("Empty response", text or "")

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    body = strip_code_fences(text)
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        pass

    last_error: JSONRecoveryError | None = None
    for i, ch in enumerate(body):
        if ch not in _OPENERS:
            continue
        try:
            end = find_balanced(body, i)
        except JSONRecoveryError as e:
            last_error = e
            continue
        try:
            return json.loads(body[i:end])
        except json.JSONDecodeError as e:
            last_error = JSONRecoveryError(f"Invalid JSON at offset {i}: {e.msg}", text)

    if last_error is not None:
        raise JSONRecoveryError(str(last_error), text)
    raise JSONRecoveryError("No JSON object or array found", text)
