"""Extract the first balanced JSON value from raw model output."""

import json
from typing import Any

_CLOSERS = {"{": "}", "[": "]"}


class JSONExtractionError(ValueError):
    """No valid JSON value could be extracted from the text."""

    pass


def find_balanced_json(text: str) -> str:
    """Return the substring spanning the first balanced object or array.

    Brackets inside string literals are ignored and backslash escapes are
    honoured, so ``[1,{"x":"}"}]`` is returned whole.

    Raises:
        JSONExtractionError: If there is no opening bracket, the brackets are
            mismatched, or the value never closes.
        TypeError: If ``text`` is not a string.
    """
    if not isinstance(text, str):
        raise TypeError(f"expected str, got {type(text).__name__}")

    start = -1
    for index, char in enumerate(text):
        if char in _CLOSERS:
            start = index
            break
    if start == -1:
        raise JSONExtractionError("No JSON object or array found")

    stack: list[str] = []
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]

        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]"):
            if not stack or stack.pop() != char:
                raise JSONExtractionError(f"Mismatched '{char}' at position {index}")
            if not stack:
                return text[start : index + 1]

    raise JSONExtractionError("Unbalanced JSON value: reached end of text")


def extract_first_json(text: str) -> Any:
    """Parse the first JSON value found in ``text``.

    The whole string is tried first. Otherwise the first balanced object or
    array is parsed and any prose after it is ignored.
    """
    if not isinstance(text, str) or not text.strip():
        raise JSONExtractionError("No text to parse")

    stripped = text.strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    candidate = find_balanced_json(stripped)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        raise JSONExtractionError(f"Balanced value is not valid JSON: {e.msg}") from e
