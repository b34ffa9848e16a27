"""
JSON Extraction

Best-effort recovery of a JSON value from free-form LLM output.

Strategies, in order:
  1. every fenced code block (```json ... ``` or bare ``` ... ```)
  2. the whole trimmed text
  3. brace-balanced scan for the first complete top-level object

Returns None when nothing parses. Never raises.

Deterministic. No network calls.
"""

import json
import re

FENCED_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _try_parse(text):
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def _scan_objects(text):
    """Yield every brace-balanced {...} slice, outermost first."""
    depth = 0
    start = -1
    for i, ch in enumerate(text):
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start != -1:
                yield text[start:i + 1]
                start = -1


def extract_json(text):
    """Extract the first parseable JSON value from text.

    Args:
        text: Raw LLM response.

    Returns:
        Parsed value (usually a dict) or None.
    """
    if not isinstance(text, str) or not text.strip():
        return None

    for match in FENCED_BLOCK_PATTERN.finditer(text):
        parsed = _try_parse(match.group(1).strip())
        if parsed is not None:
            return parsed

    parsed = _try_parse(text.strip())
    if parsed is not None:
        return parsed

    for candidate in _scan_objects(text):
        parsed = _try_parse(candidate)
        if parsed is not None:
            return parsed

    return None


if __name__ == "__main__":
    print("=== JSON Extraction Self-Check ===\n")

    print("Test 1: Fenced block")
    assert extract_json('Here:\n```json\n{"a": 1}\n```\nDone.') == {"a": 1}
    print("  [OK]")

    print("Test 2: Raw JSON")
    assert extract_json('  {"b": [1, 2]}  ') == {"b": [1, 2]}
    print("  [OK]")

    print("Test 3: Embedded object")
    assert extract_json('The fixed flow is {"name": "E2E x", "flow": {}} as requested.') == {
        "name": "E2E x", "flow": {}}
    print("  [OK]")

    print("Test 4: Nothing usable")
    assert extract_json("I could not fix this flow.") is None
    print("  [OK]")

    print("\n=== All extraction checks passed ===")
