#!/usr/bin/env python3
import json
import re
from typing import Any, List, Optional, Set

_TOOL_ATTR_RE = re.compile(r"tools\.(\w+)")
_TOOL_ITEM_RE = re.compile(r"tools\[\s*[\"'](\w+)[\"']\s*\]")


def extract_json_values(text: str) -> List[Any]:
    """
    Scans free text for balanced JSON objects/arrays and returns every candidate
    that parses, in order of appearance. String state is tracked over the whole
    text, so brackets inside quotes (in JSON or in the surrounding prose) are
    ignored. Backslash escapes the next character, and candidates that fail to
    parse are dropped without raising.
    """
    values: List[Any] = []
    if not text:
        return values
    depth = 0
    start = -1
    in_string = False
    escape_next = False

    for idx, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue

        if char in "{[":
            if depth == 0:
                start = idx
            depth += 1
        elif char in "}]":
            # A closer with nothing open is prose.
            if depth == 0:
                continue
            depth -= 1
            if depth == 0:
                candidate = text[start:idx + 1]
                try:
                    values.append(json.loads(candidate))
                except ValueError:
                    pass
                start = -1
    return values


def extract_json(text: str) -> Optional[Any]:
    """First parseable JSON value in a model reply, tolerating <think> blocks and fences."""
    if not text:
        return None
    clean = text.strip()
    if "</think>" in clean:
        clean = clean.split("</think>")[-1].strip()
    values = extract_json_values(clean)
    if values:
        return values[0]
    # Python literals leak into replies often enough to retry once.
    patched = clean.replace(": True", ": true").replace(": False", ": false").replace(": None", ": null")
    values = extract_json_values(patched)
    return values[0] if values else None


def extract_code(text: str) -> str:
    if "```python" in text:
        return text.split("```python")[1].split("```")[0].strip()
    if "```" in text:
        return text.split("```")[1].split("```")[0].strip()
    return text.strip()


def extract_used_tools(script: str) -> Set[str]:
    """Capability names referenced as tools.<name> or tools["<name>"] in a script."""
    if not script:
        return set()
    return set(_TOOL_ATTR_RE.findall(script)) | set(_TOOL_ITEM_RE.findall(script))


def normalize_source(source: str) -> str:
    return "\n".join(line.rstrip() for line in (source or "").strip().splitlines() if line.strip())
