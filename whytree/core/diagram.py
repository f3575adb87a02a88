# whytree/core/diagram.py

"""
Diagram extraction from free-form model replies.

The tree prompt asks the model for strict JSON ({"diagram": "graph TD;..."}),
but replies often arrive wrapped in prose or markdown fences. We scan for
balanced brace regions, take the first one that carries a diagram key (at
the top level or in a nested object), and validate it against a small schema:

- found and valid        -> the diagram text
- found but unparsable   -> FALLBACK_DIAGRAM
- nothing JSON-shaped    -> None (the caller decides how to surface that)
"""

import json
import re
from typing import Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from whytree.utils.logging import get_logger

logger = get_logger(__name__)

DIAGRAM_KEY = "diagram"
LEGACY_DIAGRAM_KEY = "mermaidCode"

FALLBACK_DIAGRAM = (
    "graph TD;\n"
    "  A[Analysis result] --> B[Diagram generation failed];\n"
    "  B --> C[Please review the dialogue];"
)

_KEY_PATTERN = re.compile(r'"(?:%s|%s)"\s*:' % (DIAGRAM_KEY, LEGACY_DIAGRAM_KEY))


class DiagramPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    diagram: str = Field(..., min_length=1)


def iter_json_objects(text: str) -> Iterator[str]:
    """
    Yield every outermost balanced {...} region of `text`, left to right.

    Braces inside JSON string literals are ignored. An opening brace that is
    never closed is skipped and the scan resumes at the next one.
    """
    start = text.find("{")
    while start != -1:
        end = _match_closing_brace(text, start)
        if end == -1:
            start = text.find("{", start + 1)
            continue
        yield text[start : end + 1]
        start = text.find("{", end + 1)


def _match_closing_brace(text: str, start: int) -> int:
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
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
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return idx
    return -1


def _load_object(candidate: str) -> Optional[dict]:
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse diagram JSON: %s", e)
        return None

    if not isinstance(data, dict):
        logger.warning("Diagram JSON is not an object.")
        return None
    return data


def _validate_payload(data: dict) -> Optional[str]:
    if DIAGRAM_KEY not in data and LEGACY_DIAGRAM_KEY in data:
        data = {DIAGRAM_KEY: data[LEGACY_DIAGRAM_KEY]}

    try:
        payload = DiagramPayload.model_validate(data)
    except ValidationError as e:
        logger.warning("Diagram JSON has an unexpected shape: %s", e.errors())
        return None
    return payload.diagram


def extract_diagram(reply: str) -> Optional[str]:
    """
    Return the diagram text carried by a model reply.

    See the module docstring for the found / fallback / absent contract.
    """
    text = reply or ""

    for candidate in iter_json_objects(text):
        if not _KEY_PATTERN.search(candidate):
            continue
        data = _load_object(candidate)
        if data is None:
            return FALLBACK_DIAGRAM

        if DIAGRAM_KEY not in data and LEGACY_DIAGRAM_KEY not in data:
            # the key sits in a nested object (or only inside a string value)
            nested = extract_diagram(candidate[1:-1])
            if nested is not None:
                return nested
            continue

        return _validate_payload(data) or FALLBACK_DIAGRAM

    # An object that never closes (e.g. an unterminated string) still counts
    # as a broken payload rather than a missing one.
    unclosed = _first_unclosed_brace(text)
    if unclosed != -1 and _KEY_PATTERN.search(text, unclosed):
        logger.warning("Diagram JSON present but unbalanced; using fallback diagram.")
        return FALLBACK_DIAGRAM

    return None


def _first_unclosed_brace(text: str) -> int:
    start = text.find("{")
    while start != -1:
        end = _match_closing_brace(text, start)
        if end == -1:
            return start
        start = text.find("{", end + 1)
    return -1
