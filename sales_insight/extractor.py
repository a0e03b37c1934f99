"""
Recover a JSON object from free-form model output.

Strategy (first match wins):
1. ```json fenced block: strip the opening fence and the closing fence.
2. Text that already starts with '{' and ends with '}': use verbatim.
3. Otherwise take everything from the first '{' to the last '}'.

This is a lossy heuristic, not a parser: prose containing stray braces around
the object can defeat step 3. The client asks Gemini for native JSON output
(response_mime_type="application/json") whenever json_mode is enabled; this
module is the fallback recovery for responses that still arrive wrapped.
"""

import json
import logging
import re
from typing import Any

from .errors import ExtractionFailure, MalformedJSON

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 500

_OPENING_FENCE = re.compile(r"^```json", re.IGNORECASE)
_CLOSING_FENCE = "```"


def _find_candidate(text: str) -> str:
    text = text.strip()

    if _OPENING_FENCE.match(text):
        text = text[len("```json"):]
        if text.endswith(_CLOSING_FENCE):
            text = text[: -len(_CLOSING_FENCE)]
        return text.strip()

    if text.startswith("{") and text.endswith("}"):
        return text

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return ""
    return text[start:end + 1]


def extract_json(text: str) -> Any:
    """
    Parse the model response `text` into a JSON value.

    Raises ExtractionFailure when no JSON boundary is found and MalformedJSON
    when the candidate does not parse.
    """
    candidate = _find_candidate(text or "")
    if not candidate:
        logger.error(f"No JSON object found in model response: {(text or '')[:SNIPPET_LENGTH]!r}")
        raise ExtractionFailure("Model response did not contain a recognizable JSON object")

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        snippet = candidate[:SNIPPET_LENGTH]
        logger.error(f"JSON parse error: {e}. Offending text: {snippet!r}")
        raise MalformedJSON(f"Model response contained malformed JSON: {e}", snippet=snippet)
