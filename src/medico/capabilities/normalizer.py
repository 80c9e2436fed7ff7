"""Turn raw model output into a schema-validated value.

Pipeline:
1. Already-structured values that validate are returned unchanged.
2. Text has one surrounding code fence and surrounding whitespace stripped.
3. The cleaned text is parsed as JSON.
4. The parsed value is validated. Missing optional fields are filled with
   empty defaults (``Recovered``); missing or mistyped required fields are a
   ``SCHEMA_VIOLATION``.
5. On a parse failure, exactly one repair pass cuts the text down to the span
   between the first opening and last closing bracket and parses once more.

``normalize`` never raises. Anything beyond the single repair attempt is the
fallback chain's job.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from medico.capabilities.schema import Schema, Violation, ViolationKind
from medico.capabilities.types import Failure, FailureKind, InvocationResult, Recovered, Success

logger = logging.getLogger(__name__)

EXCERPT_LIMIT = 200

_OPEN_FENCE_RE = re.compile(r"^```[A-Za-z0-9_+-]*[ \t]*\n?")
_CLOSE_FENCE_RE = re.compile(r"\n?```$")


def excerpt(text: str, limit: int = EXCERPT_LIMIT) -> str:
    """Shorten raw model text for logs and failure details."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "…"


def strip_code_fence(text: str) -> str:
    """Strip one leading and one trailing code-fence marker plus whitespace.

    Either marker may be missing (truncated responses often lose the closing
    fence). Applying this to already-clean text returns it unchanged.
    """
    cleaned = text.strip()
    cleaned = _OPEN_FENCE_RE.sub("", cleaned, count=1)
    cleaned = _CLOSE_FENCE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def repair_json_text(text: str) -> str | None:
    """Cut leading prose and trailing commentary around a JSON value.

    Objects win over arrays: brackets in surrounding prose are ignored when
    the text contains a brace.

    Returns None when the text has no bracketed span to cut down to.
    """
    opener, closer = ("{", "}") if "{" in text else ("[", "]")
    start = text.find(opener)
    if start < 0:
        return None
    end = text.rfind(closer)
    if end <= start:
        return None
    candidate = text[start : end + 1]
    return candidate if candidate != text else None


def _describe(violations: list[Violation]) -> str:
    return "; ".join(str(v) for v in violations)


def _validate(value: Any, schema: Schema) -> InvocationResult:
    violations = schema.validate(value)
    if not violations:
        return Success(value=dict(value))

    blocking = [
        v for v in violations if not (v.kind is ViolationKind.MISSING and v.optional)
    ]
    if blocking:
        return Failure(
            kind=FailureKind.SCHEMA_VIOLATION,
            message=_describe(blocking),
        )

    filled, defaulted = schema.fill_missing_optional(value)
    return Recovered(
        value=filled,
        notes=(f"defaulted missing optional fields: {', '.join(defaulted)}",),
    )


def normalize(raw: Any, schema: Schema) -> InvocationResult:
    """Normalize raw model output against an output schema.

    Args:
        raw: Model output. Usually text, but may already be a parsed value.
        schema: Output schema the value must satisfy.

    Returns:
        Success, Recovered or Failure. Never raises.
    """
    if not isinstance(raw, str):
        if isinstance(raw, Mapping):
            return _validate(raw, schema)
        return Failure(
            kind=FailureKind.SCHEMA_VIOLATION,
            message=f"expected an object, got {type(raw).__name__}",
        )

    cleaned = strip_code_fence(raw)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as first_error:
        repaired = repair_json_text(cleaned)
        if repaired is None:
            return _unparsable(raw, first_error)
        logger.debug("normalizer_repair_attempt", extra={"raw_excerpt": excerpt(raw)})
        try:
            parsed = json.loads(repaired)
        except json.JSONDecodeError as second_error:
            return _unparsable(raw, second_error)

    if not isinstance(parsed, Mapping):
        return Failure(
            kind=FailureKind.SCHEMA_VIOLATION,
            message=f"expected a JSON object, got {type(parsed).__name__}",
            detail=excerpt(raw),
        )
    return _validate(parsed, schema)


def _unparsable(raw: str, error: json.JSONDecodeError) -> Failure:
    return Failure(
        kind=FailureKind.UNPARSABLE_RESPONSE,
        message=f"response is not valid JSON: {error.msg}",
        detail=excerpt(raw),
    )
