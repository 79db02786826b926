"""Decide which grammar an EXPLAIN payload should be parsed with."""

import json
from typing import Optional

from pg_index_advisor.core.errors import InvalidInput
from pg_index_advisor.core.models import LocalizedText

FORMATS = ("json", "text", "auto")


def looks_like_json(text: str) -> bool:
    stripped = text.lstrip()
    if not stripped or stripped[0] not in "[{":
        return False
    try:
        json.loads(stripped)
    except ValueError:
        return False
    return True


def looks_like_wrapped_json(text: str) -> bool:
    """psql-rendered ``FORMAT JSON`` output: a banner and ``+`` continuations around the document."""
    return '"Plan"' in text and "(cost=" not in text


def detect_format(text: str, hint: Optional[str] = "auto") -> str:
    """
    Return ``"json"`` or ``"text"``.

    An explicit hint is honored as-is so the chosen parser can fail on a
    mismatch; ``auto`` (or ``None``) inspects the payload.
    """
    hint = (hint or "auto").lower()
    if hint not in FORMATS:
        raise InvalidInput(
            f"unknown format {hint!r}; expected one of {', '.join(FORMATS)}",
            message=LocalizedText(
                ru="Неизвестный формат плана",
                en="Unknown plan format",
            ),
        )
    if hint != "auto":
        return hint
    if looks_like_json(text) or looks_like_wrapped_json(text):
        return "json"
    return "text"
