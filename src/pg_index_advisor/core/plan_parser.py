"""Entry point that validates raw input and routes it to the right grammar."""

import logging
from typing import Any, Optional

from pg_index_advisor.core.config import settings
from pg_index_advisor.core.errors import InvalidInput
from pg_index_advisor.core.format_detector import detect_format
from pg_index_advisor.core.json_parser import parse_json_plan
from pg_index_advisor.core.models import LocalizedText, ParseResult
from pg_index_advisor.core.text_parser import parse_text_plan

logger = logging.getLogger(__name__)

_PARSERS = {
    "json": parse_json_plan,
    "text": parse_text_plan,
}


def validate_plan_text(plan: Any, max_bytes: Optional[int] = None) -> str:
    if not isinstance(plan, str) or not plan.strip():
        raise InvalidInput("plan must be a non-empty string")
    limit = settings.MAX_PLAN_BYTES if max_bytes is None else max_bytes
    size = len(plan.encode("utf-8"))
    if size > limit:
        raise InvalidInput(
            f"plan is {size} bytes; limit is {limit}",
            message=LocalizedText(
                ru="План слишком большой",
                en="Plan is too large",
            ),
        )
    return plan


def parse_plan(text: Any, fmt: Optional[str] = "auto") -> ParseResult:
    """
    Parse ``EXPLAIN`` output in either grammar.

    Raises ``InvalidInput`` for empty or oversized input and ``MalformedInput``
    when the chosen grammar cannot reconstruct a complete tree.
    """
    text = validate_plan_text(text)
    chosen = detect_format(text, fmt)
    logger.debug("parsing plan as %s (hint=%s, %d chars)", chosen, fmt, len(text))
    return _PARSERS[chosen](text)
