"""
Error taxonomy for plan analysis.

Input and parse failures are client errors the transport maps to 400;
``InternalError`` marks a bug in metric or rule code and maps to 500.
Every error carries a bilingual message suitable for direct display.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pg_index_advisor.core.models import LocalizedText


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    MALFORMED_INPUT = "MALFORMED_INPUT"
    UNPARSABLE_HEADER = "UNPARSABLE_HEADER"
    FORBIDDEN = "FORBIDDEN"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PlanAdvisorError(Exception):
    """Base class; ``detail`` is an English diagnostic for logs and 400 bodies."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    message = LocalizedText(
        ru="Ошибка при анализе плана",
        en="Error analyzing plan",
    )

    def __init__(self, detail: str = "", message: Optional[LocalizedText] = None):
        super().__init__(detail or self.message.en)
        self.detail = detail
        if message is not None:
            self.message = message

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message.ru,
            "errorEn": self.message.en,
            "code": self.code.value,
        }
        if self.detail and self.code is not ErrorCode.INTERNAL_ERROR:
            body["detail"] = self.detail
        return body


class InvalidInput(PlanAdvisorError):
    code = ErrorCode.INVALID_INPUT
    message = LocalizedText(
        ru="План не указан",
        en="Plan not provided",
    )


class MalformedInput(PlanAdvisorError):
    code = ErrorCode.MALFORMED_INPUT
    message = LocalizedText(
        ru="Неверный формат плана. Убедитесь что это вывод EXPLAIN ANALYZE.",
        en="Invalid plan format. Make sure this is EXPLAIN ANALYZE output.",
    )


class UnparsableHeader(MalformedInput):
    """A node header line that could not be split into its cost/actual groups."""

    code = ErrorCode.UNPARSABLE_HEADER

    def __init__(self, line_number: int, line: str, reason: str):
        super().__init__(f"line {line_number}: {reason}: {line.strip()!r}")
        self.line_number = line_number
        self.line = line


class Forbidden(PlanAdvisorError):
    """Missing or wrong API key on a protected route."""

    code = ErrorCode.FORBIDDEN
    message = LocalizedText(
        ru="Требуется аутентификация. Передайте Bearer токен.",
        en="Authentication required. Please provide a Bearer token.",
    )


class InternalError(PlanAdvisorError):
    code = ErrorCode.INTERNAL_ERROR


def is_client_error(exc: BaseException) -> bool:
    return isinstance(exc, (InvalidInput, MalformedInput))


def http_status_for(exc: BaseException) -> int:
    if isinstance(exc, Forbidden):
        return 403
    return 400 if is_client_error(exc) else 500
