"""
Bearer API key check for the analysis routes.

When ``AUTH_ENABLED`` is off every request passes. Otherwise a missing or
wrong key raises ``Forbidden``, which main.py renders in the same bilingual
``{success, error, errorEn, code}`` body as analysis errors.
"""

import hmac
import logging
from typing import Optional

from fastapi import Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pg_index_advisor.core.config import settings
from pg_index_advisor.core.errors import Forbidden
from pg_index_advisor.core.models import LocalizedText

logger = logging.getLogger(__name__)

# auto_error=False so a missing header reaches verify_token instead of FastAPI's own 403
security = HTTPBearer(auto_error=False)

INVALID_KEY = LocalizedText(
    ru="Неверный API ключ. Передайте действительный Bearer токен.",
    en="Invalid API key. Please provide a valid Bearer token.",
)


def verify_token(credentials: Optional[HTTPAuthorizationCredentials] = Security(security)) -> Optional[str]:
    """Return the accepted key, or ``None`` when auth is disabled."""
    if not settings.AUTH_ENABLED:
        return None

    if credentials is None:
        logger.warning("rejected request without bearer token")
        raise Forbidden("missing bearer token")

    token = credentials.credentials
    if not hmac.compare_digest(token.encode("utf-8"), settings.API_KEY.encode("utf-8")):
        logger.warning("rejected request with invalid API key")
        raise Forbidden("invalid API key", INVALID_KEY)

    return token
