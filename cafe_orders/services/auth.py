"""
Admin Authentication

Every mutating admin endpoint (menu, variants, shop status, order
status) and the order list go through ``verify_admin_token``: the
``Authorization`` header must carry ``Bearer <token>`` with a token
listed in ``ADMIN_API_TOKENS``. Presence of a header alone is not
enough.
"""

import hmac
import logging
from typing import Optional

from cafe_orders.core.config import get_settings
from cafe_orders.core.errors import AuthenticationError

logger = logging.getLogger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def is_admin_token(token: Optional[str]) -> bool:
    if not token:
        return False
    return any(
        hmac.compare_digest(token.encode(), allowed.encode())
        for allowed in get_settings().admin_tokens_list
    )


def verify_admin_token(authorization: Optional[str]) -> str:
    """
    Check an ``Authorization`` header value.

    Returns:
        The verified token

    Raises:
        AuthenticationError: Header missing, malformed or token unknown
    """
    token = extract_bearer_token(authorization)
    if token is None:
        raise AuthenticationError("Unauthorized - Authentication required")

    if not get_settings().admin_tokens_list:
        logger.error("Admin request rejected: ADMIN_API_TOKENS is not configured")
        raise AuthenticationError("Unauthorized - Admin access is not configured")

    if not is_admin_token(token):
        logger.warning("Admin request rejected: unknown bearer token")
        raise AuthenticationError("Unauthorized - Invalid admin token")

    return token
