"""Admin credential verification."""

import hmac
import logging
from typing import Any, Optional

from .errors import AuthorizationError

logger = logging.getLogger(__name__)


def verify_admin_key(provided: Optional[Any], expected: str) -> None:
    """Compare an admin key against the configured secret in constant time.

    Raises:
        AuthorizationError: If the key is missing or does not match
    """
    matched = (
        isinstance(provided, str)
        and bool(provided)
        and hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
    )
    if not matched:
        logger.warning("Admin authorization failed")
        raise AuthorizationError("Unauthorized - Admin access required")
