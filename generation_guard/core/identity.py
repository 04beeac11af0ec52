"""
Request identity.

An identity is the triple (user id, IP address, session id). Quotas are
tracked against the canonical key; abuse detection runs per IP.
"""

from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ValidationError


DEFAULT_IP = "0.0.0.0"


@dataclass(frozen=True)
class Identity:
    """Who is asking for a generation."""
    ip_address: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        if not self.ip_address and not self.user_id:
            raise ValidationError("identity requires a user id or an IP address")

    @property
    def key(self) -> str:
        """Canonical key: the user id when authenticated, otherwise the IP."""
        if self.user_id:
            return f"user:{self.user_id}"
        return f"ip:{self.ip_address}"

    @property
    def abuse_key(self) -> str:
        """Key used for request-rate tracking and bans."""
        if self.ip_address:
            return f"ip:{self.ip_address}"
        return self.key

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


def user_key(user_id: str) -> str:
    """Canonical key for an authenticated user id."""
    if not user_id:
        raise ValidationError("User ID required")
    return f"user:{user_id}"


def resolve_client_ip(headers: Mapping[str, str], remote_addr: Optional[str] = None) -> str:
    """Pick the client IP from proxy headers, falling back to the socket address."""
    cf_ip = headers.get("CF-Connecting-IP")
    if cf_ip:
        return cf_ip.strip()
    real_ip = headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    forwarded = headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return remote_addr or DEFAULT_IP
