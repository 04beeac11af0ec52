"""
Error taxonomy for generation governance.

Every error carries the HTTP status a request handler should answer with.
"""

from typing import Any, Dict, Optional


class GovernanceError(Exception):
    """Base class for all governance errors."""
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for a JSON response body."""
        return {"error": self.message}


class ConfigurationError(GovernanceError):
    """Required backing credentials or configuration are missing."""
    http_status = 500


class AuthorizationError(GovernanceError):
    """Admin credential mismatch."""
    http_status = 403


class ValidationError(GovernanceError, ValueError):
    """Malformed input: unknown or out-of-range settings, bad amounts, missing identity."""
    http_status = 400


class RateLimitError(GovernanceError):
    """Generation blocked by governance.

    This is an expected, user-facing outcome rather than a fault. It carries
    the admission result so callers can report the status and wait time.
    """
    http_status = 429

    def __init__(self, message: str, result):
        super().__init__(message)
        self.result = result

    @property
    def status(self) -> str:
        return self.result.status.value

    @property
    def cooldown_seconds(self) -> int:
        return self.result.cooldown_seconds

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": "generation_blocked", "message": self.message}
        body.update(self.result.to_dict())
        return body


class UpstreamError(GovernanceError):
    """The external model provider failed; propagated with its status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.http_status = status_code or 502


class InternalError(GovernanceError):
    """Unexpected failure caught at a boundary."""
    http_status = 500
