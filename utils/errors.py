"""
Error taxonomy for the connect broker.

Internal failures (crypto, network, provider responses) are converted to one
of these coarse kinds before they reach a client.  Every kind renders to the
same ``{"error": ..., "message": ...}`` JSON shape.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BrokerError(Exception):
    """Base class for every error this service reports to clients."""

    status_code: int = 500
    error: str = "Internal Server Error"
    message: str = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}


class ConfigurationError(BrokerError):
    """Required secret / salt / credential missing.  Fatal at startup."""

    error = "Configuration Error"
    message = "Service is misconfigured"


class DecryptionError(BrokerError):
    """Ciphertext was produced under another key, or was tampered with."""

    error = "Decryption Error"
    message = "Stored credentials could not be decrypted"


class OAuthExchangeError(BrokerError):
    """The provider rejected a code or refresh grant, or answered garbage."""

    status_code = 502
    error = "OAuth Exchange Failed"
    message = "Token exchange with YNAB failed"

    def __init__(self, message: Optional[str] = None, provider_error: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider_error = provider_error


class InvalidRequestError(BrokerError):
    status_code = 400
    error = "Bad Request"
    message = "Invalid request"


class AuthenticationRequired(BrokerError):
    status_code = 401
    error = "Unauthorized"
    message = "You must be logged in"


class RateLimitExceeded(BrokerError):
    status_code = 429
    error = "Too Many Requests"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Try again in {retry_after} seconds.")


class ForbiddenOrigin(BrokerError):
    """State-changing request whose ``Origin`` does not match ``Host``."""

    status_code = 403
    error = "Forbidden"
    message = "Invalid origin"
