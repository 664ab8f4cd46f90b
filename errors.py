# --- File: errors.py ---
"""
Error taxonomy for NanoTDF envelope handling and entitlement resolution.

Every failure carries a stable code so callers can tell structural, cryptographic
and transient errors apart. Nothing in this project turns one of these into an
empty or default result.
"""
from typing import Any, Dict, Optional


class TDFError(Exception):
    """Base exception for envelope and entitlement operations."""

    code = "TDF_ERROR"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ConfigurationError(TDFError):
    """A required configuration value is missing or invalid."""
    code = "CONFIGURATION_ERROR"


class InvalidAttributeFormat(TDFError):
    """Attribute identifier does not match the namespace/name/value URI shape."""
    code = "INVALID_ATTRIBUTE_FORMAT"


class InvalidKasLocator(TDFError):
    """KAS location is ambiguous (no scheme) or cannot be encoded."""
    code = "INVALID_KAS_LOCATOR"


class MalformedEnvelope(TDFError):
    """Structural corruption of a serialized envelope."""
    code = "MALFORMED_ENVELOPE"


class BindingMismatch(TDFError):
    """Policy binding does not match the policy and wrapped key. Security event."""
    code = "BINDING_MISMATCH"


class AuthenticationFailed(TDFError):
    """AEAD tag verification failed for the payload."""
    code = "AUTHENTICATION_FAILED"


class UnwrapFailed(TDFError):
    """The wrapped DEK could not be recovered with the given KAS key."""
    code = "UNWRAP_FAILED"


class ResolutionUnavailable(TDFError):
    """The policy authority could not be reached or answered unusably."""
    code = "RESOLUTION_UNAVAILABLE"
    retryable = True


class KeyServiceUnavailable(TDFError):
    """The key access service could not be reached or answered unusably."""
    code = "KEY_SERVICE_UNAVAILABLE"
    retryable = True
