"""
Finsync - Custom Exceptions
Application-specific exceptions with HTTP error handling
"""
from typing import Optional, Any, Dict
from fastapi import HTTPException, status


class FinsyncException(Exception):
    """Base exception for Finsync."""

    def __init__(
        self,
        message: str = "An error occurred",
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# =========================
# Orchestration Exceptions
# =========================

class OrchestrationError(FinsyncException):
    """Provider orchestration errors."""
    pass


class NonRetryableProviderError(OrchestrationError):
    """A provider failed in a way another provider cannot fix (auth, validation)."""

    def __init__(self, message: str = "Provider request failed", kind: str = "unknown",
                 details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        super().__init__(message=message, code=kind.upper(), details=details)


class ProvidersExhaustedError(OrchestrationError):
    """Every candidate provider failed or was skipped."""

    def __init__(self, message: str = "All providers exhausted",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="ALL_PROVIDERS_EXHAUSTED", details=details)


class ProviderNotRegisteredError(OrchestrationError):
    """No adapter registered under the requested provider name."""

    def __init__(self, provider: str = ""):
        message = f"Provider '{provider}' is not registered" if provider else "Provider not registered"
        super().__init__(message=message, code="PROVIDER_NOT_REGISTERED")


class InvalidMappingError(OrchestrationError):
    """Institution-provider mapping violates its invariants."""

    def __init__(self, message: str = "Invalid institution provider mapping",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_MAPPING", details=details)


# =========================
# Database Exceptions
# =========================

class DatabaseError(FinsyncException):
    """Database related errors."""
    pass


class AuditWriteError(DatabaseError):
    """Connection attempt could not be persisted."""

    def __init__(self, message: str = "Connection attempt write failed"):
        super().__init__(message=message, code="AUDIT_WRITE_FAILED")


# =========================
# HTTP Exception Helpers
# =========================

def raise_not_found(message: str = "Resource not found"):
    """Raise 404 Not Found exception."""
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=message
    )


def raise_service_unavailable(message: str = "Service unavailable"):
    """Raise 503 Service Unavailable exception."""
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=message
    )
