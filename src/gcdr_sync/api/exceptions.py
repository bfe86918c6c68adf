#!/usr/bin/env python3
"""Exception Hierarchy for the GCDR sync engine.

This module provides a structured exception hierarchy for every failure the
sync engine can meet: configuration, authentication against either platform,
registry API responses, network problems, and the sync-level outcomes that
never come from an HTTP call (dependency aborts, unresolvable conflicts,
write-back failures).

Design Principles:
    - All exceptions inherit from GCDRSyncError
    - Exceptions preserve context (original error, timestamps, details)
    - Exceptions are categorized by recoverability
    - The orchestrator's per-action ``except GCDRSyncError`` is exhaustive

Exception Hierarchy:
    GCDRSyncError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── AuthenticationError (fatal for the whole run)
    │   └── TokenFetchError
    ├── APIError
    │   ├── NotFoundError
    │   ├── ConflictError
    │   ├── ValidationError
    │   └── ServerError
    ├── NetworkError (recoverable - retry)
    │   ├── ConnectionError
    │   └── TimeoutError
    └── SyncError
        ├── UnresolvableConflictError
        ├── DependencyAbortError
        └── WriteBackError
"""
from datetime import datetime, timezone
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class GCDRSyncError(Exception):
    """Base exception for all sync-engine errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "AUTHENTICATION_ERROR")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether a re-run might succeed without operator action
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================

class ConfigurationError(GCDRSyncError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Authentication Errors (Fatal for the run)
# ============================================

class AuthenticationError(GCDRSyncError):
    """Raised on 401/403 from either platform.

    Authentication problems are systemic, not per-entity: they are never
    retried and they stop the whole sync run.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if status_code:
            details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        kwargs.setdefault("code", "AUTHENTICATION_ERROR")
        super().__init__(
            message,
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.status_code = status_code
        self.endpoint = endpoint


class TokenFetchError(AuthenticationError):
    """Raised when a source-platform JWT cannot be obtained."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(
            message,
            status_code=status_code,
            code="TOKEN_FETCH_ERROR",
            **kwargs,
        )


# ============================================
# API Errors
# ============================================

class APIError(GCDRSyncError):
    """Base class for API response errors.

    Attributes:
        status_code: HTTP status code
        endpoint: API endpoint that was called
        response_body: Raw response body (may be truncated in details)
        method: HTTP method
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: Optional[str] = None,
        response_body: Optional[str] = None,
        method: str = "GET",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        if method:
            details["method"] = method
        if response_body:
            details["response_body"] = response_body[:500] if len(response_body) > 500 else response_body

        kwargs.setdefault("recoverable", status_code >= 500)
        kwargs.setdefault("code", f"API_ERROR_{status_code}")

        super().__init__(
            message,
            details=details,
            **kwargs,
        )
        self.status_code = status_code
        self.endpoint = endpoint
        self.response_body = response_body
        self.method = method


class NotFoundError(APIError):
    """Raised when the requested resource does not exist (HTTP 404)."""

    def __init__(self, message: str = "Resource not found", **kwargs):
        kwargs.setdefault("status_code", 404)
        super().__init__(
            message,
            code="NOT_FOUND",
            recoverable=False,
            **kwargs,
        )


class ConflictError(APIError):
    """Raised when the registry reports the entity already exists (HTTP 409)."""

    def __init__(self, message: str = "Entity already exists", **kwargs):
        kwargs.setdefault("status_code", 409)
        super().__init__(
            message,
            code="CONFLICT",
            recoverable=False,
            **kwargs,
        )


class ValidationError(APIError):
    """Raised when the registry rejects a payload (HTTP 400/422).

    The response body is kept in full on ``response_body`` for diagnosis.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 422)
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field

        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


class ServerError(APIError):
    """Raised when the server returns a 5xx error."""

    def __init__(self, message: str = "Server error", **kwargs):
        kwargs.setdefault("status_code", 500)
        super().__init__(
            message,
            code="SERVER_ERROR",
            recoverable=True,
            **kwargs,
        )


# ============================================
# Network Errors (Usually Recoverable)
# ============================================

class NetworkError(GCDRSyncError):
    """Base class for network-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionError(NetworkError):
    """Raised when connection to server fails."""

    def __init__(
        self,
        message: str = "Failed to connect to server",
        host: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details=details,
            **kwargs,
        )


class TimeoutError(NetworkError):
    """Raised when a single HTTP call exceeds its timeout."""

    def __init__(
        self,
        message: str = "Request timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="TIMEOUT_ERROR",
            details=details,
            **kwargs,
        )


# ============================================
# Sync Errors
# ============================================

class SyncError(GCDRSyncError):
    """Base class for synchronization errors."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)


class UnresolvableConflictError(SyncError):
    """Raised when a create returned 409 but no entity matches the derived code.

    Attributes:
        entity_kind: customer, asset or device
        name: Name sent in the create payload
        derived_code: Natural key used for the lookup
    """

    def __init__(self, entity_kind: str, name: str, derived_code: str, **kwargs):
        message = (
            f"GCDR {entity_kind} conflict for {name!r} could not be resolved: "
            f"no {entity_kind} found with code {derived_code!r}"
        )
        details = kwargs.pop("details", {})
        details["entity_kind"] = entity_kind
        details["name"] = name
        details["derived_code"] = derived_code
        super().__init__(
            message,
            code="UNRESOLVABLE_CONFLICT",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.entity_kind = entity_kind
        self.name = name
        self.derived_code = derived_code


class DependencyAbortError(SyncError):
    """Synthetic outcome for an action whose required parent failed.

    Never raised by an API call; the orchestrator builds it locally so that
    aborted actions carry the same error shape as attempted ones.
    """

    def __init__(self, message: str, parent_tb_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if parent_tb_id:
            details["parent_tb_id"] = parent_tb_id
        super().__init__(
            message,
            code="DEPENDENCY_ABORT",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.parent_tb_id = parent_tb_id


class WriteBackError(SyncError):
    """Raised when the downstream ID could not be written to the source platform."""

    def __init__(
        self,
        message: str,
        entity_kind: Optional[str] = None,
        source_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity_kind:
            details["entity_kind"] = entity_kind
        if source_id:
            details["source_id"] = source_id
        super().__init__(
            message,
            code="WRITE_BACK_ERROR",
            details=details,
            recoverable=True,
            **kwargs,
        )


def is_fatal_for_run(error: BaseException) -> bool:
    """Return True when an error must stop the whole sync run."""
    return isinstance(error, AuthenticationError)


# ============================================
# Exports
# ============================================

__all__ = [
    # Base
    "GCDRSyncError",
    # Configuration
    "ConfigurationError",
    # Authentication
    "AuthenticationError",
    "TokenFetchError",
    # API
    "APIError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "ServerError",
    # Network
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    # Sync
    "SyncError",
    "UnresolvableConflictError",
    "DependencyAbortError",
    "WriteBackError",
    # Helpers
    "is_fatal_for_run",
]
