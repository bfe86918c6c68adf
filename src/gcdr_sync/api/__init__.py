"""HTTP layer for the GCDR sync engine.

This package provides the transport clients for both platforms involved in a
sync run and the exception hierarchy they share.

Classes:
    GCDRClient: HTTP client for the GCDR registry (API key + tenant headers)
    TBClient: HTTP client for the ThingsBoard source platform
    TBTokenManager: ThingsBoard JWT provider (static token or login)

Exceptions:
    GCDRSyncError: Base exception for all sync-engine errors
    ConfigurationError: Missing or invalid configuration
    AuthenticationError: 401/403 from either platform (fatal for a run)
    APIError: Non-2xx API responses
    NetworkError: Network connectivity issues
    SyncError: Sync-level failures (conflicts, aborts, write-back)

Concurrency:
    process_concurrent: Bounded fan-out over a list of items
"""
from .auth import TBTokenManager
from .client import IDEMPOTENT_METHODS, GCDRClient
from .exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    ConflictError,
    ConnectionError,
    DependencyAbortError,
    GCDRSyncError,
    NetworkError,
    NotFoundError,
    ServerError,
    SyncError,
    TimeoutError,
    TokenFetchError,
    UnresolvableConflictError,
    ValidationError,
    WriteBackError,
    is_fatal_for_run,
)
from .resilience import process_concurrent
from .thingsboard import TBClient

__all__ = [
    # Clients
    "GCDRClient",
    "TBClient",
    "TBTokenManager",
    "IDEMPOTENT_METHODS",
    # Exceptions - Base
    "GCDRSyncError",
    "ConfigurationError",
    # Exceptions - Auth
    "AuthenticationError",
    "TokenFetchError",
    # Exceptions - API
    "APIError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "ServerError",
    # Exceptions - Network
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    # Exceptions - Sync
    "SyncError",
    "UnresolvableConflictError",
    "DependencyAbortError",
    "WriteBackError",
    "is_fatal_for_run",
    # Concurrency
    "process_concurrent",
]
