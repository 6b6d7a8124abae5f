"""Custom exception hierarchy for vaultrag."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Machine-readable reason attached to every :class:`VaultRAGError`."""

    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    CONFIGURATION_MISSING = "CONFIGURATION_MISSING"
    VECTOR_BACKEND_NOT_LOADED = "VECTOR_BACKEND_NOT_LOADED"
    VECTOR_TABLE_MISSING = "VECTOR_TABLE_MISSING"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class VaultRAGError(Exception):
    """Base exception for all vaultrag errors."""

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str = "",
        *,
        code: ErrorCode | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.cause = cause


class ConfigError(VaultRAGError):
    """Raised when configuration is invalid."""

    default_code = ErrorCode.CONFIGURATION_MISSING


class IndexingError(VaultRAGError):
    """Raised when an indexing pass fails as a whole."""


class LoaderError(VaultRAGError):
    """Raised when a loader is misused (not for per-file read failures)."""


class StorageError(VaultRAGError):
    """Raised when a storage backend operation fails."""


class SearchError(VaultRAGError):
    """Raised when a search request is invalid."""


class CollaboratorUnavailableError(VaultRAGError):
    """Raised when a required embedding or summarization collaborator is missing."""

    default_code = ErrorCode.PROVIDER_NOT_FOUND


class EmbeddingError(VaultRAGError):
    """Raised when the embedding collaborator fails or times out."""

    default_code = ErrorCode.MODEL_UNAVAILABLE


class VectorBackendUnavailableError(StorageError):
    """Raised when the vector backend cannot serve queries.

    Distinct from an empty result: callers use it to tell a broken index
    from one that simply has no matches.
    """

    default_code = ErrorCode.VECTOR_BACKEND_NOT_LOADED
