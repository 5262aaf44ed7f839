"""
Error taxonomy for the retrieval core.
"""

from __future__ import annotations


class KnowledgeSearchError(Exception):
    """Base class for all kb_search errors."""


class ConfigurationError(KnowledgeSearchError, ValueError):
    """Missing credentials, invalid settings or a dimension mismatch.

    Fatal at startup; never retried.
    """


class ProviderUnavailableError(KnowledgeSearchError, RuntimeError):
    """A remote embedding or vector-index call failed.

    ``status_code`` is set for non-2xx responses and left as ``None`` for
    network-level failures (connection refused, timeouts, DNS).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider

    @property
    def is_network_error(self) -> bool:
        return self.status_code is None

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class IndexNotReadyError(KnowledgeSearchError, RuntimeError):
    """The vector collection did not become ready within the allowed wait."""


class ValidationError(KnowledgeSearchError, ValueError):
    """A document is unusable (empty or too short to embed, malformed record)."""


class OperationCancelledError(KnowledgeSearchError, RuntimeError):
    """The caller's deadline expired or the operation was cancelled."""
