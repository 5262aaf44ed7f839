"""
Prioritized embedding provider chain.

The active provider is chosen once, at construction, as the first provider
reporting itself available. Remote failures get one attempt at the next
available remote provider with the same dimension; the local provider is
never used to stand in for a remote one, because its vectors have a
different dimension and would corrupt a remote-backed collection.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from ..config import Settings
from ..errors import ConfigurationError, ProviderUnavailableError
from ..models import Document
from ..retry import Deadline
from .base import Embedder, Embedding
from .providers import AzureOpenAIEmbedder, LocalEmbedder, OpenAIEmbedder

logger = logging.getLogger(__name__)


class EmbeddingProviderChain:
    """Polymorphic ``embed``/``embed_batch`` over an ordered set of providers."""

    def __init__(
        self,
        providers: Sequence[Embedder],
        *,
        request_timeout: float = 30.0,
        expected_dimension: int | None = None,
    ) -> None:
        available = [provider for provider in providers if provider.is_available()]
        if not available:
            raise ConfigurationError("No embedding provider is available")

        self.active: Embedder = available[0]
        self.fallbacks: list[Embedder] = [
            provider
            for provider in available[1:]
            if self.active.is_remote
            and provider.is_remote
            and provider.dimension == self.active.dimension
        ]
        self.request_timeout = request_timeout
        self.expected_dimension = expected_dimension
        logger.info(
            "Using %s embeddings (dimension %d, fallbacks: %s)",
            self.active.mode,
            self.active.dimension,
            ", ".join(p.mode for p in self.fallbacks) or "none",
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingProviderChain":
        return cls(
            [
                AzureOpenAIEmbedder.from_settings(settings),
                OpenAIEmbedder.from_settings(settings),
                LocalEmbedder(),
            ],
            request_timeout=settings.request_timeout,
        )

    @property
    def mode(self) -> str:
        return self.active.mode

    @property
    def dimension(self) -> int:
        return self.active.dimension

    @property
    def batch_size(self) -> int:
        return self.active.batch_size

    @property
    def is_remote(self) -> bool:
        return self.active.is_remote

    def check_dimension(self) -> None:
        if self.expected_dimension is not None and self.expected_dimension != self.dimension:
            raise ConfigurationError(
                f"Active embedding provider {self.mode!r} produces {self.dimension}-d vectors "
                f"but the vector collection expects {self.expected_dimension}-d vectors"
            )

    def prepare(self, documents: Iterable[Document]) -> bool:
        return self.active.prepare(documents)

    def embed_batch(
        self, texts: Sequence[str], *, deadline: Deadline | None = None
    ) -> list[Embedding]:
        """Embed ``texts`` with the active provider, falling back once on failure."""
        self.check_dimension()
        if not texts:
            return []

        last_error: ProviderUnavailableError | None = None
        for provider in (self.active, *self.fallbacks):
            if deadline is not None:
                deadline.check(f"{provider.mode} embedding")
            try:
                return self._embed_with(provider, texts, deadline)
            except ProviderUnavailableError as exc:
                logger.warning("%s embedding failed: %s", provider.mode, exc)
                last_error = exc

        assert last_error is not None
        raise last_error

    def embed(self, text: str, *, deadline: Deadline | None = None) -> Embedding:
        return self.embed_batch([text], deadline=deadline)[0]

    def _embed_with(
        self,
        provider: Embedder,
        texts: Sequence[str],
        deadline: Deadline | None,
    ) -> list[Embedding]:
        results: list[Embedding] = []
        for start in range(0, len(texts), provider.batch_size):
            timeout = (
                deadline.clamp(self.request_timeout)
                if deadline is not None
                else self.request_timeout
            )
            batch = list(texts[start : start + provider.batch_size])
            results.extend(provider.embed_batch(batch, timeout=timeout))
        for embedding in results:
            if embedding.dimension != provider.dimension:
                raise ProviderUnavailableError(
                    f"{provider.mode} returned a {embedding.dimension}-d vector, "
                    f"expected {provider.dimension}",
                    provider=provider.mode,
                )
        return results
