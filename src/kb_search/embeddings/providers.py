"""
Embedding providers: Azure OpenAI, OpenAI and a local TF-IDF fallback.

The two remote providers wrap the ``openai`` SDK clients; the local provider
derives a fixed-size TF-IDF vector from the corpus vocabulary and needs no
network access.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Any, Iterable, Sequence

from openai import APIConnectionError, APIStatusError, AzureOpenAI, OpenAI

from ..config import Settings
from ..errors import ProviderUnavailableError
from ..models import Document
from ..text import tokenize
from .base import Embedding

logger = logging.getLogger(__name__)

REMOTE_DIMENSION = 1536
LOCAL_DIMENSION = 384


def truncate_input(text: str, max_chars: int) -> str:
    """Hard cut-off that keeps a request under the provider's token ceiling."""
    return text if len(text) <= max_chars else text[:max_chars]


class _RemoteEmbedder:
    """Shared request/response handling for OpenAI-compatible embedding APIs."""

    mode = "remote"
    dimension = REMOTE_DIMENSION
    batch_size = 16
    is_remote = True

    def __init__(self, *, client: Any | None, model: str, max_input_chars: int) -> None:
        self._client = client
        self.model = model
        self.max_input_chars = max_input_chars

    def is_available(self) -> bool:
        return self._client is not None

    def prepare(self, documents: Iterable[Document]) -> bool:
        return False

    def embed_batch(
        self, texts: Sequence[str], *, timeout: float | None = None
    ) -> list[Embedding]:
        if not texts:
            return []
        if self._client is None:
            raise ProviderUnavailableError(
                f"{self.mode} embeddings are not configured", provider=self.mode
            )
        if len(texts) > self.batch_size:
            raise ValueError(
                f"{self.mode} accepts at most {self.batch_size} inputs per call, got {len(texts)}"
            )

        request: dict[str, Any] = {
            "model": self.model,
            "input": [truncate_input(text, self.max_input_chars) for text in texts],
        }
        if timeout is not None:
            request["timeout"] = timeout

        try:
            response = self._client.embeddings.create(**request)
        except APIStatusError as exc:
            raise ProviderUnavailableError(
                f"{self.mode} embedding API returned HTTP {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
                provider=self.mode,
            ) from exc
        except APIConnectionError as exc:
            raise ProviderUnavailableError(
                f"{self.mode} embedding API unreachable (network error): {exc}",
                provider=self.mode,
            ) from exc

        ordered = sorted(response.data, key=lambda item: item.index)
        if len(ordered) != len(texts):
            raise ProviderUnavailableError(
                f"{self.mode} returned {len(ordered)} embeddings for {len(texts)} inputs",
                provider=self.mode,
            )
        return [
            Embedding(values=tuple(float(v) for v in item.embedding), mode=self.mode)
            for item in ordered
        ]

    def embed(self, text: str, *, timeout: float | None = None) -> Embedding:
        return self.embed_batch([text], timeout=timeout)[0]


class AzureOpenAIEmbedder(_RemoteEmbedder):
    """Azure OpenAI deployment (``text-embedding-ada-002`` by default)."""

    mode = "azure-openai"
    batch_size = 16

    def __init__(
        self,
        *,
        api_key: str | None = None,
        endpoint: str | None = None,
        deployment: str = "text-embedding-ada-002",
        api_version: str = "2024-02-01",
        max_input_chars: int = 8000,
        max_retries: int = 2,
        client: Any | None = None,
    ) -> None:
        if client is None and api_key and endpoint:
            client = AzureOpenAI(
                api_key=api_key,
                azure_endpoint=endpoint,
                api_version=api_version,
                max_retries=max_retries,
            )
        super().__init__(client=client, model=deployment, max_input_chars=max_input_chars)
        self.endpoint = endpoint

    @classmethod
    def from_settings(cls, settings: Settings) -> "AzureOpenAIEmbedder":
        return cls(
            api_key=settings.azure_openai_api_key,
            endpoint=settings.azure_openai_endpoint,
            deployment=settings.azure_openai_deployment,
            api_version=settings.azure_openai_api_version,
            max_input_chars=settings.max_input_chars,
            max_retries=settings.provider_max_retries,
        )


class OpenAIEmbedder(_RemoteEmbedder):
    """OpenAI embeddings API (``text-embedding-3-small`` by default)."""

    mode = "openai"
    batch_size = 50

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        max_input_chars: int = 8000,
        max_retries: int = 2,
        client: Any | None = None,
    ) -> None:
        if client is None and api_key:
            client = OpenAI(api_key=api_key, max_retries=max_retries)
        super().__init__(client=client, model=model, max_input_chars=max_input_chars)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAIEmbedder":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_embedding_model,
            max_input_chars=settings.max_input_chars,
            max_retries=settings.provider_max_retries,
        )


class LocalEmbedder:
    """
    Deterministic TF-IDF vectors over the corpus's most common terms.

    The vocabulary holds the ``dimension`` terms with the highest document
    frequency; each term owns one vector slot weighted ``tf * idf`` and the
    vector is L2-normalized. Texts sharing no vocabulary term embed to zeros.
    """

    mode = "local"
    batch_size = 100
    is_remote = False

    def __init__(self, dimension: int = LOCAL_DIMENSION) -> None:
        self.dimension = dimension
        self._vocabulary: dict[str, tuple[int, float]] = {}
        self.document_count = 0

    @property
    def vocabulary_size(self) -> int:
        return len(self._vocabulary)

    def is_available(self) -> bool:
        return True

    def prepare(self, documents: Iterable[Document]) -> bool:
        """Rebuild the vocabulary; True when vectors embedded before are now stale."""
        doc_freq: Counter[str] = Counter()
        count = 0
        for document in documents:
            count += 1
            doc_freq.update(set(tokenize(document.embedding_text())))

        top_terms = sorted(doc_freq.items(), key=lambda item: (-item[1], item[0]))
        vocabulary = {
            term: (slot, math.log(count / (freq + 1)) + 1.0)
            for slot, (term, freq) in enumerate(top_terms[: self.dimension])
        }
        changed = vocabulary != self._vocabulary
        self._vocabulary = vocabulary
        self.document_count = count
        logger.info(
            "Local vocabulary built: %d terms from %d documents", len(vocabulary), count
        )
        return changed

    def embed(self, text: str, *, timeout: float | None = None) -> Embedding:
        vocabulary = self._vocabulary
        vector = [0.0] * self.dimension
        for term, tf in Counter(tokenize(text)).items():
            entry = vocabulary.get(term)
            if entry is not None:
                slot, idf = entry
                vector[slot] = tf * idf

        magnitude = math.sqrt(sum(v * v for v in vector))
        if magnitude > 0:
            vector = [v / magnitude for v in vector]
        return Embedding(values=tuple(vector), mode=self.mode)

    def embed_batch(
        self, texts: Sequence[str], *, timeout: float | None = None
    ) -> list[Embedding]:
        return [self.embed(text) for text in texts]
