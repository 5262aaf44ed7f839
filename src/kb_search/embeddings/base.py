"""
Embedding value type and the provider protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from ..models import Document


@dataclass(frozen=True)
class Embedding:
    """A vector tagged with the provider mode that produced it."""

    values: tuple[float, ...]
    mode: str

    @property
    def dimension(self) -> int:
        return len(self.values)

    @property
    def is_zero(self) -> bool:
        return not any(self.values)

    def as_list(self) -> list[float]:
        return list(self.values)


class Embedder(Protocol):
    """Uniform text -> fixed-length vector contract."""

    mode: str
    dimension: int
    batch_size: int
    is_remote: bool

    def is_available(self) -> bool:
        """Return True when the provider has usable credentials."""

    def prepare(self, documents: Iterable[Document]) -> bool:
        """
        Build any corpus-derived state (no-op for remote providers).

        Returns True when vectors embedded before this call are no longer
        comparable with vectors embedded after it.
        """

    def embed_batch(
        self, texts: Sequence[str], *, timeout: float | None = None
    ) -> list[Embedding]:
        """Embed texts in one provider call, preserving input order."""

    def embed(self, text: str, *, timeout: float | None = None) -> Embedding:
        """Embed a single text."""
