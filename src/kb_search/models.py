"""
Document records consumed by the retrieval core.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

_ID_LENGTH = 16


def make_document_id(title: str, content: str, category: str | None = None) -> str:
    """Content-addressed id: identical title+content+category always hash alike."""
    material = f"{title.strip()}{content.strip()}{(category or '').strip()}"
    return hashlib.md5(material.encode("utf-8")).hexdigest()[:_ID_LENGTH]


class Document(BaseModel):
    """A short knowledge document. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default="", description="Stable id, derived from the content when omitted")
    title: str = Field(default="", description="Human readable title")
    content: str = Field(default="", description="Searchable body text")
    category: str = Field(default="general", description="Category or topic path")
    source: str = Field(default="knowledge-base", description="Where the document came from")
    version: str = Field(default="unknown", description="Product version the document refers to")

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id"):
            data = dict(data)
            data["id"] = make_document_id(
                str(data.get("title") or ""),
                str(data.get("content") or ""),
                str(data.get("category") or "general"),
            )
        return data

    def embedding_text(self) -> str:
        """Text submitted to embedding providers."""
        return self.content if self.content.strip() else self.title

    def search_text(self) -> str:
        """Text indexed by the lexical engine."""
        return f"{self.title}\n{self.content}"


def load_documents(path: str | Path) -> list[Document]:
    """Load documents from a JSON file holding a list or ``{"documents": [...]}``."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Cannot read documents from {path}: {exc}") from exc
    if isinstance(raw, dict):
        raw = raw.get("documents", [])
    if not isinstance(raw, list):
        raise ValidationError(f"Expected a list of documents in {path}")

    documents: list[Document] = []
    for index, record in enumerate(raw):
        if not isinstance(record, dict):
            raise ValidationError(f"Document #{index} in {path} is not an object")
        try:
            documents.append(Document.model_validate(record))
        except PydanticValidationError as exc:
            raise ValidationError(f"Document #{index} in {path} is invalid: {exc}") from exc
    return documents
