"""
Pinecone REST backend built on httpx.

Control-plane calls (describe/create) go to the Pinecone API host; data-plane
calls (upsert/query/delete/stats) go to the per-index host reported by
``describe``. Non-2xx responses and transport failures are both surfaced as
:class:`ProviderUnavailableError`, distinguished by ``status_code``.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from ..config import Settings
from ..errors import ConfigurationError, ProviderUnavailableError
from .base import CollectionInfo, VectorMatch, VectorRecord

logger = logging.getLogger(__name__)

CONTROL_PLANE_URL = "https://api.pinecone.io"
API_VERSION = "2024-07"


class PineconeBackend:
    """Vector service operations against Pinecone serverless indexes."""

    def __init__(
        self,
        *,
        api_key: str | None,
        cloud: str = "aws",
        region: str = "us-east-1",
        timeout: float = 30.0,
        control_plane_url: str = CONTROL_PLANE_URL,
        client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("PINECONE_API_KEY is required for the pinecone backend")
        self.cloud = cloud
        self.region = region
        self.control_plane_url = control_plane_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = {
            "Api-Key": api_key,
            "X-Pinecone-API-Version": API_VERSION,
            "Accept": "application/json",
        }
        self._hosts: dict[str, str] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "PineconeBackend":
        return cls(
            api_key=settings.pinecone_api_key,
            cloud=settings.pinecone_cloud,
            region=settings.pinecone_region,
            timeout=settings.request_timeout,
        )

    def close(self) -> None:
        self._client.close()

    def describe_collection(
        self, name: str, *, timeout: float | None = None
    ) -> CollectionInfo | None:
        response = self._request(
            "GET",
            f"{self.control_plane_url}/indexes/{name}",
            timeout=timeout,
            allow_statuses=(404,),
        )
        if response.status_code == 404:
            return None
        body = response.json()
        host = body.get("host")
        if host:
            self._hosts[name] = host if host.startswith("http") else f"https://{host}"
        status = body.get("status") or {}
        return CollectionInfo(
            name=str(body.get("name", name)),
            dimension=int(body.get("dimension", 0)),
            metric=str(body.get("metric", "cosine")),
            ready=bool(status.get("ready", False)),
        )

    def create_collection(
        self,
        name: str,
        *,
        dimension: int,
        metric: str = "cosine",
        timeout: float | None = None,
    ) -> None:
        payload = {
            "name": name,
            "dimension": dimension,
            "metric": metric,
            "spec": {"serverless": {"cloud": self.cloud, "region": self.region}},
        }
        response = self._request(
            "POST",
            f"{self.control_plane_url}/indexes",
            json=payload,
            timeout=timeout,
            allow_statuses=(409,),
        )
        if response.status_code == 409:
            logger.info("Pinecone index %s already exists", name)
        else:
            logger.info("Created Pinecone index %s (dimension %d, %s)", name, dimension, metric)

    def upsert(
        self,
        name: str,
        namespace: str,
        records: Sequence[VectorRecord],
        *,
        timeout: float | None = None,
    ) -> int:
        if not records:
            return 0
        payload = {
            "namespace": namespace,
            "vectors": [
                {"id": record.id, "values": list(record.values), "metadata": record.metadata}
                for record in records
            ],
        }
        response = self._request(
            "POST", f"{self._host(name)}/vectors/upsert", json=payload, timeout=timeout
        )
        return int(response.json().get("upsertedCount", len(records)))

    def query(
        self,
        name: str,
        namespace: str,
        vector: Sequence[float],
        *,
        top_k: int,
        filter: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> list[VectorMatch]:
        payload: dict[str, Any] = {
            "namespace": namespace,
            "vector": list(vector),
            "topK": top_k,
            "includeMetadata": True,
        }
        # Pinecone rejects an explicitly empty filter object.
        if filter:
            payload["filter"] = filter
        response = self._request("POST", f"{self._host(name)}/query", json=payload, timeout=timeout)
        return [
            VectorMatch(
                id=str(match["id"]),
                score=float(match.get("score", 0.0)),
                metadata=dict(match.get("metadata") or {}),
            )
            for match in response.json().get("matches", [])
        ]

    def delete_all(self, name: str, namespace: str, *, timeout: float | None = None) -> None:
        self._request(
            "POST",
            f"{self._host(name)}/vectors/delete",
            json={"deleteAll": True, "namespace": namespace},
            timeout=timeout,
            # Deleting from a namespace that was never written is not an error.
            allow_statuses=(404,),
        )

    def count(self, name: str, namespace: str, *, timeout: float | None = None) -> int:
        response = self._request(
            "POST", f"{self._host(name)}/describe_index_stats", json={}, timeout=timeout
        )
        namespaces = response.json().get("namespaces") or {}
        return int((namespaces.get(namespace) or {}).get("vectorCount", 0))

    def _host(self, name: str) -> str:
        host = self._hosts.get(name)
        if host is None:
            if self.describe_collection(name) is None or name not in self._hosts:
                raise ConfigurationError(f"Pinecone index {name!r} does not exist")
            host = self._hosts[name]
        return host

    def _request(
        self,
        method: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
        allow_statuses: tuple[int, ...] = (),
    ) -> httpx.Response:
        kwargs: dict[str, Any] = {"headers": self._headers}
        if json is not None:
            kwargs["json"] = json
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(
                f"Pinecone {method} {url} failed (network error): {exc}",
                provider="pinecone",
            ) from exc

        if response.is_success or response.status_code in allow_statuses:
            return response
        raise ProviderUnavailableError(
            f"Pinecone {method} {url} returned HTTP {response.status_code}: {response.text[:300]}",
            status_code=response.status_code,
            provider="pinecone",
        )
