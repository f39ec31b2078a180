from __future__ import annotations

import asyncio
import logging
from typing import Any

from pinecone import Pinecone

from meetbot.retrieval.models import VectorMatch

logger = logging.getLogger("meetbot.retrieval.vector_store")


def _get(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def to_matches(response: Any) -> list[VectorMatch]:
    """Convert a Pinecone query response (object or dict) into VectorMatch rows."""
    raw_matches = _get(response, "matches") or []
    matches = []
    for item in raw_matches:
        metadata = _get(item, "metadata") or {}
        matches.append(
            VectorMatch(
                id=str(_get(item, "id") or ""),
                score=float(_get(item, "score") or 0.0),
                metadata=dict(metadata),
            )
        )
    return matches


class PineconeVectorIndex:
    """
    Nearest-neighbour search over the knowledge index.
    The Pinecone client is synchronous, so queries run in a worker thread.
    """

    def __init__(self, api_key: str, index_name: str, namespace: str | None = None):
        self._client = Pinecone(api_key=api_key)
        self._index = self._client.Index(index_name)
        self.index_name = index_name
        self.namespace = namespace

    async def query(self, vector: list[float], top_k: int, include_metadata: bool = True) -> list[VectorMatch]:
        kwargs = {
            "vector": vector,
            "top_k": int(top_k),
            "include_metadata": include_metadata,
        }
        if self.namespace:
            kwargs["namespace"] = self.namespace
        response = await asyncio.to_thread(self._index.query, **kwargs)
        matches = to_matches(response)
        logger.debug("Pinecone query | index=%s matches=%s", self.index_name, len(matches))
        return matches
