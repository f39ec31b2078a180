from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class RetrievalConfig:
    top_k: int = 5
    similarity_threshold: float = 0.5
    max_context_length: int = 3000
    min_relevant_chunks: int = 1
    min_truncated_chars: int = 100


@dataclass(frozen=True)
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return str((self.metadata or {}).get("text") or "")


@dataclass(frozen=True)
class RetrievalSource:
    id: str
    score: float
    metadata: dict[str, Any]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "score": self.score,
            "metadata": dict(self.metadata),
        }


@dataclass
class RetrievalResult:
    context: str = ""
    sources: list[RetrievalSource] = field(default_factory=list)
    total_matches: int = 0
    relevant_matches: int = 0

    def to_dict(self) -> dict:
        return {
            "context": self.context,
            "sources": [source.to_dict() for source in self.sources],
            "total_matches": self.total_matches,
            "relevant_matches": self.relevant_matches,
        }


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]:
        ...


class VectorIndex(Protocol):
    async def query(self, vector: list[float], top_k: int, include_metadata: bool = True) -> list[VectorMatch]:
        ...
