from __future__ import annotations

import logging
from typing import Optional

from meetbot.retrieval.models import (
    Embedder,
    RetrievalConfig,
    RetrievalResult,
    RetrievalSource,
    VectorIndex,
    VectorMatch,
)

logger = logging.getLogger("meetbot.retrieval.ranker")

CONTEXT_SEPARATOR = "\n\n"


class RetrievalRanker:
    def __init__(self, embedder: Embedder, index: VectorIndex, config: Optional[RetrievalConfig] = None):
        self.embedder = embedder
        self.index = index
        self.config = config or RetrievalConfig()

    async def retrieve(self, query: str) -> RetrievalResult:
        """
        Embed the query, search the index and rank the matches.
        Any failure of the embedding or search service yields an empty result.
        """
        text = str(query or "").strip()
        if not text:
            return RetrievalResult()

        try:
            vector = await self.embedder.embed(text)
            matches = await self.index.query(vector, top_k=self.config.top_k, include_metadata=True)
        except Exception as exc:
            logger.error("Retrieval failed; continuing without context: %s", exc)
            return RetrievalResult()

        return self.rank(matches)

    def select(self, matches: list[VectorMatch]) -> list[VectorMatch]:
        relevant = [match for match in matches if match.score >= self.config.similarity_threshold]
        logger.info(
            "Found %s relevant matches above threshold %s",
            len(relevant),
            self.config.similarity_threshold,
        )
        if len(relevant) < self.config.min_relevant_chunks:
            logger.info("Not enough relevant matches, including top %s results", self.config.min_relevant_chunks)
            ranked = sorted(matches, key=lambda match: match.score, reverse=True)
            return ranked[: self.config.min_relevant_chunks]
        return relevant

    def rank(self, matches: list[VectorMatch]) -> RetrievalResult:
        if not matches:
            logger.info("No search results to process")
            return RetrievalResult()

        selected = self.select(list(matches))
        context, sources = self.build_context(selected)
        logger.info("Generated context length: %s characters from %s source(s)", len(context), len(sources))
        return RetrievalResult(
            context=context,
            sources=sources,
            total_matches=len(matches),
            relevant_matches=len(selected),
        )

    def build_context(self, matches: list[VectorMatch]) -> tuple[str, list[RetrievalSource]]:
        budget = int(self.config.max_context_length)
        parts: list[str] = []
        sources: list[RetrievalSource] = []
        used = 0

        for match in matches:
            text = match.text
            if not text:
                continue

            separator = len(CONTEXT_SEPARATOR) if parts else 0
            remaining = budget - used - separator
            metadata = dict(match.metadata)

            if len(text) <= remaining:
                parts.append(text)
                used += separator + len(text)
                sources.append(RetrievalSource(id=match.id, score=match.score, metadata=metadata))
                continue

            if remaining > self.config.min_truncated_chars:
                truncated = text[:remaining]
                parts.append(truncated)
                used += separator + len(truncated)
                metadata["text"] = truncated
                sources.append(RetrievalSource(id=match.id, score=match.score, metadata=metadata))
            break

        return CONTEXT_SEPARATOR.join(parts), sources
