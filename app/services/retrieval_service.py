"""
Retrieval: semantic search, HF rerank, and context pipeline.

Responsibility: Query Milvus, rerank with HF, return the top chunks for the
knowledge_base_retrieval tool. Exposes the retrieval capability as
    search(query, top_k) -> [{"text": str, ...}]
Transport and backend errors are raised; an empty list is a valid result.
"""

import logging
from typing import Any, Callable, Protocol

import httpx

from app.core.config import (
    COLLECTION_NAME,
    HF_API_KEY,
    HF_RERANK_MODEL,
    RERANK_API_TIMEOUT,
    SEARCH_TOP_K,
)
from app.services.vector_store import embed_texts, get_milvus_client

logger = logging.getLogger(__name__)

# Use router (api-inference.huggingface.co returns 410 Gone)
HF_RERANK_URL = f"https://router.huggingface.co/hf-inference/models/{HF_RERANK_MODEL}"


class Retriever(Protocol):
    """Retrieval capability used by the tool step."""

    def search(self, query: str, top_k: int) -> list[dict[str, Any]]: ...


def _boost_by_keywords(query: str, candidates: list[dict]) -> list[dict]:
    """
    Reorder candidates so chunks containing query words (e.g. 'capital', 'budget')
    come first. Ensures exact phrases in the doc are not missed when vector rank is low.
    """
    if not candidates or not query or not query.strip():
        return candidates
    words = [w for w in query.lower().split() if len(w) >= 2]
    if not words:
        return candidates

    def keyword_score(c: dict) -> int:
        text = (c.get("text") or "").lower()
        return sum(1 for w in words if w in text)

    # Sort: more query words in chunk first, then by vector score (higher is better)
    scored = [(c, keyword_score(c)) for c in candidates]
    scored.sort(key=lambda x: (-x[1], -x[0].get("score", 0)))
    return [c for c, _ in scored]


def _rerank_scores(data: Any) -> list[float] | None:
    """Scores in input order from the reranker response, or None if the shape is unknown."""

    def to_score(item: Any) -> float:
        if isinstance(item, (int, float)):
            return float(item)
        if isinstance(item, list) and item:
            return float(item[0]) if isinstance(item[0], (int, float)) else 0.0
        if isinstance(item, dict):
            return float(item.get("score", 0))
        return 0.0

    if isinstance(data, dict) and "scores" in data:
        return [to_score(s) for s in data["scores"]]
    if not isinstance(data, list) or not data:
        return None
    # Router sometimes returns [[s1, s2, ...]]: one element that is the full list of scores
    if len(data) == 1 and isinstance(data[0], list):
        return [to_score(s) for s in data[0]]
    return [to_score(s) for s in data]


class MilvusRetriever:
    """Milvus vector search → keyword boost → HF rerank."""

    def __init__(
        self,
        client: Any = None,
        embed: Callable[[list[str]], list[list[float]]] = embed_texts,
        collection_name: str = COLLECTION_NAME,
        candidate_k: int = SEARCH_TOP_K,
        hf_api_key: str = HF_API_KEY,
    ) -> None:
        self._client = client
        self._embed = embed
        self.collection_name = collection_name
        self.candidate_k = candidate_k
        self.hf_api_key = hf_api_key

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_milvus_client()
        return self._client

    def search_milvus(self, query: str, top_k: int) -> list[dict]:
        """Embed query, search Milvus, return structured candidates with text, score, metadata."""
        logger.info("[retrieval:search_milvus] IN  query=%r top_k=%d", query, top_k)
        if not query or not query.strip():
            return []

        query_vec = self._embed([query.strip()])
        if not query_vec:
            logger.warning("[retrieval:search_milvus] embed returned empty")
            return []

        results = self.client.search(
            collection_name=self.collection_name,
            data=query_vec,
            limit=top_k,
            output_fields=["id", "text", "source", "chunk_id"],
        )

        # results: list of list of hits (one list per query vector)
        hits = results[0] if results else []
        candidates = []
        for h in hits:
            # Milvus returns dict with "distance", "id", and optionally "entity" (output_fields)
            score = float(h.get("distance", h.get("score", 0.0)))
            e = h.get("entity") or h
            candidates.append({
                "id": e.get("id", h.get("id")),
                "text": e.get("text", ""),
                "score": score,
                "metadata": {
                    "source": e.get("source", ""),
                    "chunk_id": e.get("chunk_id", 0),
                },
            })
        logger.info("[retrieval:search_milvus] OUT candidates=%d first_sources=%s",
                    len(candidates), [c["metadata"]["source"] for c in candidates[:5]])
        return candidates

    def rerank(self, query: str, results: list[dict], top_k: int) -> list[dict]:
        """
        Rerank candidates using Hugging Face Inference API (BAAI/bge-reranker-base).

        Reranking improves precision after high-recall vector search. Without an
        HF key, or when the reranker fails, the incoming order is kept.
        """
        if not results or not query or not self.hf_api_key:
            return results[:top_k]

        inputs = [{"text": query, "text_pair": r["text"]} for r in results]
        headers = {
            "Authorization": f"Bearer {self.hf_api_key}",
            "Content-Type": "application/json",
        }
        payload = {"inputs": inputs, "options": {"wait_for_model": True}}
        try:
            with httpx.Client(timeout=RERANK_API_TIMEOUT) as client:
                response = client.post(HF_RERANK_URL, json=payload, headers=headers)
            if response.status_code != 200:
                logger.warning("Reranker API error %s: %s", response.status_code, response.text[:200])
                return results[:top_k]
            data = response.json()
        except httpx.HTTPError as e:
            logger.warning("Reranker request failed: %s", e)
            return results[:top_k]

        scores = _rerank_scores(data)
        if scores is None:
            return results[:top_k]
        scored = sorted(enumerate(scores), key=lambda x: -x[1])
        reranked = [results[i] for i, _ in scored[:top_k] if i < len(results)]
        logger.info("[retrieval:rerank] OUT reranked=%d sources=%s",
                    len(reranked), [r.get("metadata", {}).get("source") for r in reranked])
        return reranked

    def search(self, query: str, top_k: int) -> list[dict]:
        """Pipeline: semantic search (Milvus) → keyword boost → HF rerank → top_k chunks."""
        logger.info("[retrieval:search] IN  query=%r top_k=%d", query, top_k)
        candidates = self.search_milvus(query, top_k=max(self.candidate_k, top_k))
        candidates = _boost_by_keywords(query, candidates)
        reranked = self.rerank(query, candidates, top_k=top_k)
        logger.info("[retrieval:search] OUT retrieved %d → reranked to %d", len(candidates), len(reranked))
        return reranked
