"""
Vector store client: Milvus Cloud connection and query embeddings (HF Inference API).

The index is populated outside this service; here we only connect and embed
queries the same way the documents were embedded (all-MiniLM-L6-v2, normalized).
"""

import logging
from typing import Any

import httpx
from pymilvus import MilvusClient

from app.core.config import (
    COLLECTION_NAME,
    EMBED_API_TIMEOUT,
    EMBED_BATCH_SIZE,
    HF_API_KEY,
    HF_EMBED_MODEL,
    MILVUS_TOKEN,
    MILVUS_URI,
    VECTOR_DIM,
)
from app.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

HF_API_URL_ROUTER = (
    "https://router.huggingface.co/hf-inference/models/"
    f"{HF_EMBED_MODEL}/pipeline/feature-extraction"
)
HF_API_URL_STANDARD = f"https://api-inference.huggingface.co/models/{HF_EMBED_MODEL}"


def _normalize(vec: list[float]) -> list[float]:
    norm = sum(x * x for x in vec) ** 0.5 or 1.0
    return [x / norm for x in vec]


def _post_embeddings(client: httpx.Client, batch: list[str], headers: dict[str, str]) -> Any:
    """POST one batch; the router URL is tried first, the standard URL on 403."""
    payload = {"inputs": batch, "options": {"wait_for_model": True}}
    response = client.post(HF_API_URL_ROUTER, json=payload, headers=headers)
    if response.status_code == 403:
        logger.info("[vector_store:embed] router refused token, trying standard endpoint")
        response = client.post(HF_API_URL_STANDARD, json=payload, headers=headers)
    if response.status_code == 503:
        raise RuntimeError(f"HF model is loading. Retry later. {response.text[:200]}")
    if response.status_code == 401:
        raise ServiceUnavailableError("Invalid HF API key. Check HF_API_KEY.")
    if response.status_code != 200:
        raise RuntimeError(f"HF embedding API error {response.status_code}: {response.text[:200]}")
    return response.json()


def embed_texts(texts: list[str], batch_size: int | None = None) -> list[list[float]]:
    """
    Batch embed texts using Hugging Face Inference API (all-MiniLM-L6-v2).

    Returns 384-dim vectors normalized for cosine similarity.
    """
    batch_size = batch_size or EMBED_BATCH_SIZE
    if not texts:
        return []
    if not HF_API_KEY:
        raise ServiceUnavailableError("HF_API_KEY must be set in .env to embed queries")

    headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
    vectors: list[list[float]] = []
    with httpx.Client(timeout=EMBED_API_TIMEOUT) as client:
        for i in range(0, len(texts), batch_size):
            result = _post_embeddings(client, texts[i : i + batch_size], headers)
            if isinstance(result, list) and result and isinstance(result[0], list):
                batch = result
            else:
                batch = [result]
            vectors.extend(_normalize(vec) for vec in batch)
    logger.info("[vector_store:embed] OUT vectors=%d", len(vectors))
    return vectors


def get_milvus_client() -> MilvusClient:
    """
    Connect to Milvus Cloud. Creates the collection if it does not exist yet
    (dim 384 for all-MiniLM-L6-v2) so an empty index searches cleanly.
    """
    if not MILVUS_URI or not MILVUS_TOKEN:
        raise ServiceUnavailableError("MILVUS_URI and MILVUS_TOKEN must be set in .env")

    client = MilvusClient(uri=MILVUS_URI, token=MILVUS_TOKEN)
    logger.info("Milvus connection established")

    if not client.has_collection(COLLECTION_NAME):
        client.create_collection(
            collection_name=COLLECTION_NAME,
            dimension=VECTOR_DIM,
            primary_field_name="id",
            vector_field_name="vector",
            metric_type="COSINE",
            auto_id=True,
        )
        logger.info("Collection %s created (dim=%s)", COLLECTION_NAME, VECTOR_DIM)
    return client
