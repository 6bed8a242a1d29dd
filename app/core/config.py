"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

from app.core.errors import ServiceUnavailableError

load_dotenv()

# Logging
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# Milvus Cloud (from env)
MILVUS_URI: str = os.getenv("MILVUS_URI", "").strip()
MILVUS_TOKEN: str = os.getenv("MILVUS_TOKEN", "").strip()

# Hugging Face (embeddings / rerank / fallback LLM)
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()

# Vector collection: default embedding dim (e.g. sentence-transformers/all-MiniLM-L6-v2 = 384)
VECTOR_DIM: int = 384

# Milvus collection and embedding/rerank
COLLECTION_NAME: str = os.getenv("COLLECTION_NAME", "documents").strip() or "documents"
HF_EMBED_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"
HF_RERANK_MODEL: str = "BAAI/bge-reranker-base"
SEARCH_TOP_K: int = 100
EMBED_BATCH_SIZE: int = 32

# Retrieval tool: chunks returned when the model does not pass top_k
RETRIEVAL_TOP_K: int = int(os.getenv("RETRIEVAL_TOP_K", "5").strip() or 5)

# API timeouts (seconds)
EMBED_API_TIMEOUT: float = 30.0
RERANK_API_TIMEOUT: float = 60.0
LLM_API_TIMEOUT: float = 60.0

# Hugging Face chat (fallback LLM)
HF_CHAT_URL: str = "https://router.huggingface.co/v1/chat/completions"

# Agent loop
MAX_AGENT_ITERATIONS: int = 10
AGENT_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "4096").strip() or 4096)
LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0").strip() or 0)
STREAM_BUFFER_SIZE: int = int(os.getenv("STREAM_BUFFER_SIZE", "32").strip() or 32)

# Model provider: "openai" (primary) or "huggingface"
LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai").strip().lower() or "openai"
SUPPORTED_LLM_PROVIDERS: frozenset[str] = frozenset({"openai", "huggingface"})

# OpenAI (agent LLM)
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)

# HF LLM for agent. Router chat completions require a chat model with tool support.
HF_LLM_MODEL: str = (
    os.getenv("HF_LLM_MODEL", "meta-llama/Llama-3.2-3B-Instruct").strip()
    or "meta-llama/Llama-3.2-3B-Instruct"
)

# Checkpoint store: "memory" (in-process) or "sqlite" (file under data/)
CHECKPOINTER_TYPE: str = os.getenv("CHECKPOINTER_TYPE", "memory").strip().lower() or "memory"
CHECKPOINT_DB_PATH: str = (
    os.getenv("CHECKPOINT_DB_PATH", "data/checkpoints.db").strip() or "data/checkpoints.db"
)


def validate_llm_config(provider: str | None = None) -> None:
    """Fail fast at startup when the selected model provider cannot be used."""
    provider = (provider or LLM_PROVIDER).strip().lower()
    if provider not in SUPPORTED_LLM_PROVIDERS:
        raise ServiceUnavailableError(f"Unsupported LLM provider: {provider}")
    if provider == "openai" and not OPENAI_API_KEY:
        raise ServiceUnavailableError("OPENAI_API_KEY is required when LLM_PROVIDER=openai")
    if provider == "huggingface" and not HF_API_KEY:
        raise ServiceUnavailableError("HF_API_KEY is required when LLM_PROVIDER=huggingface")
