# Run from project root: uvicorn app.main:app --reload

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.routes import router
from app.core.config import CHECKPOINTER_TYPE, LLM_PROVIDER, LOG_LEVEL, RETRIEVAL_TOP_K
from app.services.agent_service import build_rag_agent

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "agent", None) is None:
        app.state.agent = build_rag_agent()
    logger.info(
        "RAG agent ready: provider=%s checkpointer=%s retrieval_top_k=%d",
        LLM_PROVIDER, CHECKPOINTER_TYPE, RETRIEVAL_TOP_K,
    )
    yield
    logger.info("Shutting down...")


app = FastAPI(title="Budget Book RAG Agent", lifespan=lifespan)
app.include_router(router)
