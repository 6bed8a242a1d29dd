"""
Agent tools: definitions and execution for the tool-calling loop.

One tool is registered: knowledge_base_retrieval. execute_tool always returns a
result payload (success, no_results or error); it never raises, so every tool
call the model issued gets an answer it can react to.
"""

import logging
from typing import Any

from app.core.config import RETRIEVAL_TOP_K
from app.services.retrieval_service import Retriever

logger = logging.getLogger(__name__)

KB_RETRIEVAL_TOOL_NAME = "knowledge_base_retrieval"

# OpenAI function-calling format
KB_RETRIEVAL_TOOL = {
    "type": "function",
    "function": {
        "name": KB_RETRIEVAL_TOOL_NAME,
        "description": (
            "Search the budget document knowledge base. Given a natural language query, this tool "
            "performs semantic search and returns relevant text passages. Use this to find budget "
            "information, line items, allocations, departmental data, policy details, or any content "
            "from the budget documents."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The natural language search query. Be specific for best results.",
                },
                "top_k": {
                    "type": "integer",
                    "description": f"Number of top results to return (default: {RETRIEVAL_TOP_K}).",
                },
            },
            "required": ["query"],
        },
    },
}

AGENT_TOOLS = [KB_RETRIEVAL_TOOL]


def _resolve_top_k(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    top_k = int(value)
    return top_k if top_k > 0 else default


def _knowledge_base_retrieval(args: dict[str, Any], retriever: Retriever, default_top_k: int) -> dict[str, Any]:
    query = args.get("query")
    query = query.strip() if isinstance(query, str) else ""
    if not query:
        return {"status": "error", "message": "Error: query is required.", "query": ""}
    top_k = _resolve_top_k(args.get("top_k"), default_top_k)
    logger.info("[tools:kb_retrieval] query=%r top_k=%d", query, top_k)

    try:
        chunks = retriever.search(query, top_k)
    except Exception as e:
        logger.exception("[tools:kb_retrieval] retrieval failed")
        return {
            "status": "error",
            "message": f"Failed to retrieve documents: {e}",
            "query": query,
        }

    texts = [c.get("text") or "" for c in chunks or [] if isinstance(c, dict)]
    texts = [t for t in texts if t.strip()]
    if not texts:
        return {
            "status": "no_results",
            "message": "No relevant results found in the knowledge base for this query. Try rephrasing.",
            "query": query,
        }
    return {
        "status": "success",
        "total_results": len(texts),
        "query": query,
        "chunks": [{"rank": i, "text": text} for i, text in enumerate(texts, 1)],
    }


def execute_tool(
    name: str,
    arguments: Any,
    retriever: Retriever,
    default_top_k: int = RETRIEVAL_TOP_K,
) -> dict[str, Any]:
    """
    Execute a tool by name with the given arguments. Returns the result payload for the LLM.
    """
    args = arguments if arguments is not None else {}
    logger.info("[tools] execute_tool name=%r arguments=%r", name, args)
    if not isinstance(args, dict):
        logger.warning("[tools] arguments for %r are not an object: %r", name, args)
        return {
            "status": "error",
            "message": f"Invalid arguments for {name}: expected an object, got {type(args).__name__}.",
        }

    if name == KB_RETRIEVAL_TOOL_NAME:
        return _knowledge_base_retrieval(args, retriever, default_top_k)

    logger.warning("[tools] unknown tool requested: %r", name)
    return {"status": "error", "message": f"Unknown tool: {name}"}
