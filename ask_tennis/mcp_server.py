# ask_tennis/mcp_server.py
"""
MCP tool surface for Ask Tennis.

Tools:
    answer_tennis_question(question)  full pipeline answer as JSON
    get_pipeline_status()             cache, executor and LLM statistics

Run with `python -m ask_tennis mcp` (stdio by default).
"""

import json
import logging
import os
import time

from fastmcp import FastMCP

from . import service
from .api.errors import AskTennisError
from .observability.metrics import track_metrics

logger = logging.getLogger(__name__)

mcp_server = FastMCP(name="ask_tennis")
mcp = mcp_server  # Alias so the FastMCP CLI can auto-discover the server


@mcp_server.tool()
@track_metrics("answer_tennis_question")
async def answer_tennis_question(question: str) -> str:
    """
    Answer a natural language tennis question.

    Covers current and historical ATP/WTA rankings, head-to-head records,
    Grand Slam winners, career records and player profiles.

    Args:
        question: e.g. "Who is ranked number 1?", "Djokovic vs Nadal head to head"

    Returns:
        JSON string with answer, data rows, queryType, confidence, dataSource,
        cached and timestamp; or an error object for a blank question.
    """
    start_time = time.time()
    try:
        answer = await service.answer_tennis_question(question)
    except AskTennisError as e:
        return json.dumps({"error": e.to_dict()})

    payload = answer.to_dict()
    payload["execution_time_ms"] = round((time.time() - start_time) * 1000, 1)
    return json.dumps(payload, default=str)


@mcp_server.tool()
async def get_pipeline_status() -> str:
    """
    Report pipeline health: cache size and hit rate, query counts, LLM usage.

    Returns:
        JSON string with the status dictionary
    """
    return json.dumps(service.get_pipeline_status(), default=str)


def run(transport: str = "stdio", host: str = "127.0.0.1", port: int = 8005) -> None:
    """Initialize the global pipeline and serve MCP tools."""
    if service.get_store() is None:
        service.initialize_pipeline()
    logger.info(f"Starting Ask Tennis MCP server (transport={transport})")
    if transport == "stdio":
        mcp_server.run()
    else:
        mcp_server.run(transport=transport, host=host, port=port)


def main() -> None:
    run(transport=os.getenv("MCP_TRANSPORT", "stdio"))
