"""HTTP entry points for running review rounds.

``GET /solve`` streams run events as server-sent events, ``POST /solve``
returns the buffered run result, and ``GET /health`` probes both backends.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from review_rounds.config.loader import load_settings
from review_rounds.core.loop import RoundOrchestrator
from review_rounds.core.types import RunSettings
from review_rounds.llm.client import build_backends

logger = logging.getLogger(__name__)

END_OF_STREAM = "event: done\ndata: {}\n\n"


class SolveRequest(BaseModel):
    problem: str = ""
    rounds: int | str | None = None


def _missing_problem() -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Problem description is required", "status": "error"},
    )


def create_app(
    settings: RunSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the API. ``transport`` replaces the network layer for backend calls."""
    settings = settings or load_settings()
    app = FastAPI(title="review-rounds")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )

    def http_client() -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.request_timeout, transport=transport)

    @app.get("/solve")
    async def solve_stream(problem: str = "", rounds: str | None = None):
        if not problem.strip():
            return _missing_problem()
        logger.info("Streaming solve request (rounds=%s)", rounds)
        return StreamingResponse(
            _sse_events(settings, http_client(), problem, rounds),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.post("/solve")
    async def solve_buffered(request: SolveRequest):
        if not request.problem.strip():
            return _missing_problem()
        logger.info("Buffered solve request (rounds=%s)", request.rounds)
        async with http_client() as http:
            solver, reviewer = build_backends(settings, http)
            orchestrator = RoundOrchestrator(solver, reviewer, settings, streaming=False)
            result = await orchestrator.run(request.problem, request.rounds)
        return result.to_dict()

    @app.get("/health")
    async def health():
        async with http_client() as http:
            solver, reviewer = build_backends(settings, http)
            solver_ok, reviewer_ok = await asyncio.gather(
                solver.check_availability(), reviewer.check_availability()
            )
        return {"solver": solver_ok, "reviewer": reviewer_ok, "model": settings.solver.model}

    return app


async def _sse_events(
    settings: RunSettings, http: httpx.AsyncClient, problem: str, rounds: str | None
) -> AsyncIterator[str]:
    async with http:
        solver, reviewer = build_backends(settings, http)
        orchestrator = RoundOrchestrator(solver, reviewer, settings, streaming=True)
        async for event in orchestrator.events(problem, rounds):
            payload = {"content": event.content, "kind": event.kind.value}
            yield f"data: {json.dumps(payload)}\n\n"
    yield END_OF_STREAM
