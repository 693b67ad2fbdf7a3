from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, AsyncIterator

from review_rounds.config.loader import clamp_rounds
from review_rounds.core.errors import BackendRequestError, ConnectivityError
from review_rounds.core.scoring import extract_score, feedback_summary
from review_rounds.core.types import (
    EventKind,
    GenerationContext,
    RoundRecord,
    RunEvent,
    RunPhase,
    RunResult,
    RunSettings,
    RunStatus,
)
from review_rounds.llm.stream import StreamDecoder

if TYPE_CHECKING:
    from review_rounds.core.protocols import Backend, ResponseHandle, Sink

logger = logging.getLogger(__name__)

INVALID_SOLUTIONS = frozenset({"undefined", "null"})
NO_SOLUTION_PLACEHOLDER = "// No valid solution generated"


def is_invalid_solution(solution: str) -> bool:
    text = solution.strip()
    return not text or text in INVALID_SOLUTIONS


class RoundOrchestrator:
    """Generate → review → score, round after round, keeping the best solution.

    One instance drives exactly one run. Progress is exposed as an ordered
    stream of ``RunEvent`` values from ``events()``; ``result`` holds the
    ``RunResult`` once the stream is exhausted.
    """

    def __init__(
        self,
        solver: Backend,
        reviewer: Backend,
        settings: RunSettings,
        streaming: bool = True,
    ) -> None:
        self.solver = solver
        self.reviewer = reviewer
        self.settings = settings
        self.streaming = streaming
        self.phase = RunPhase.IDLE
        self.result: RunResult | None = None

    async def run(
        self, problem: str, rounds: int | str | None = None, sink: Sink | None = None
    ) -> RunResult:
        async for event in self.events(problem, rounds):
            if sink is not None:
                await sink.emit(event)
        assert self.result is not None
        return self.result

    async def events(
        self, problem: str, rounds: int | str | None = None
    ) -> AsyncIterator[RunEvent]:
        if self.phase is not RunPhase.IDLE:
            raise RuntimeError("RoundOrchestrator runs once; create a new instance per run")
        if not problem or not problem.strip():
            raise ValueError("Problem description is required")

        budget = clamp_rounds(rounds, self.settings)
        result = RunResult(problem=problem)
        self.result = result
        started = time.perf_counter()

        try:
            await self._check_connection()

            yield RunEvent(EventKind.STATUS, "# Code Evolution Analysis\n\n")
            yield RunEvent(EventKind.STATUS, "## 🎯 Problem Statement\n\n")
            yield RunEvent(EventKind.STATUS, f"{problem}\n\n")

            for round_number in range(1, budget + 1):
                round_started = time.perf_counter()
                yield RunEvent(EventKind.STATUS, f"## 🔄 Round {round_number}/{budget}\n\n")

                # Generate
                self.phase = RunPhase.GENERATING
                context = self._next_context(result, round_number)
                yield RunEvent(EventKind.STATUS, "### 💡 Generating Solution\n\n")
                yield RunEvent(EventKind.STATUS, "```javascript\n")
                phase_started = time.perf_counter()
                response = await self.solver.generate(context, streaming=self.streaming)
                decoder = StreamDecoder(response.stream_format)
                async for event in _relay(response, decoder, EventKind.SOLUTION):
                    yield event
                result.statistics.record_generation(time.perf_counter() - phase_started)
                yield RunEvent(EventKind.STATUS, "\n```\n\n")

                solution = decoder.text
                if is_invalid_solution(solution):
                    logger.warning("Round %d produced no usable solution; skipping review", round_number)
                    yield RunEvent(
                        EventKind.SKIPPED, "⚠️ Failed to generate a valid solution. Retrying...\n"
                    )
                    continue

                # Review
                self.phase = RunPhase.REVIEWING
                yield RunEvent(EventKind.STATUS, "### 🔍 Code Review\n\n")
                phase_started = time.perf_counter()
                response = await self.reviewer.review(
                    result.problem, solution, round_number, streaming=self.streaming
                )
                decoder = StreamDecoder(response.stream_format)
                async for event in _relay(response, decoder, EventKind.REVIEW):
                    yield event
                result.statistics.record_review(time.perf_counter() - phase_started)

                # Score and record
                review = decoder.text
                score = extract_score(review)
                record = RoundRecord(
                    round_number=round_number,
                    solution=solution,
                    review=review,
                    score=score,
                    elapsed=time.perf_counter() - round_started,
                )
                result.iterations.append(record)
                logger.info("Round %d/%d scored %d/10", round_number, budget, score)

                # Ties keep the earlier record
                if result.best_solution is None or score > result.best_solution.score:
                    result.best_solution = record
                    yield RunEvent(EventKind.NEW_BEST, "\n#### ⭐ New Best Solution!\n")

                if score >= self.settings.score_threshold:
                    yield RunEvent(EventKind.COMPLETED, "\n### 🎉 Excellent solution achieved!\n\n")
                    break

                if round_number < budget:
                    yield RunEvent(EventKind.STATUS, "\n### 📝 Analysis\n")
                    yield RunEvent(
                        EventKind.STATUS,
                        "Proceeding to next iteration for further improvements...\n\n",
                    )
                    yield RunEvent(EventKind.STATUS, "---\n\n")

        except (ConnectivityError, BackendRequestError) as e:
            logger.error("Run failed: %s", e)
            self.phase = RunPhase.FAILED
            _finalize(result, started, RunStatus.ERROR, error=str(e))
            yield RunEvent(EventKind.ERROR, f"\n### ❌ Error\n\n{e}\n")
            return

        _finalize(result, started, RunStatus.SUCCESS)
        for event in _summary_events(result):
            yield event
        self.phase = RunPhase.COMPLETED

    async def _check_connection(self) -> None:
        self.phase = RunPhase.CONNECTION_CHECK
        solver_ok, reviewer_ok = await asyncio.gather(
            self.solver.check_availability(),
            self.reviewer.check_availability(),
        )
        if solver_ok and reviewer_ok:
            return
        reasons = [
            backend.availability_reason
            for backend, ok in ((self.solver, solver_ok), (self.reviewer, reviewer_ok))
            if not ok and backend.availability_reason
        ]
        message = "⚠️ Failed to connect to Ollama instances or required model not found"
        if reasons:
            message += ": " + "; ".join(reasons)
        raise ConnectivityError(message)

    def _next_context(self, result: RunResult, round_number: int) -> GenerationContext:
        best = result.best_solution
        if round_number == 1 or best is None:
            return GenerationContext(problem=result.problem)
        return GenerationContext(
            problem=result.problem,
            previous_solution=best.solution,
            feedback_summary=feedback_summary(best.score),
        )


async def _relay(
    response: ResponseHandle, decoder: StreamDecoder, kind: EventKind
) -> AsyncIterator[RunEvent]:
    async with response:
        async for fragment in decoder.decode(response.aiter_chunks()):
            yield RunEvent(kind, fragment)


def _finalize(
    result: RunResult, started: float, status: RunStatus, error: str | None = None
) -> None:
    stats = result.statistics
    stats.total_time = time.perf_counter() - started
    if result.iterations:
        stats.average_round_time = stats.total_time / len(result.iterations)
    result.status = status
    result.error = error


def _summary_events(result: RunResult) -> list[RunEvent]:
    best = result.best_solution
    solution = best.solution if best and best.solution else NO_SOLUTION_PLACEHOLDER
    return [
        RunEvent(EventKind.SUMMARY, "\n## 📊 Final Results\n\n"),
        RunEvent(EventKind.SUMMARY, f"- **Best Score:** {result.best_score}/10\n"),
        RunEvent(EventKind.SUMMARY, "- **Best Solution:**\n\n"),
        RunEvent(EventKind.SUMMARY, "```javascript\n"),
        RunEvent(EventKind.SUMMARY, solution),
        RunEvent(EventKind.SUMMARY, "\n```\n\n"),
        RunEvent(EventKind.SUMMARY, "\n### 🏁 Process Completed\n"),
    ]
