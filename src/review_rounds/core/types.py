from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class StreamFormat(str, Enum):
    CHAT = "chat"  # POST /api/chat, events carry {"message": {"content": ...}}
    GENERATE = "generate"  # POST /api/generate, events carry {"response": ...}


class ProbeKind(str, Enum):
    TAGS = "tags"
    VERSION = "version"


class RunPhase(str, Enum):
    IDLE = "idle"
    CONNECTION_CHECK = "connection_check"
    GENERATING = "generating"
    REVIEWING = "reviewing"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class EventKind(str, Enum):
    STATUS = "status"
    SOLUTION = "solution"
    REVIEW = "review"
    NEW_BEST = "new_best"
    SKIPPED = "skipped"
    COMPLETED = "completed"
    SUMMARY = "summary"
    ERROR = "error"


@dataclass(frozen=True)
class RunEvent:
    kind: EventKind
    content: str


@dataclass(frozen=True)
class GenerationContext:
    problem: str
    previous_solution: str = ""
    feedback_summary: str = ""

    @property
    def is_revision(self) -> bool:
        return bool(self.previous_solution) and bool(self.feedback_summary)


@dataclass(frozen=True)
class RoundRecord:
    round_number: int
    solution: str
    review: str
    score: int
    elapsed: float  # seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "round": self.round_number,
            "solution": self.solution,
            "review": self.review,
            "score": self.score,
            "time_taken": round(self.elapsed, 3),
        }


@dataclass
class RunStatistics:
    total_generations: int = 0
    total_reviews: int = 0
    average_generation_time: float = 0.0
    average_review_time: float = 0.0
    total_time: float = 0.0
    average_round_time: float = 0.0

    def record_generation(self, seconds: float) -> None:
        self.total_generations += 1
        self.average_generation_time = _running_mean(
            self.average_generation_time, seconds, self.total_generations
        )

    def record_review(self, seconds: float) -> None:
        self.total_reviews += 1
        self.average_review_time = _running_mean(
            self.average_review_time, seconds, self.total_reviews
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_generations": self.total_generations,
            "total_reviews": self.total_reviews,
            "average_generation_time": round(self.average_generation_time, 3),
            "average_review_time": round(self.average_review_time, 3),
            "total_time": round(self.total_time, 3),
            "average_round_time": round(self.average_round_time, 3),
        }


def _running_mean(mean: float, value: float, count: int) -> float:
    return (mean * (count - 1) + value) / count


@dataclass
class RunResult:
    problem: str
    iterations: list[RoundRecord] = field(default_factory=list)
    best_solution: RoundRecord | None = None
    status: RunStatus = RunStatus.RUNNING
    statistics: RunStatistics = field(default_factory=RunStatistics)
    error: str | None = None

    @property
    def best_score(self) -> int:
        return self.best_solution.score if self.best_solution else 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "problem": self.problem,
            "iterations": [record.to_dict() for record in self.iterations],
            "bestSolution": self.best_solution.to_dict() if self.best_solution else None,
            "status": self.status.value,
            "statistics": self.statistics.to_dict(),
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class BackendSettings:
    name: str
    url: str
    model: str = "deepseek-r1:1.5b"
    stream_format: StreamFormat = StreamFormat.CHAT
    probe: ProbeKind = ProbeKind.TAGS


@dataclass
class RunSettings:
    solver: BackendSettings = field(
        default_factory=lambda: BackendSettings(name="solver", url="http://localhost:11434")
    )
    reviewer: BackendSettings = field(
        default_factory=lambda: BackendSettings(name="reviewer", url="http://localhost:11435")
    )
    min_rounds: int = 2
    max_rounds: int = 6
    default_rounds: int = 5
    score_threshold: int = 9
    request_timeout: float = 300.0
    host: str = "127.0.0.1"
    port: int = 5100
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173"])
    output_dir: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "solver": _backend_dict(self.solver),
            "reviewer": _backend_dict(self.reviewer),
            "min_rounds": self.min_rounds,
            "max_rounds": self.max_rounds,
            "default_rounds": self.default_rounds,
            "score_threshold": self.score_threshold,
            "request_timeout": self.request_timeout,
        }


def _backend_dict(backend: BackendSettings) -> dict[str, Any]:
    return {
        "name": backend.name,
        "url": backend.url,
        "model": backend.model,
        "stream_format": backend.stream_format.value,
        "probe": backend.probe.value,
    }
