from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from review_rounds.core.types import RoundRecord, RunResult, RunSettings


class RunTracker:
    """Writes the artifacts of one finished run into ``<output_dir>/run_<timestamp>/``."""

    def __init__(self, settings: RunSettings, output_dir: Path) -> None:
        self.settings = settings

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.run_dir = Path(output_dir) / f"run_{timestamp}"
        self.run_dir.mkdir(parents=True, exist_ok=True)
        for subdir in ("rounds", "best"):
            (self.run_dir / subdir).mkdir(exist_ok=True)

        (self.run_dir / "config.json").write_text(json.dumps(settings.to_dict(), indent=2))

    def save_round(self, record: RoundRecord) -> None:
        stem = self.run_dir / "rounds" / f"round_{record.round_number:03d}"
        stem.with_name(f"{stem.name}_solution.txt").write_text(record.solution)
        stem.with_name(f"{stem.name}_review.txt").write_text(record.review)

    def save_result(self, result: RunResult) -> Path:
        for record in result.iterations:
            self.save_round(record)

        if result.best_solution is not None:
            (self.run_dir / "best" / "best_solution.txt").write_text(result.best_solution.solution)

        summary = result.to_dict()
        summary["best_round"] = result.best_solution.round_number if result.best_solution else None
        summary["settings"] = self.settings.to_dict()
        summary_path = self.run_dir / "summary.json"
        summary_path.write_text(json.dumps(summary, indent=2, ensure_ascii=False))
        return summary_path
