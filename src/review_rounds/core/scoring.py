from __future__ import annotations

import re

SCORE_PATTERN = re.compile(r"Score:\s*(\d+)\s*/\s*10")

MIN_SCORE = 0
MAX_SCORE = 10


def extract_score(review: str | None) -> int:
    """Return the first "Score: X/10" value in a review, or 0.

    An explicit 0/10 and a missing score are indistinguishable.
    """
    if not review:
        return 0
    match = SCORE_PATTERN.search(review)
    if not match:
        return 0
    try:
        score = int(match.group(1))
    except ValueError:
        return 0
    if score < MIN_SCORE or score > MAX_SCORE:
        return 0
    return score


def feedback_summary(best_score: int) -> str:
    return (
        f"Previous score: {best_score}/10\n"
        "Improve the solution focusing on JavaScript best practices."
    )
