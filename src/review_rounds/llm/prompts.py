from __future__ import annotations

from review_rounds.core.types import GenerationContext

SOLVER_SYSTEM_PROMPT = (
    "You are a JavaScript expert. Provide only clean, working code "
    "without explanations or markdown."
)


def build_generation_prompt(context: GenerationContext) -> tuple[str, str]:
    """Build system and user prompts for the solver."""
    if context.is_revision:
        user = (
            f"Previous solution:\n```javascript\n{context.previous_solution}\n```\n\n"
            f"{context.feedback_summary}\n\n"
            "Improve the solution based on the feedback. Return ONLY the JavaScript "
            "code without any explanation or markdown formatting."
        )
    else:
        user = (
            f"Create a JavaScript solution for: {context.problem}\n\n"
            "Return ONLY the code without any explanation or markdown formatting. "
            "Focus on creating clean, efficient code that demonstrates JavaScript functions."
        )
    return SOLVER_SYSTEM_PROMPT, user


def build_review_prompt(problem: str, solution: str, round_number: int) -> str:
    """Build the single-message reviewer prompt. The reviewer must answer with a score line."""
    return (
        f"Review the following solution for Round {round_number}:\n\n"
        f"**Problem:**\n{problem}\n\n"
        f"**Solution:**\n```\n{solution}\n```\n\n"
        "Provide a detailed review with:\n"
        "1. What works well\n"
        "2. What could be improved\n"
        "3. Score out of 10\n\n"
        "Format as:\n"
        "### Score: X/10\n\n"
        "### Review:\n"
        "[Your detailed review]"
    )
