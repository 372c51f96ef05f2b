"""Core runtime pieces shared by the session layer: tokens and model access."""

from companion.core.tokens import (
    TokenBudget,
    count_tokens,
    count_tokens_heuristic,
    get_estimator,
)

__all__ = [
    "TokenBudget",
    "count_tokens",
    "count_tokens_heuristic",
    "get_estimator",
]
