"""Token estimation for context budgeting (tiktoken or a char heuristic)."""

from __future__ import annotations

import functools
from collections.abc import Callable
from dataclasses import dataclass, field

import tiktoken

# Prose and code average roughly four characters per token
CHARS_PER_TOKEN = 4.0

TokenEstimator = Callable[[str], int]

# Singleton encoder (loaded once on first use)
_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Get cached tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("o200k_base")
    return _encoder


# Distinct texts kept in the count cache
TOKEN_CACHE_SIZE = 4096


@functools.lru_cache(maxsize=TOKEN_CACHE_SIZE)
def count_tokens(text: str) -> int:
    """Count tokens exactly with tiktoken, memoized per text."""
    return len(_get_encoder().encode(text))


def count_tokens_heuristic(text: str) -> int:
    """Estimate tokens from character count without encoding."""
    return int(len(text) / CHARS_PER_TOKEN)


def invalidate_cache() -> None:
    """Clear the tiktoken count cache."""
    count_tokens.cache_clear()


ESTIMATORS: dict[str, TokenEstimator] = {
    "heuristic": count_tokens_heuristic,
    "tiktoken": count_tokens,
}


def get_estimator(name: str) -> TokenEstimator:
    """Look up an estimator by config name ("heuristic" or "tiktoken")."""
    try:
        return ESTIMATORS[name]
    except KeyError:
        raise ValueError(
            f"Unknown token estimator '{name}'. Available: {', '.join(sorted(ESTIMATORS))}"
        ) from None


@dataclass
class TokenBudget:
    """Capacity and compaction threshold for one model context window.

    Attributes:
        capacity: Context size in tokens
        threshold: Fraction of capacity at which compaction is armed
        estimator: Function mapping text to an estimated token count
    """

    capacity: int = 32000
    threshold: float = 0.9
    estimator: TokenEstimator = field(default=count_tokens_heuristic)

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError("capacity must be positive")
        if not 0.0 < self.threshold <= 1.0:
            raise ValueError("threshold must be in (0, 1]")

    @property
    def threshold_tokens(self) -> float:
        return self.capacity * self.threshold

    def estimate(self, *texts: str) -> int:
        """Sum the estimate over several texts."""
        return sum(self.estimator(t) for t in texts if t)

    def over_threshold(self, tokens: int) -> bool:
        return tokens >= self.threshold_tokens
