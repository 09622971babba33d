"""Token counting with the embedding model's tokenizer."""

import math
import threading
from typing import Iterable, List, NamedTuple, Sequence

import tiktoken

from statute.settings import EMBEDDING_MAX_TOKENS

# cl100k_base is the encoding used by text-embedding-3-large
ENCODING_NAME = "cl100k_base"

_encoder = None
_encoder_lock = threading.Lock()


class TokenValidation(NamedTuple):
    valid: bool
    tokens: int


def get_encoder() -> tiktoken.Encoding:
    """Lazy load the tokenizer (thread-safe)."""
    global _encoder
    if _encoder is None:
        with _encoder_lock:
            if _encoder is None:
                _encoder = tiktoken.get_encoding(ENCODING_NAME)
    return _encoder


def count_tokens(text: str) -> int:
    """Count tokens in text. Empty text has zero tokens."""
    if not text:
        return 0
    return len(get_encoder().encode(text, disallowed_special=()))


def validate_chunk_size(text: str, max_tokens: int) -> TokenValidation:
    tokens = count_tokens(text)
    return TokenValidation(valid=tokens <= max_tokens, tokens=tokens)


class TokenDistribution(NamedTuple):
    count: int
    min: int
    max: int
    avg: int
    p50: int
    p95: int
    p99: int

    def summary(self) -> str:
        return f"Tokens: avg={self.avg}, range=[{self.min}-{self.max}], p95={self.p95}"


class TokenLimitReport(NamedTuple):
    valid: bool
    over_soft_limit: List[int]
    over_hard_limit: List[int]


class TokenOutlier(NamedTuple):
    index: int
    tokens: int
    deviation: float


def _percentile(sorted_counts: Sequence[int], percentile: float) -> int:
    if not sorted_counts:
        return 0
    index = int(len(sorted_counts) * percentile / 100)
    return sorted_counts[min(index, len(sorted_counts) - 1)]


def token_distribution(counts: Sequence[int]) -> TokenDistribution:
    """Min, max, rounded mean and nearest-rank percentiles of token counts."""
    if not counts:
        return TokenDistribution(0, 0, 0, 0, 0, 0, 0)

    ordered = sorted(counts)
    return TokenDistribution(
        count=len(ordered),
        min=ordered[0],
        max=ordered[-1],
        avg=int(sum(ordered) / len(ordered) + 0.5),
        p50=_percentile(ordered, 50),
        p95=_percentile(ordered, 95),
        p99=_percentile(ordered, 99),
    )


def analyze_token_distribution(texts: Iterable[str]) -> TokenDistribution:
    return token_distribution([count_tokens(text) for text in texts])


def validate_token_limits(
    texts: Iterable[str], soft_limit: int, hard_limit: int = EMBEDDING_MAX_TOKENS
) -> TokenLimitReport:
    """Indices of texts over the recommended (soft) and absolute (hard) limits."""
    over_soft, over_hard = [], []
    for index, text in enumerate(texts):
        tokens = count_tokens(text)
        if tokens > hard_limit:
            over_hard.append(index)
        if tokens > soft_limit:
            over_soft.append(index)
    return TokenLimitReport(valid=not over_soft and not over_hard, over_soft_limit=over_soft, over_hard_limit=over_hard)


def detect_outliers(counts: Sequence[int], threshold: float = 2.0) -> List[TokenOutlier]:
    """Counts more than `threshold` standard deviations from the mean.

    A uniform distribution has no outliers.
    """
    if not counts:
        return []

    mean = sum(counts) / len(counts)
    std_dev = math.sqrt(sum((c - mean) ** 2 for c in counts) / len(counts))
    if std_dev == 0:
        return []

    outliers = []
    for index, tokens in enumerate(counts):
        deviation = abs(tokens - mean) / std_dev
        if deviation > threshold:
            outliers.append(TokenOutlier(index, tokens, round(deviation, 2)))
    return outliers
