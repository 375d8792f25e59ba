"""
Cosine ranking of a query vector against stored rows.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredEntry:
    id: int
    text: str
    embedding: str  # serialized JSON array, as persisted


@dataclass(frozen=True)
class SimilarityResult:
    id: int
    text: str
    score: float


@dataclass(frozen=True)
class RankResult:
    results: list[SimilarityResult] = field(default_factory=list)
    malformed: int = 0  # rows whose embedding could not be parsed
    mismatched: int = 0  # rows whose dimension differs from the query

    def __iter__(self):
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)


def cosine_similarity(vec1, vec2) -> float:
    """
    Compute cosine similarity between two vectors.

    Zero-length vectors and vectors of different size score -1.0 (worst
    possible rank) instead of raising.
    """
    v1 = np.asarray(vec1, dtype=np.float64).ravel()
    v2 = np.asarray(vec2, dtype=np.float64).ravel()
    if v1.shape != v2.shape or v1.size == 0:
        return -1.0

    norm_v1 = np.linalg.norm(v1)
    norm_v2 = np.linalg.norm(v2)
    if norm_v1 == 0 or norm_v2 == 0 or not (np.isfinite(norm_v1) and np.isfinite(norm_v2)):
        return -1.0

    score = float(np.dot(v1, v2) / (norm_v1 * norm_v2))
    return min(1.0, max(-1.0, score))


def _is_number(x) -> bool:
    if isinstance(x, bool) or not isinstance(x, (int, float)):
        return False
    try:
        return math.isfinite(x)
    except OverflowError:
        return False


def parse_embedding(text) -> np.ndarray | None:
    """JSON array of numbers → float32 vector, or None if it is anything else."""
    if not isinstance(text, (str, bytes)):
        return None
    try:
        values = json.loads(text)
    except (ValueError, RecursionError):
        return None
    if not isinstance(values, list) or not values:
        return None
    if not all(_is_number(v) for v in values):
        return None
    return np.asarray(values, dtype=np.float32)


def rank(query, corpus: Iterable[StoredEntry], k: int) -> RankResult:
    """
    Score every well-formed row of ``corpus`` against ``query`` and keep the
    best ``k``: descending score, ascending id on ties.
    """
    q = np.asarray(query, dtype=np.float32).ravel()
    scored: list[SimilarityResult] = []
    malformed = mismatched = 0

    for entry in corpus:
        vec = parse_embedding(entry.embedding)
        if vec is None:
            malformed += 1
            continue
        if vec.shape != q.shape:
            mismatched += 1
            continue
        scored.append(SimilarityResult(entry.id, entry.text, cosine_similarity(q, vec)))

    if malformed:
        logger.warning("skipped %d rows with malformed embeddings", malformed)
    if mismatched:
        logger.warning(
            "skipped %d rows whose dimension differs from the query (%d)",
            mismatched, q.size,
        )

    scored.sort(key=lambda r: (-r.score, r.id))
    return RankResult(
        results=scored[: max(k, 0)],
        malformed=malformed,
        mismatched=mismatched,
    )
