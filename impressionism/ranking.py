"""Cosine-similarity ranking of indexed skills.

Similarity is undefined for mismatched lengths, empty vectors and zero
vectors; those cases score 0.0 rather than raising.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from .store.types import Skill


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b, strict=True):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def rank_skills(
    query_vector: Sequence[float],
    skills: Iterable[Skill],
    limit: int,
) -> list[tuple[Skill, float]]:
    if limit <= 0:
        return []
    scored = [(skill, cosine_similarity(query_vector, skill.embedding)) for skill in skills]
    # Equal scores fall back to ascending skill id so results are stable.
    scored.sort(key=lambda pair: (-pair[1], pair[0].id))
    return scored[:limit]
