# giftvec/domain/services/diversity.py
"""
Maximal Marginal Relevance re-ranking.

    lambda = 1 - diversity_threshold - exploration_factor
    mmr(c) = lambda * c.score - (1 - lambda) * max_sim(c, selected) + U[0, exploration_factor)

Similarity between candidates is a cheap proxy (same category, price ratio)
rather than an embedding cosine, so re-ranking needs no vectors.
"""
from __future__ import annotations
import random
from typing import List, Optional, Sequence

from giftvec.domain.models.recommendation import RecommendationWithExplanation
from giftvec.domain.ports import RandomSource
from giftvec.domain.services.constants import PROXY_CATEGORY_WEIGHT, PROXY_PRICE_WEIGHT


def proxy_similarity(a: RecommendationWithExplanation, b: RecommendationWithExplanation) -> float:
    sim = 0.0
    if a.category and b.category and a.category == b.category:
        sim += PROXY_CATEGORY_WEIGHT
    hi = max(a.price, b.price)
    if hi > 0:
        sim += min(a.price, b.price) / hi * PROXY_PRICE_WEIGHT
    return sim


def max_similarity(item: RecommendationWithExplanation, selected: Sequence[RecommendationWithExplanation]) -> float:
    return max((proxy_similarity(item, s) for s in selected), default=0.0)


def apply_mmr(
    candidates: Sequence[RecommendationWithExplanation],
    diversity_threshold: float,
    exploration_factor: float,
    limit: Optional[int] = None,
    random_source: RandomSource = random.random,
) -> List[RecommendationWithExplanation]:
    """
    `candidates` must already be sorted by score, highest first. The top
    candidate is always kept first. With both factors at 0 the input order
    is returned unchanged. Sets diversity_score on every selected item.
    """
    if not candidates:
        return []
    target = len(candidates) if limit is None else min(limit, len(candidates))
    remaining = list(candidates)

    first = remaining.pop(0)
    first.diversity_score = 1.0
    selected = [first]

    lam = 1 - diversity_threshold - exploration_factor
    while remaining and len(selected) < target:
        best_idx = 0
        best_mmr = float("-inf")
        for i, cand in enumerate(remaining):
            mmr = lam * cand.score - (1 - lam) * max_similarity(cand, selected)
            mmr += random_source() * exploration_factor
            # strict '>' keeps the earlier (higher-scored) candidate on ties
            if mmr > best_mmr:
                best_mmr = mmr
                best_idx = i
        chosen = remaining.pop(best_idx)
        chosen.diversity_score = 1 - max_similarity(chosen, selected)
        selected.append(chosen)

    return selected
