"""
giftvec/domain/services/vector_math.py
--------------------------------------
In-process vector operations: cosine similarity, L2 normalization,
weighted averaging and exponential time decay.
"""
from __future__ import annotations
import math
from typing import List, Optional, Sequence

import numpy as np

from giftvec.core.exceptions import DimensionMismatch


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    dot(a, b) / (|a| * |b|).
    Returns 0.0 (not NaN) when either vector has zero magnitude.
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if magnitude == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / magnitude, -1.0, 1.0))


def normalize(vec: Sequence[float]) -> List[float]:
    """L2-normalize a vector (safe for zero-length)."""
    v = np.asarray(vec, dtype=np.float64)
    norm = np.linalg.norm(v)
    return (v / norm).tolist() if norm > 0 else v.tolist()


def weighted_mean(vectors: Sequence[Sequence[float]], weights: Sequence[float]) -> Optional[List[float]]:
    """sum(w_i * v_i) / sum(w_i); None when there is nothing to average."""
    if not vectors:
        return None
    mat = np.asarray(vectors, dtype=np.float64)
    w = np.asarray(weights, dtype=np.float64)
    total = float(w.sum())
    if total <= 0:
        return None
    return (w @ mat / total).tolist()


def blend(old: Sequence[float], new: Sequence[float], new_weight: float) -> List[float]:
    """normalize((1 - new_weight) * old + new_weight * new)"""
    if len(old) != len(new):
        raise DimensionMismatch(len(old), len(new))
    mixed = np.asarray(old, dtype=np.float64) * (1 - new_weight) + np.asarray(new, dtype=np.float64) * new_weight
    return normalize(mixed)


def time_decay(age_days: float, half_life_days: float) -> float:
    """2^(-age/half_life): 1.0 now, 0.5 after one half-life, never exactly zero."""
    return math.pow(2.0, -max(age_days, 0.0) / half_life_days)


def random_unit_vector(dimensions: int, rng: Optional[np.random.Generator] = None) -> List[float]:
    rng = rng or np.random.default_rng()
    return normalize(rng.uniform(-1.0, 1.0, size=dimensions))
