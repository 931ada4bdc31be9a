"""
giftvec/domain/services/vector_codec.py
---------------------------------------
Textual vector literal used at the storage/cache boundary: ``[v0,v1,...]``.
"""
from __future__ import annotations
import json
import math
import numbers
from typing import List, Sequence

from giftvec.core.exceptions import InvalidEmbedding


def validate_embedding(embedding, expected_dim: int) -> bool:
    """True iff `embedding` is a sequence of exactly `expected_dim` finite numbers."""
    if isinstance(embedding, (str, bytes)) or not hasattr(embedding, "__len__"):
        return False
    if len(embedding) != expected_dim:
        return False
    for v in embedding:
        if isinstance(v, bool) or not isinstance(v, numbers.Real):
            return False
        if not math.isfinite(v):
            return False
    return True


def to_vector_string(embedding: Sequence[float]) -> str:
    values = [float(v) for v in embedding]
    if not all(math.isfinite(v) for v in values):
        raise InvalidEmbedding("Cannot serialize a vector with NaN/Infinity values")
    return json.dumps(values, separators=(",", ":"))


def from_vector_string(literal: str) -> List[float]:
    s = literal.strip()
    if len(s) < 2 or s[0] != "[" or s[-1] != "]":
        raise InvalidEmbedding(f"Malformed vector literal: {s[:40]!r}")
    inner = s[1:-1].strip()
    if not inner:
        return []
    try:
        values = [float(part.strip()) for part in inner.split(",")]
    except ValueError as e:
        raise InvalidEmbedding(f"Malformed vector literal: {e}") from e
    if not all(math.isfinite(v) for v in values):
        raise InvalidEmbedding("Vector literal contains NaN/Infinity values")
    return values
