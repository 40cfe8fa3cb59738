# File: app/infrastructure/embedding_models/feature_extraction.py
"""
Shapes returned by a feature-extraction pipeline.

Depending on the model and provider, one input comes back either as a single
pooled vector (`[float, ...]`) or as per-token rows (`[[float, ...], ...]`), and
a batch of one is sometimes wrapped in an extra list. The payload is resolved
once here so the rest of the adapter only sees `PooledVector` or `TokenMatrix`.
"""
from dataclasses import dataclass
from typing import Any, List, Union

import numpy as np

from app.application.ports.embedding_port import EmbeddingError, EmptyEmbeddingError


@dataclass(frozen=True)
class PooledVector:
    values: List[float]

    def pooled(self) -> np.ndarray:
        return np.asarray(self.values, dtype=np.float64)


@dataclass(frozen=True)
class TokenMatrix:
    rows: List[List[float]]

    def pooled(self) -> np.ndarray:
        matrix = np.asarray(self.rows, dtype=np.float64)
        if matrix.ndim != 2:
            raise EmbeddingError(f"Ragged token matrix in embedding output (ndim={matrix.ndim})")
        return matrix.mean(axis=0)


FeatureExtractionOutput = Union[PooledVector, TokenMatrix]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_vector(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0 and all(_is_number(x) for x in value)


def _is_matrix(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0 and all(_is_vector(row) for row in value)


def _resolve_item(raw: Any) -> FeatureExtractionOutput:
    if _is_vector(raw):
        return PooledVector(values=raw)
    if _is_matrix(raw):
        return TokenMatrix(rows=raw)
    if not raw or (isinstance(raw, list) and all(isinstance(r, list) and not r for r in raw)):
        raise EmptyEmbeddingError("Empty embedding result")
    raise EmptyEmbeddingError(f"Unexpected embedding output shape: {type(raw).__name__}")


def resolve_single(raw: Any) -> FeatureExtractionOutput:
    """Resolves the output for a single input string."""
    if isinstance(raw, list) and len(raw) == 1 and _is_matrix(raw[0]):
        # Batch of one with per-token rows
        raw = raw[0]
    return _resolve_item(raw)


def resolve_batch(raw: Any, expected: int) -> List[FeatureExtractionOutput]:
    """Resolves the output for a list of `expected` input strings, preserving order."""
    if expected == 1 and _is_vector(raw):
        return [PooledVector(values=raw)]
    if not isinstance(raw, list) or not raw:
        raise EmptyEmbeddingError("Empty embedding result")
    if len(raw) != expected:
        raise EmbeddingError(f"Embedding batch size mismatch: expected {expected}, got {len(raw)}")
    return [_resolve_item(item) for item in raw]


def l2_normalize(vector: np.ndarray) -> List[float]:
    if vector.size == 0:
        raise EmptyEmbeddingError("Empty embedding result")
    norm = float(np.linalg.norm(vector)) or 1.0
    return (vector / norm).tolist()
