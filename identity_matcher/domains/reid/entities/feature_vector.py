"""
Feature vector value object for ReID representation.

Wraps the fixed-dimension appearance embedding produced by the external
feature extractor.
"""

from dataclasses import dataclass
from typing import Any, List, Sequence, Union

import numpy as np

from identity_matcher.domains.reid.errors import InvalidVectorError

VectorLike = Union["FeatureVector", np.ndarray, Sequence[float]]


@dataclass(frozen=True, eq=False)
class FeatureVector:
    """Immutable embedding; the underlying array is a read-only float32 copy."""

    values: np.ndarray

    def __post_init__(self):
        """Validate and freeze the embedding."""
        try:
            array = np.array(self.values, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise InvalidVectorError(f"Feature vector is not numeric: {e}") from e

        if array.ndim != 1:
            raise InvalidVectorError(f"Feature vector must be one-dimensional, got shape {array.shape}")

        if array.size == 0:
            raise InvalidVectorError("Feature vector cannot be empty")

        if not np.all(np.isfinite(array)):
            raise InvalidVectorError("Feature vector contains NaN or infinite values")

        if float(np.linalg.norm(array)) == 0.0:
            raise InvalidVectorError("Feature vector has zero norm")

        array.setflags(write=False)
        object.__setattr__(self, "values", array)

    @classmethod
    def coerce(cls, value: VectorLike) -> "FeatureVector":
        """Accept a FeatureVector, numpy array or sequence of floats."""
        if isinstance(value, FeatureVector):
            return value
        return cls(values=value)

    @property
    def dimension(self) -> int:
        """Get feature vector dimension."""
        return int(self.values.shape[0])

    @property
    def norm(self) -> float:
        """Get L2 norm of feature vector."""
        return float(np.linalg.norm(self.values))

    @property
    def is_normalized(self) -> bool:
        """Check if feature vector is L2 normalized."""
        return abs(self.norm - 1.0) < 1e-6

    def normalize(self) -> "FeatureVector":
        """Normalize feature vector to unit length."""
        if self.is_normalized:
            return self
        return FeatureVector(values=self.values / self.norm)

    def cosine_similarity(self, other: "FeatureVector") -> float:
        """Calculate cosine similarity with another feature vector."""
        if self.dimension != other.dimension:
            raise InvalidVectorError(
                f"Feature vectors must have same dimension ({self.dimension} != {other.dimension})"
            )

        dot_product = float(np.dot(self.values, other.values)) / (self.norm * other.norm)

        # Clamp to [-1, 1] to handle numerical errors
        return max(-1.0, min(1.0, dot_product))

    def to_numpy(self) -> np.ndarray:
        """Return a writable copy of the embedding."""
        return np.array(self.values, dtype=np.float32)

    def to_list(self) -> List[float]:
        return [float(v) for v in self.values]

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, FeatureVector):
            return NotImplemented
        return self.dimension == other.dimension and bool(np.array_equal(self.values, other.values))

    def __hash__(self) -> int:
        return hash(self.values.tobytes())

    def __repr__(self) -> str:
        return f"FeatureVector(dimension={self.dimension}, norm={self.norm:.4f})"
