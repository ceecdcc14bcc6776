"""
Similarity scoring and nearest-neighbour selection for the identity registry.

Scores are cosine similarities in [-1, 1] (higher is more similar). The scan is
linear over the gallery; pool sizes in the tens to low thousands keep a single
cdist call cheap.
"""
import logging
from datetime import datetime
from typing import List, NamedTuple, Optional, Sequence

import numpy as np
from scipy.spatial.distance import cdist

from identity_matcher.shared.types import GlobalID

logger = logging.getLogger(__name__)

# Scores closer than this are treated as equal for tie-breaking.
TIE_TOLERANCE = 1e-9
NO_MATCH_SIMILARITY = -1.0


class MatchResult(NamedTuple):
    """Best gallery candidate for a query, even when it misses the threshold."""
    found: bool
    global_id: Optional[GlobalID]
    similarity: float


class GalleryCandidate(NamedTuple):
    global_id: GlobalID
    last_seen_at: datetime


def score_gallery(query: np.ndarray, gallery: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of one query against every gallery row.

    Args:
        query: (D,) embedding
        gallery: (N, D) embeddings

    Returns:
        (N,) similarities clipped to [-1, 1]
    """
    if gallery.size == 0:
        return np.empty((0,), dtype=np.float64)
    query_2d = query.reshape(1, -1).astype(np.float64)
    gallery_2d = gallery.reshape(gallery.shape[0], -1).astype(np.float64)
    scores = 1.0 - cdist(query_2d, gallery_2d, metric='cosine')[0]
    return np.clip(scores, -1.0, 1.0)


def select_best_match(
    candidates: Sequence[GalleryCandidate],
    scores: np.ndarray,
    threshold: float,
) -> MatchResult:
    """
    Pick the highest-scoring candidate.

    Ties go to the most recently seen identity, then to the lowest global ID,
    so results are deterministic for a given registry state.
    """
    if len(candidates) == 0:
        return MatchResult(False, None, NO_MATCH_SIMILARITY)

    best_score = float(np.max(scores))
    tied: List[GalleryCandidate] = [
        candidate for candidate, score in zip(candidates, scores)
        if best_score - float(score) <= TIE_TOLERANCE
    ]
    if len(tied) > 1:
        latest = max(c.last_seen_at for c in tied)
        winner = min(
            (c for c in tied if c.last_seen_at == latest),
            key=lambda c: c.global_id,
        )
        logger.debug(f"Tie between {len(tied)} identities at similarity {best_score:.4f}; picked {winner.global_id}")
    else:
        winner = tied[0]

    return MatchResult(best_score >= threshold, winner.global_id, best_score)
