"""
Detector and feature-extractor interfaces consumed by identity assignment.
"""

from .base_reid_model import (
    AbstractFeatureExtractor,
    AbstractPersonDetector,
    FeatureExtractorFactory,
    PersonFeatures
)

__all__ = [
    'AbstractFeatureExtractor',
    'AbstractPersonDetector',
    'FeatureExtractorFactory',
    'PersonFeatures'
]
