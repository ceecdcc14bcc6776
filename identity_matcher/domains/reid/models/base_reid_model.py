"""
Abstract detection and feature-extraction interfaces.

The identity matcher consumes feature vectors only; concrete detectors and
re-identification models live outside this package and plug in here.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

import numpy as np

from identity_matcher.domains.reid.entities.bounding_box import BoundingBox
from identity_matcher.domains.reid.entities.feature_vector import FeatureVector
from identity_matcher.shared.types import CameraID, TrackID


@dataclass(frozen=True)
class PersonFeatures:
    """One detected person, ready for identity assignment."""
    vector: FeatureVector
    bounding_box: Optional[BoundingBox] = None
    confidence: float = 0.0
    track_id: Optional[TrackID] = None
    camera_id: Optional[CameraID] = None


class AbstractPersonDetector(ABC):
    """Abstract base class for person detectors."""

    @abstractmethod
    async def detect(self, frame: np.ndarray) -> List[BoundingBox]:
        """
        Detect persons in a frame.

        Args:
            frame: Input image as numpy array (H, W, C)

        Returns:
            Bounding boxes of detected persons
        """
        pass


class AbstractFeatureExtractor(ABC):
    """Abstract base class for person re-identification feature extractors."""

    @property
    @abstractmethod
    def feature_dimension(self) -> int:
        """Dimension of the vectors this extractor produces."""
        pass

    @abstractmethod
    async def extract(self, image: np.ndarray) -> FeatureVector:
        """
        Extract an appearance embedding from a single person crop.

        Args:
            image: Person crop as numpy array (H, W, C)

        Returns:
            Feature vector of length `feature_dimension`
        """
        pass

    async def extract_batch(self, images: List[np.ndarray]) -> List[FeatureVector]:
        return [await self.extract(image) for image in images]

    def get_model_info(self) -> Dict[str, Any]:
        return {"name": type(self).__name__, "feature_dimension": self.feature_dimension}


class FeatureExtractorFactory:
    """Factory for creating feature extractor instances."""

    _extractors: Dict[str, Type[AbstractFeatureExtractor]] = {}

    @classmethod
    def register_extractor(cls, name: str, extractor_class: Type[AbstractFeatureExtractor]):
        """Register a feature extractor class."""
        cls._extractors[name] = extractor_class

    @classmethod
    def create_extractor(cls, name: str, **kwargs) -> AbstractFeatureExtractor:
        """Create a feature extractor instance."""
        if name not in cls._extractors:
            raise ValueError(f"Unknown feature extractor type: {name}")

        return cls._extractors[name](**kwargs)

    @classmethod
    def get_available_extractors(cls) -> List[str]:
        """Get list of available feature extractor types."""
        return list(cls._extractors.keys())
