"""
BoundingBox value object for person detections.

Stored as (x, y, width, height) in pixel coordinates. The matcher only keeps
it as sighting context; matching never looks at geometry.
"""
from dataclasses import dataclass
from typing import Any, Dict, Sequence, Tuple


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned person box in pixel coordinates."""

    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Bounding box width and height must be positive")

    @classmethod
    def from_xyxy(cls, coords: Sequence[float]) -> 'BoundingBox':
        """
        Create BoundingBox from corner coordinates.

        Args:
            coords: [x1, y1, x2, y2]

        Returns:
            BoundingBox instance
        """
        if len(coords) != 4:
            raise ValueError("Coordinates must have 4 elements")
        x1, y1, x2, y2 = (float(c) for c in coords)
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def to_xyxy(self) -> Tuple[float, float, float, float]:
        """Convert to (x1, y1, x2, y2) format."""
        return (self.x, self.y, self.x2, self.y2)

    def iou(self, other: 'BoundingBox') -> float:
        """Intersection over union with another box."""
        inter_w = max(0.0, min(self.x2, other.x2) - max(self.x, other.x))
        inter_h = max(0.0, min(self.y2, other.y2) - max(self.y, other.y))
        inter_area = inter_w * inter_h
        if inter_area <= 0:
            return 0.0
        return inter_area / (self.area + other.area - inter_area)

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}
