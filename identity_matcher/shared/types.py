# FILE: identity_matcher/shared/types.py
"""
Module for shared type aliases used across the application.
"""
from typing import List, NewType


CameraID = NewType("CameraID", str)
GlobalID = NewType("GlobalID", str) # System-wide unique person ID (UUID string)
DbID = NewType("DbID", int) # Primary key assigned by the persistence layer
TrackID = NewType("TrackID", int) # Intra-camera track ID
BoundingBoxXYXY = NewType("BoundingBoxXYXY", List[float]) # [x1, y1, x2, y2]
