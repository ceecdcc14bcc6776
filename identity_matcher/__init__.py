"""
Person identity matcher.

Assigns stable global identities to detected persons across frames, cameras
and time windows by comparing appearance feature vectors.
"""
