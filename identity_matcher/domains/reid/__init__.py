"""
Re-identification domain for cross-camera person identity.

This domain handles:
- Similarity matching of feature vectors against known identities
- Global identity lifecycle (creation, expiration, sessions)
- Correlation of in-memory identities with persisted rows
"""
