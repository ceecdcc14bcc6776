from .identity_matcher import IdentityResolution, PersonIdentityMatcher
from .similarity import MatchResult

__all__ = [
    'IdentityResolution',
    'PersonIdentityMatcher',
    'MatchResult'
]
