#Expose the high-level pipeline pieces:
#Scoring / ranking
#Matching engine (validate -> locate -> score -> rank)
#Dispatcher orchestrator (offers, driver responses, expiry, cancellation)

from .scoring import rank_candidates
from .engine import MatchingEngine, MatchingResult, MatchErrorCode
from .dispatcher import Dispatcher #the main class to call to dispatch a request to drivers
from .store import InMemoryMatchingStore, MatchingStore

__all__ = [
    "rank_candidates",
    "MatchingEngine",
    "MatchingResult",
    "MatchErrorCode",
    "Dispatcher",
    "InMemoryMatchingStore",
    "MatchingStore",
]
