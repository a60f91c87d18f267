"""
Driver matching and offer dispatch service.

This module handles:
    - Finding eligible drivers around a pickup point
    - Scoring and ranking candidates
    - Building the offer queue for a dispatch round
    - Dispatching offers to drivers one at a time
    - Expiring/rejecting offers and moving to the next driver
"""

from .candidate_pool import Candidate, find_candidate_drivers
from .scoring import ScoredCandidate, acceptance_stats, compute_score, rank_candidates
from .offer_builder import build_offers_for_trip
from .offer_dispatch import (
    dispatch,
    dispatch_next_offer,
    expire_offer_and_dispatch,
    expire_stale_offers,
    reject_offer,
)

__all__ = [
    "Candidate",
    "find_candidate_drivers",
    "ScoredCandidate",
    "acceptance_stats",
    "compute_score",
    "rank_candidates",
    "build_offers_for_trip",
    "dispatch",
    "dispatch_next_offer",
    "expire_offer_and_dispatch",
    "expire_stale_offers",
    "reject_offer",
]
