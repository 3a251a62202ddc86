"""Tier-weighted peer-review consensus."""

import math
from dataclasses import dataclass
from typing import Sequence

from review.constants import (
    ARCHITECT_THRESHOLD,
    BUILDER_THRESHOLD,
    CONSENSUS_THRESHOLD,
    DISAGREEMENT_PENALTY,
    MIN_REVIEWERS,
    TIER_REWARD_RATES,
    TIER_WEIGHTS,
)


@dataclass(frozen=True)
class ReviewVote:
    """The parts of a peer review that feed consensus."""
    tier: int
    score: int
    passed: bool


@dataclass(frozen=True)
class ConsensusResult:
    has_consensus: bool
    passed: bool
    weighted_score: int
    agreement_ratio: float
    pass_weight: float
    fail_weight: float
    total_weight: float
    review_count: int


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def tier_weight(tier: int) -> float:
    """Weight of a reviewer tier; unknown tiers count as Explorer."""
    return TIER_WEIGHTS.get(tier, TIER_WEIGHTS[1])


def calculate_consensus(
    reviews: Sequence[ReviewVote],
    min_reviewers: int = MIN_REVIEWERS,
    threshold: float = CONSENSUS_THRESHOLD,
    penalty: int = DISAGREEMENT_PENALTY,
) -> ConsensusResult:
    """Aggregate reviews into a verdict.

    Consensus needs at least ``min_reviewers`` reviews and one side holding
    ``threshold`` of the total weight. Without consensus the weighted score is
    reduced by ``penalty`` (floored at zero). Below the minimum no score is
    computed.
    """
    if len(reviews) < min_reviewers:
        return ConsensusResult(
            has_consensus=False,
            passed=False,
            weighted_score=0,
            agreement_ratio=0.0,
            pass_weight=0.0,
            fail_weight=0.0,
            total_weight=0.0,
            review_count=len(reviews),
        )

    pass_weight = 0.0
    fail_weight = 0.0
    weighted_sum = 0.0
    for review in reviews:
        weight = tier_weight(review.tier)
        if review.passed:
            pass_weight += weight
        else:
            fail_weight += weight
        weighted_sum += review.score * weight

    total_weight = pass_weight + fail_weight
    pass_ratio = pass_weight / total_weight
    fail_ratio = fail_weight / total_weight
    agreement_ratio = max(pass_ratio, fail_ratio)
    has_consensus = agreement_ratio >= threshold

    weighted_score = _round_half_up(weighted_sum / total_weight)
    if not has_consensus:
        weighted_score = max(0, weighted_score - penalty)

    return ConsensusResult(
        has_consensus=has_consensus,
        passed=has_consensus and pass_ratio >= threshold,
        weighted_score=weighted_score,
        agreement_ratio=agreement_ratio,
        pass_weight=pass_weight,
        fail_weight=fail_weight,
        total_weight=total_weight,
        review_count=len(reviews),
    )


def determine_tier(total_verified: int, domain_verified: int) -> int:
    """Reviewer tier earned from verified contribution counts."""
    if total_verified >= ARCHITECT_THRESHOLD[0] and domain_verified >= ARCHITECT_THRESHOLD[1]:
        return 3
    if total_verified >= BUILDER_THRESHOLD[0] and domain_verified >= BUILDER_THRESHOLD[1]:
        return 2
    return 1


def compute_review_reward(contribution_score: int, tier: int) -> int:
    """Reviewer reward as a tier-dependent share of the reviewed score."""
    rate = TIER_REWARD_RATES.get(tier, TIER_REWARD_RATES[1])
    return _round_half_up(contribution_score * rate)
