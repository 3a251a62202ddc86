"""Reviewer profile bookkeeping: bootstrap, contribution credit and tier."""

from typing import Dict, Iterable, Sequence

from sqlalchemy import update
from sqlalchemy.orm import Session

from db.models import ReviewerProfile
from db.upsert import insert_ignore
from log import get_logger
from review.consensus import determine_tier

logger = get_logger(__name__)


def ensure_reviewer_profile(session: Session, wallet: str) -> ReviewerProfile:
    """Fetch the wallet's profile, creating an Explorer-tier one if missing."""
    insert_ignore(
        session,
        ReviewerProfile,
        values={
            "wallet_address": wallet,
            "tier": 1,
            "total_reviews": 0,
            "domain_reviews": {},
            "verified_contributions": 0,
            "domain_contributions": {},
            "review_quality_score": 1.0,
        },
        conflict_columns=["wallet_address"],
    )
    return session.query(ReviewerProfile).filter(ReviewerProfile.wallet_address == wallet).one()


def _bump(counts: Dict[str, int], domains: Iterable[str]) -> Dict[str, int]:
    bumped = dict(counts or {})
    for domain in domains:
        bumped[domain] = bumped.get(domain, 0) + 1
    return bumped


def credit_contribution_domains(session: Session, wallet: str, domains: Sequence[str]) -> None:
    """Count one verified contribution in each of ``domains`` for ``wallet``."""
    if not domains:
        return
    profile = ensure_reviewer_profile(session, wallet)
    profile.domain_contributions = _bump(profile.domain_contributions, domains)


def record_verified_contribution(session: Session, wallet: str, domains: Sequence[str] = ()) -> None:
    """Credit a newly indexed contribution to the developer's profile."""
    profile = ensure_reviewer_profile(session, wallet)
    session.execute(
        update(ReviewerProfile)
        .where(ReviewerProfile.id == profile.id)
        .values(verified_contributions=ReviewerProfile.verified_contributions + 1)
    )
    if domains:
        profile.domain_contributions = _bump(profile.domain_contributions, domains)
    logger.debug(f"Credited contribution to {wallet} (domains={list(domains)})")


def record_domain_reviews(profile: ReviewerProfile, domains: Sequence[str]) -> None:
    if domains:
        profile.domain_reviews = _bump(profile.domain_reviews, domains)


def reviewer_tier(profile: ReviewerProfile, domains: Sequence[str]) -> int:
    """Tier from total verified contributions and the best count among ``domains``."""
    domain_counts = profile.domain_contributions or {}
    domain_verified = max((domain_counts.get(domain, 0) for domain in domains), default=0)
    return determine_tier(profile.verified_contributions or 0, domain_verified)
