"""Reviewer eligibility, ranking and panel selection."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from sqlalchemy.orm import Session

from config import Config
from db.models import PeerReview, ReviewerProfile, VerificationReport
from log import get_logger
from review.constants import MAX_CONSECUTIVE_REVIEWS

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReviewerCandidate:
    wallet: str
    tier: int
    review_quality_score: float = 0.0
    domain_reviews: Dict[str, int] = field(default_factory=dict)
    domain_contributions: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class RankedReviewer:
    wallet: str
    tier: int
    relevance: int
    quality_score: int  # review_quality_score on a 0-10000 scale


def domain_relevance(candidate: ReviewerCandidate, domains: Sequence[str]) -> int:
    """+2 per domain the reviewer contributed in, +1 per domain they reviewed in."""
    score = 0
    for domain in domains:
        if candidate.domain_contributions.get(domain, 0) > 0:
            score += 2
        if candidate.domain_reviews.get(domain, 0) > 0:
            score += 1
    return score


def reviewed_consecutively(wallet: str, recent_panels: Sequence[Set[str]], limit: int) -> bool:
    """True if ``wallet`` sat on each of the author's last ``limit`` review panels.

    Args:
        wallet: Reviewer wallet
        recent_panels: Reviewer wallets per author submission, most recent first
        limit: Number of consecutive submissions that triggers exclusion
    """
    if limit <= 0 or len(recent_panels) < limit:
        return False
    return all(wallet in panel for panel in recent_panels[:limit])


def select_eligible_reviewers(
    candidates: Sequence[ReviewerCandidate],
    author_wallet: str,
    domains: Sequence[str],
    recent_panels: Sequence[Set[str]] = (),
    max_consecutive: int = MAX_CONSECUTIVE_REVIEWS,
) -> List[RankedReviewer]:
    """Filter out the author and collusion risks, then rank.

    Ranking: domain relevance, then tier, then quality score, all descending.
    """
    ranked = []
    for candidate in candidates:
        if candidate.wallet == author_wallet:
            continue
        if reviewed_consecutively(candidate.wallet, recent_panels, max_consecutive):
            logger.debug(f"Excluding {candidate.wallet}: reviewed {author_wallet} consecutively")
            continue
        ranked.append(
            RankedReviewer(
                wallet=candidate.wallet,
                tier=candidate.tier,
                relevance=domain_relevance(candidate, domains),
                quality_score=int(candidate.review_quality_score * 10000 + 0.5),
            )
        )

    ranked.sort(key=lambda r: (r.relevance, r.tier, r.quality_score), reverse=True)
    return ranked


def assign_reviewers(eligible: Sequence[RankedReviewer], count: int) -> List[RankedReviewer]:
    """Pick a panel of ``count`` reviewers, forcing tier diversity when possible.

    If the naive top ``count`` share one tier, the lowest-ranked pick is
    swapped for the highest-ranked remaining candidate of another tier.
    """
    if len(eligible) <= count:
        return list(eligible)

    panel = list(eligible[:count])
    if count < 2 or len({r.tier for r in panel}) > 1:
        return panel

    panel_tier = panel[0].tier
    for candidate in eligible[count:]:
        if candidate.tier != panel_tier:
            panel[-1] = candidate
            break
    return panel


def load_candidates(session: Session) -> List[ReviewerCandidate]:
    """All reviewer profiles as assignment candidates."""
    return [
        ReviewerCandidate(
            wallet=profile.wallet_address,
            tier=profile.tier,
            review_quality_score=profile.review_quality_score or 0.0,
            domain_reviews=dict(profile.domain_reviews or {}),
            domain_contributions=dict(profile.domain_contributions or {}),
        )
        for profile in session.query(ReviewerProfile).all()
    ]


def load_recent_panels(
    session: Session, author_wallet: str, limit: int, exclude_report_id: Optional[int] = None
) -> List[Set[str]]:
    """Reviewer wallets for the author's most recent reviewed submissions."""
    query = (
        session.query(VerificationReport.id)
        .join(PeerReview, PeerReview.verification_report_id == VerificationReport.id)
        .filter(VerificationReport.developer_wallet == author_wallet)
    )
    if exclude_report_id is not None:
        query = query.filter(VerificationReport.id != exclude_report_id)
    rows = query.group_by(VerificationReport.id).order_by(VerificationReport.id.desc()).limit(limit).all()
    report_ids = [report_id for (report_id,) in rows]
    panels: Dict[int, Set[str]] = {report_id: set() for report_id in report_ids}
    if report_ids:
        reviews = (
            session.query(PeerReview.verification_report_id, PeerReview.reviewer_wallet)
            .filter(PeerReview.verification_report_id.in_(report_ids))
            .all()
        )
        for report_id, wallet in reviews:
            panels[report_id].add(wallet)
    return [panels[report_id] for report_id in report_ids]


def find_reviewers_for_report(
    session: Session,
    report: VerificationReport,
    count: Optional[int] = None,
    max_consecutive: int = MAX_CONSECUTIVE_REVIEWS,
) -> List[RankedReviewer]:
    """Eligible reviewers for ``report``, optionally cut to a panel of ``count``."""
    domains = (report.report_json or {}).get("domain_tags", [])
    eligible = select_eligible_reviewers(
        load_candidates(session),
        author_wallet=report.developer_wallet,
        domains=domains,
        recent_panels=load_recent_panels(
            session, report.developer_wallet, max_consecutive, exclude_report_id=report.id
        ),
        max_consecutive=max_consecutive,
    )
    if count is None:
        return eligible
    return assign_reviewers(eligible, count)


def assign_panel(session: Session, config: Config, report_id: int, count: Optional[int] = None) -> List[RankedReviewer]:
    """Panel for a stored report, sized ``MIN_REVIEWERS`` unless ``count`` is given.

    Raises:
        LookupError: If no report has ``report_id``
    """
    report = session.get(VerificationReport, report_id)
    if report is None:
        raise LookupError(f"Verification report {report_id} not found")

    panel = find_reviewers_for_report(
        session,
        report,
        count=count or config.min_reviewers,
        max_consecutive=config.max_consecutive_reviews,
    )
    logger.info(f"Assigned {len(panel)} reviewer(s) to report {report_id}: {[r.wallet for r in panel]}")
    return panel
