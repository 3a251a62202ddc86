"""Verification processor - AI/peer reports and peer reviews."""

from typing import Dict

from sqlalchemy import update
from sqlalchemy.orm import Session

from chain.instructions import (
    FinalizePeerVerificationArgs,
    InstructionKind,
    NoArgs,
    SubmitPeerReviewArgs,
    SubmitVerificationArgs,
)
from config import Config
from db.models import (
    PeerReview,
    ReviewerProfile,
    VerificationReport,
    VerificationStatus,
    VerificationType,
)
from db.upsert import upsert
from log import get_logger
from processors.base import Handler, InstructionContext, Processor, ReferentialMiss
from review.consensus import ReviewVote, calculate_consensus
from review.profiles import ensure_reviewer_profile, record_domain_reviews, reviewer_tier
from review.scoring import status_for_confidence

logger = get_logger(__name__)


def _find_report(session: Session, address: str) -> VerificationReport:
    report = (
        session.query(VerificationReport)
        .filter(VerificationReport.on_chain_address == address)
        .first()
    )
    if report is None:
        raise ReferentialMiss("VerificationReport", address)
    return report


class VerificationProcessor(Processor):
    """Applies verification and peer-review instructions."""

    def __init__(self, config: Config):
        self.confidence_threshold = config.confidence_threshold
        self.min_reviewers = config.min_reviewers

    def handlers(self) -> Dict[InstructionKind, Handler]:
        return {
            InstructionKind.SUBMIT_VERIFICATION: self.apply_submit_verification,
            InstructionKind.SUBMIT_PEER_REVIEW: self.apply_submit_peer_review,
            InstructionKind.FINALIZE_PEER_VERIFICATION: self.apply_finalize_peer_verification,
            InstructionKind.INIT_VERIFICATION_CONFIG: self.apply_init_verification_config,
        }

    def apply_submit_verification(
        self, session: Session, ctx: InstructionContext, args: SubmitVerificationArgs
    ) -> None:
        """Record report accounts[1] for developer accounts[2]."""
        report_address = ctx.account(1)
        developer = ctx.account(2)
        status = status_for_confidence(args.confidence, self.confidence_threshold)
        verification_type = VerificationType.PEER if args.is_peer else VerificationType.AI

        upsert(
            session,
            VerificationReport,
            values={
                "transaction_signature": ctx.signature,
                "on_chain_address": report_address,
                "task_ref": args.task_ref,
                "developer_wallet": developer,
                "verification_type": verification_type.value,
                "overall_score": args.score,
                "confidence": args.confidence,
                "status": status.value,
                "report_hash": args.report_hash,
            },
            conflict_columns=["transaction_signature"],
            update_values={"on_chain_address": report_address},
        )
        logger.info(
            f"Verification report {report_address}: score={args.score} "
            f"confidence={args.confidence} status={status.value}"
        )

    def apply_submit_peer_review(
        self, session: Session, ctx: InstructionContext, args: SubmitPeerReviewArgs
    ) -> None:
        """Upsert the review, bump the reviewer's counters and re-evaluate consensus."""
        report_address = ctx.account(1)
        review_address = ctx.account(2)
        reviewer = ctx.account(4)

        report = _find_report(session, report_address)
        domains = (report.report_json or {}).get("domain_tags") or []
        profile = ensure_reviewer_profile(session, reviewer)
        profile.tier = reviewer_tier(profile, domains)

        existing = (
            session.query(PeerReview.id)
            .filter(PeerReview.verification_report_id == report.id, PeerReview.reviewer_wallet == reviewer)
            .first()
        )
        review_fields = {
            "score": args.score,
            "passed": args.passed,
            "review_hash": args.review_hash,
            "on_chain_address": review_address,
            "transaction_signature": ctx.signature,
        }
        upsert(
            session,
            PeerReview,
            values={
                "verification_report_id": report.id,
                "reviewer_wallet": reviewer,
                "tier": profile.tier,
                **review_fields,
            },
            conflict_columns=["verification_report_id", "reviewer_wallet"],
            update_values=review_fields,
        )

        if existing is None:
            session.execute(
                update(ReviewerProfile)
                .where(ReviewerProfile.id == profile.id)
                .values(total_reviews=ReviewerProfile.total_reviews + 1)
            )
            record_domain_reviews(profile, domains)

        logger.info(
            f"Peer review by {reviewer} (tier {profile.tier}) on {report_address}: "
            f"score={args.score} passed={args.passed}"
        )
        self._apply_consensus(session, report)

    def _apply_consensus(self, session: Session, report: VerificationReport) -> None:
        """Complete a pending report once its reviews reach consensus."""
        votes = [
            ReviewVote(tier=tier, score=score, passed=passed)
            for tier, score, passed in session.query(PeerReview.tier, PeerReview.score, PeerReview.passed)
            .filter(PeerReview.verification_report_id == report.id)
            .all()
        ]
        result = calculate_consensus(votes, min_reviewers=self.min_reviewers)
        if not result.has_consensus or report.status != VerificationStatus.PENDING.value:
            return

        report.status = VerificationStatus.COMPLETED.value
        report.overall_score = result.weighted_score
        report.verification_type = VerificationType.PEER.value
        report.report_json = {
            **(report.report_json or {}),
            "consensus": {
                "passed": result.passed,
                "weighted_score": result.weighted_score,
                "agreement_ratio": result.agreement_ratio,
                "review_count": result.review_count,
            },
        }
        logger.info(
            f"Consensus reached on report {report.on_chain_address}: "
            f"passed={result.passed} score={result.weighted_score}"
        )

    def apply_finalize_peer_verification(
        self, session: Session, ctx: InstructionContext, args: FinalizePeerVerificationArgs
    ) -> None:
        """On-chain finalization is authoritative over the local consensus result."""
        report_address = ctx.account(1)
        report = _find_report(session, report_address)

        report.status = VerificationStatus.COMPLETED.value
        report.overall_score = args.final_score
        report.confidence = args.final_confidence
        report.verification_type = VerificationType.PEER.value
        logger.info(f"Peer verification finalized for {report_address}: score={args.final_score}")

    def apply_init_verification_config(self, session: Session, ctx: InstructionContext, args: NoArgs) -> None:
        logger.info(f"Verification config initialized (tx={ctx.signature})")
