"""SQLAlchemy ORM models for the indexed platform state.

Every table is keyed by a natural identifier (on-chain address, transaction
signature, or a composite such as idea + voter) so that processors can upsert
instead of insert. Run ``gsd-indexer db init`` to create the schema.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_unix(ts: Optional[int]) -> datetime:
    """Convert a unix timestamp to a naive UTC datetime; None means now."""
    if ts is None:
        return utcnow()
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


class RoundStatus(str, Enum):
    OPEN = "open"
    VOTING = "voting"
    CLOSED = "closed"


class IdeaStatus(str, Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    VETOED = "vetoed"


class RevenueStatus(str, Enum):
    RECORDED = "recorded"
    DISTRIBUTING = "distributing"
    COMPLETED = "completed"


class PendingRevenueStatus(str, Enum):
    PENDING = "pending"
    PROMOTED = "promoted"


class VerificationType(str, Enum):
    AI = "ai"
    PEER = "peer"
    LEGACY = "legacy"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class IdeaRound(Base):
    """Governance round (one per on-chain round PDA)."""

    __tablename__ = "idea_rounds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    round_index = Column(Integer, nullable=False, default=0)  # Best-effort, not authoritative
    on_chain_address = Column(String(64), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default=RoundStatus.OPEN.value)
    submission_start = Column(DateTime, nullable=False)
    submission_end = Column(DateTime, nullable=False)
    voting_end = Column(DateTime, nullable=False)
    quorum_type = Column(String(32), nullable=False)
    content_hash = Column(String(64), nullable=False)
    idea_count = Column(Integer, nullable=False, default=0)
    transaction_signature = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    ideas = relationship("Idea", back_populates="round")


class Idea(Base):
    """Idea submitted to a round, with its running vote tallies."""

    __tablename__ = "ideas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    idea_index = Column(Integer, nullable=False, default=0)
    on_chain_address = Column(String(64), nullable=False, unique=True)
    round_id = Column(Integer, ForeignKey("idea_rounds.id"), nullable=False)
    author_wallet = Column(String(64), nullable=False)
    content_hash = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default=IdeaStatus.SUBMITTED.value)
    yes_weight = Column(BigInteger, nullable=False, default=0)
    no_weight = Column(BigInteger, nullable=False, default=0)
    abstain_weight = Column(BigInteger, nullable=False, default=0)
    voter_count = Column(Integer, nullable=False, default=0)
    transaction_signature = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    round = relationship("IdeaRound", back_populates="ideas")
    votes = relationship("Vote", back_populates="idea")


class Vote(Base):
    """Single voter's choice on an idea."""

    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("idea_id", "voter_wallet", name="uq_votes_idea_voter"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    idea_id = Column(Integer, ForeignKey("ideas.id"), nullable=False)
    voter_wallet = Column(String(64), nullable=False)
    vote = Column(String(10), nullable=False)  # yes, no, abstain
    weight = Column(BigInteger, nullable=False, default=0)
    on_chain_address = Column(String(64), nullable=True)
    transaction_signature = Column(String(128), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    idea = relationship("Idea", back_populates="votes")


class VoteDeposit(Base):
    """Governance tokens locked by a wallet for voting."""

    __tablename__ = "vote_deposits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(64), nullable=False, unique=True)
    deposited_amount = Column(BigInteger, nullable=False, default=0)
    deposit_timestamp = Column(DateTime, nullable=False, default=EPOCH)
    eligible_at = Column(DateTime, nullable=False, default=EPOCH)
    active_votes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class DelegationRecord(Base):
    """Vote delegation; at most one row per delegator."""

    __tablename__ = "delegation_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    on_chain_address = Column(String(64), nullable=False, unique=True)
    delegator_wallet = Column(String(64), nullable=False, unique=True)
    delegate_wallet = Column(String(64), nullable=False)
    delegated_amount = Column(BigInteger, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    effective_from_round = Column(Integer, nullable=False, default=0)
    revoked_at = Column(DateTime, nullable=True)
    transaction_signature = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class RevenueEvent(Base):
    """Treasury revenue and its four-way split."""

    __tablename__ = "revenue_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_index = Column(Integer, nullable=False, default=0)  # Best-effort, not authoritative
    on_chain_address = Column(String(64), nullable=True, unique=True)
    origin_signature = Column(String(128), nullable=False, unique=True)
    token = Column(String(10), nullable=False)  # sol, usdc
    total_amount = Column(BigInteger, nullable=False)
    developer_pool = Column(BigInteger, nullable=False)
    treasury_reserve = Column(BigInteger, nullable=False)
    burn_amount = Column(BigInteger, nullable=False)
    maintenance_amount = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default=RevenueStatus.RECORDED.value)
    gsd_burned = Column(BigInteger, nullable=False, default=0)
    burn_signature = Column(String(128), nullable=True)
    claimed_amount = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    claims = relationship("RevenueClaim", back_populates="revenue_event")


class RevenueClaim(Base):
    """Contributor's claim against a revenue event's developer pool."""

    __tablename__ = "revenue_claims"
    __table_args__ = (
        UniqueConstraint("revenue_event_id", "claimant_wallet", name="uq_revenue_claims_event_claimant"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    revenue_event_id = Column(Integer, ForeignKey("revenue_events.id"), nullable=False)
    claimant_wallet = Column(String(64), nullable=False)
    contribution_score = Column(BigInteger, nullable=False, default=0)
    total_score = Column(BigInteger, nullable=False, default=0)
    amount = Column(BigInteger, nullable=False, default=0)
    transaction_signature = Column(String(128), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    revenue_event = relationship("RevenueEvent", back_populates="claims")


class PendingRevenue(Base):
    """Treasury inflow detected from transfers, awaiting promotion."""

    __tablename__ = "pending_revenue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_signature = Column(String(128), nullable=False, unique=True)
    amount = Column(BigInteger, nullable=False)
    token = Column(String(10), nullable=False)
    from_wallet = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, default=PendingRevenueStatus.PENDING.value)
    revenue_event_id = Column(Integer, ForeignKey("revenue_events.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class VerificationReport(Base):
    """AI, peer, or legacy verification of a contribution (scores on a 0-10000 scale)."""

    __tablename__ = "verification_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_signature = Column(String(128), nullable=True, unique=True)
    on_chain_address = Column(String(64), nullable=True)
    task_ref = Column(String(64), nullable=False)
    developer_wallet = Column(String(64), nullable=False)
    verification_type = Column(String(10), nullable=False)
    overall_score = Column(Integer, nullable=False, default=0)
    confidence = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=VerificationStatus.PENDING.value)
    report_hash = Column(String(64), nullable=True)
    report_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    peer_reviews = relationship("PeerReview", back_populates="verification_report")


class PeerReview(Base):
    """One reviewer's verdict on a verification report."""

    __tablename__ = "peer_reviews"
    __table_args__ = (
        UniqueConstraint("verification_report_id", "reviewer_wallet", name="uq_peer_reviews_report_reviewer"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    verification_report_id = Column(Integer, ForeignKey("verification_reports.id"), nullable=False)
    reviewer_wallet = Column(String(64), nullable=False)
    tier = Column(Integer, nullable=False, default=1)
    score = Column(Integer, nullable=False)
    passed = Column(Boolean, nullable=False)
    review_hash = Column(String(64), nullable=True)
    on_chain_address = Column(String(64), nullable=True)
    transaction_signature = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    verification_report = relationship("VerificationReport", back_populates="peer_reviews")


class ReviewerProfile(Base):
    """Reviewer reputation used for weighting and assignment."""

    __tablename__ = "reviewer_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(64), nullable=False, unique=True)
    tier = Column(Integer, nullable=False, default=1)
    total_reviews = Column(Integer, nullable=False, default=0)
    domain_reviews = Column(JSON, nullable=False, default=dict)
    verified_contributions = Column(Integer, nullable=False, default=0)
    domain_contributions = Column(JSON, nullable=False, default=dict)
    review_quality_score = Column(Float, nullable=False, default=1.0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Contribution(Base):
    """Verified contribution recorded as a compressed-tree leaf."""

    __tablename__ = "contributions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_signature = Column(String(128), nullable=False, unique=True)
    developer_wallet = Column(String(64), nullable=False)
    task_ref = Column(String(64), nullable=False)
    verification_score = Column(Integer, nullable=False)
    contribution_timestamp = Column(DateTime, nullable=False)
    content_hash = Column(String(64), nullable=False)
    leaf_hash = Column(String(64), nullable=True)
    tree_address = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class IndexedInstruction(Base):
    """Ledger of processed instructions (idempotency guard)."""

    __tablename__ = "indexed_instructions"
    __table_args__ = (
        UniqueConstraint("signature", "instruction_index", name="uq_indexed_instructions_sig_index"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    signature = Column(String(128), nullable=False)
    instruction_index = Column(Integer, nullable=False)
    instruction_name = Column(String(64), nullable=False)
    processed_at = Column(DateTime, default=utcnow, nullable=False)
