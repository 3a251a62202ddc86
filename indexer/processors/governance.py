"""Governance processor - rounds, ideas, votes and vote deposits."""

from collections import defaultdict
from datetime import timedelta
from typing import Dict

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from chain.instructions import (
    CastVoteArgs,
    CreateRoundArgs,
    InstructionKind,
    NoArgs,
    SubmitIdeaArgs,
    TokenAmountArgs,
    VoteChoice,
)
from config import Config
from db.models import (
    EPOCH,
    Idea,
    IdeaRound,
    IdeaStatus,
    RoundStatus,
    Vote,
    VoteDeposit,
    from_unix,
)
from db.upsert import insert_ignore, upsert
from log import get_logger
from processors.base import Handler, InstructionContext, Processor, ReferentialMiss

logger = get_logger(__name__)

# Guarded round transitions: stored status -> next status
ROUND_TRANSITIONS: Dict[RoundStatus, RoundStatus] = {
    RoundStatus.OPEN: RoundStatus.VOTING,
    RoundStatus.VOTING: RoundStatus.CLOSED,
}

# Idea tally column per vote choice
TALLY_COLUMNS: Dict[VoteChoice, str] = {
    VoteChoice.YES: "yes_weight",
    VoteChoice.NO: "no_weight",
    VoteChoice.ABSTAIN: "abstain_weight",
}


def _find_round(session: Session, address: str) -> IdeaRound:
    idea_round = session.query(IdeaRound).filter(IdeaRound.on_chain_address == address).first()
    if idea_round is None:
        raise ReferentialMiss("IdeaRound", address)
    return idea_round


def _find_idea(session: Session, address: str) -> Idea:
    idea = session.query(Idea).filter(Idea.on_chain_address == address).first()
    if idea is None:
        raise ReferentialMiss("Idea", address)
    return idea


class GovernanceProcessor(Processor):
    """Applies governance instructions to rounds, ideas, votes and deposits."""

    def __init__(self, config: Config):
        self.timelock = timedelta(seconds=config.vote_timelock_seconds)

    def handlers(self) -> Dict[InstructionKind, Handler]:
        return {
            InstructionKind.CREATE_ROUND: self.apply_create_round,
            InstructionKind.SUBMIT_IDEA: self.apply_submit_idea,
            InstructionKind.TRANSITION_ROUND: self.apply_transition_round,
            InstructionKind.CAST_VOTE: self.apply_cast_vote,
            InstructionKind.DEPOSIT_TOKENS: self.apply_deposit_tokens,
            InstructionKind.WITHDRAW_TOKENS: self.apply_withdraw_tokens,
            InstructionKind.RELINQUISH_VOTE: self.apply_relinquish_vote,
            InstructionKind.VETO_IDEA: self.apply_veto_idea,
        }

    def apply_create_round(self, session: Session, ctx: InstructionContext, args: CreateRoundArgs) -> None:
        """Create the round (accounts[1]) or refresh its schedule."""
        address = ctx.account(1)
        schedule = {
            "submission_start": from_unix(args.submission_start),
            "submission_end": from_unix(args.submission_end),
            "voting_end": from_unix(args.voting_end),
            "quorum_type": args.quorum_type.value,
            "content_hash": args.content_hash,
        }

        # round_index is best-effort; the on-chain address is the identity
        next_index = session.execute(
            select(func.coalesce(func.max(IdeaRound.round_index) + 1, 0))
        ).scalar_one()

        upsert(
            session,
            IdeaRound,
            values={
                "on_chain_address": address,
                "round_index": next_index,
                "status": RoundStatus.OPEN.value,
                "idea_count": 0,
                "transaction_signature": ctx.signature,
                **schedule,
            },
            conflict_columns=["on_chain_address"],
            update_values=schedule,
        )
        logger.info(f"Indexed round {address} ({args.quorum_type.value})")

    def apply_submit_idea(self, session: Session, ctx: InstructionContext, args: SubmitIdeaArgs) -> None:
        """Create the idea (accounts[1]) in round accounts[0]."""
        round_address = ctx.account(0)
        idea_address = ctx.account(1)
        author = ctx.account(2)

        idea_round = _find_round(session, round_address)
        inserted = insert_ignore(
            session,
            Idea,
            values={
                "on_chain_address": idea_address,
                "round_id": idea_round.id,
                "idea_index": idea_round.idea_count,
                "author_wallet": author,
                "content_hash": args.content_hash,
                "status": IdeaStatus.SUBMITTED.value,
                "transaction_signature": ctx.signature,
            },
            conflict_columns=["on_chain_address"],
        )
        if not inserted:
            logger.debug(f"Idea already indexed: {idea_address}")
            return

        session.execute(
            update(IdeaRound)
            .where(IdeaRound.id == idea_round.id)
            .values(idea_count=IdeaRound.idea_count + 1)
        )
        logger.info(f"Indexed idea {idea_address} in round {round_address}")

    def apply_transition_round(self, session: Session, ctx: InstructionContext, args: NoArgs) -> None:
        """Advance open -> voting -> closed; any other stored status is a no-op."""
        address = ctx.account(0)
        idea_round = _find_round(session, address)

        current = RoundStatus(idea_round.status)
        next_status = ROUND_TRANSITIONS.get(current)
        if next_status is None:
            logger.debug(f"Round {address} already {current.value}, transition ignored")
            return

        # Compare-and-set on the stored status
        result = session.execute(
            update(IdeaRound)
            .where(IdeaRound.id == idea_round.id, IdeaRound.status == current.value)
            .values(status=next_status.value)
        )
        if result.rowcount:
            logger.info(f"Round {address}: {current.value} -> {next_status.value}")

    def apply_cast_vote(self, session: Session, ctx: InstructionContext, args: CastVoteArgs) -> None:
        """Upsert the vote and move the idea's tallies by the voter's deposit weight."""
        idea_address = ctx.account(0)
        vote_record = ctx.account(2)
        voter = ctx.account(4)

        idea = _find_idea(session, idea_address)
        deposit = session.query(VoteDeposit).filter(VoteDeposit.wallet_address == voter).first()
        weight = deposit.deposited_amount if deposit else 0

        existing = (
            session.query(Vote)
            .filter(Vote.idea_id == idea.id, Vote.voter_wallet == voter)
            .first()
        )

        if existing is None:
            inserted = insert_ignore(
                session,
                Vote,
                values={
                    "idea_id": idea.id,
                    "voter_wallet": voter,
                    "vote": args.vote.value,
                    "weight": weight,
                    "on_chain_address": vote_record,
                    "transaction_signature": ctx.signature,
                },
                conflict_columns=["idea_id", "voter_wallet"],
            )
            if not inserted:
                return

            tally = TALLY_COLUMNS[args.vote]
            session.execute(
                update(Idea)
                .where(Idea.id == idea.id)
                .values({tally: getattr(Idea, tally) + weight, "voter_count": Idea.voter_count + 1})
            )
            if deposit is not None:
                session.execute(
                    update(VoteDeposit)
                    .where(VoteDeposit.id == deposit.id)
                    .values(active_votes=VoteDeposit.active_votes + 1)
                )
            logger.info(f"Vote {args.vote.value} ({weight}) by {voter} on idea {idea_address}")
            return

        if existing.transaction_signature == ctx.signature:
            logger.debug(f"Vote already applied: {ctx.signature}")
            return

        # Re-vote: move the previous weight to the new choice, voter count unchanged
        deltas: Dict[str, int] = defaultdict(int)
        deltas[TALLY_COLUMNS[VoteChoice(existing.vote)]] -= existing.weight
        deltas[TALLY_COLUMNS[args.vote]] += weight
        tally_values = {name: getattr(Idea, name) + delta for name, delta in deltas.items() if delta}
        if tally_values:
            session.execute(update(Idea).where(Idea.id == idea.id).values(tally_values))

        existing.vote = args.vote.value
        existing.weight = weight
        existing.on_chain_address = vote_record
        existing.transaction_signature = ctx.signature
        logger.info(f"Vote changed to {args.vote.value} by {voter} on idea {idea_address}")

    def apply_deposit_tokens(self, session: Session, ctx: InstructionContext, args: TokenAmountArgs) -> None:
        """Add to the wallet's deposit; timestamps are set only on a fresh deposit."""
        wallet = ctx.account(2)
        deposited_at = ctx.block_time
        eligible_at = deposited_at + self.timelock
        fresh = VoteDeposit.deposit_timestamp == EPOCH

        upsert(
            session,
            VoteDeposit,
            values={
                "wallet_address": wallet,
                "deposited_amount": args.amount,
                "deposit_timestamp": deposited_at,
                "eligible_at": eligible_at,
                "active_votes": 0,
            },
            conflict_columns=["wallet_address"],
            update_values={
                "deposited_amount": VoteDeposit.deposited_amount + args.amount,
                "deposit_timestamp": case((fresh, deposited_at), else_=VoteDeposit.deposit_timestamp),
                "eligible_at": case((fresh, eligible_at), else_=VoteDeposit.eligible_at),
            },
        )
        logger.info(f"Deposit of {args.amount} by {wallet}")

    def apply_withdraw_tokens(self, session: Session, ctx: InstructionContext, args: TokenAmountArgs) -> None:
        """Partial withdrawal decrements; a full withdrawal zeroes the row."""
        wallet = ctx.account(2)

        result = session.execute(
            update(VoteDeposit)
            .where(VoteDeposit.wallet_address == wallet, VoteDeposit.deposited_amount > args.amount)
            .values(deposited_amount=VoteDeposit.deposited_amount - args.amount)
        )
        if result.rowcount:
            logger.info(f"Withdrawal of {args.amount} by {wallet}")
            return

        result = session.execute(
            update(VoteDeposit)
            .where(VoteDeposit.wallet_address == wallet)
            .values(deposited_amount=0, deposit_timestamp=EPOCH, eligible_at=EPOCH)
        )
        if not result.rowcount:
            raise ReferentialMiss("VoteDeposit", wallet)
        logger.info(f"Full withdrawal by {wallet}")

    def apply_relinquish_vote(self, session: Session, ctx: InstructionContext, args: NoArgs) -> None:
        """Release one active vote from the voter's deposit."""
        voter = ctx.account(3)

        result = session.execute(
            update(VoteDeposit)
            .where(VoteDeposit.wallet_address == voter, VoteDeposit.active_votes > 0)
            .values(active_votes=VoteDeposit.active_votes - 1)
        )
        if not result.rowcount:
            logger.debug(f"No active votes to relinquish for {voter}")

    def apply_veto_idea(self, session: Session, ctx: InstructionContext, args: NoArgs) -> None:
        """Mark the idea vetoed."""
        address = ctx.account(0)
        idea = _find_idea(session, address)
        idea.status = IdeaStatus.VETOED.value
        logger.info(f"Idea {address} vetoed")
