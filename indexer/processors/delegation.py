"""Delegation processor - vote delegation lifecycle."""

from typing import Dict

from sqlalchemy.orm import Session

from chain.instructions import DelegateVoteArgs, InstructionKind, NoArgs
from db.models import DelegationRecord, IdeaRound, RoundStatus
from db.upsert import upsert
from log import get_logger
from processors.base import Handler, InstructionContext, Processor, ReferentialMiss

logger = get_logger(__name__)


def current_round_index(session: Session) -> int:
    """Index of the latest round still open or voting, else 0."""
    idea_round = (
        session.query(IdeaRound)
        .filter(IdeaRound.status.in_([RoundStatus.OPEN.value, RoundStatus.VOTING.value]))
        .order_by(IdeaRound.round_index.desc())
        .first()
    )
    return idea_round.round_index if idea_round else 0


class DelegationProcessor(Processor):
    """Applies delegate/revoke instructions."""

    def handlers(self) -> Dict[InstructionKind, Handler]:
        return {
            InstructionKind.DELEGATE_VOTE: self.apply_delegate_vote,
            InstructionKind.REVOKE_DELEGATION: self.apply_revoke_delegation,
            InstructionKind.UPDATE_GOVERNANCE_CONFIG: self.apply_update_governance_config,
        }

    def apply_delegate_vote(self, session: Session, ctx: InstructionContext, args: DelegateVoteArgs) -> None:
        """Create or reactivate the delegation record (accounts[1])."""
        record_address = ctx.account(1)
        delegator = ctx.account(3)
        delegate = ctx.account(4)
        effective_from = current_round_index(session)

        fields = {
            "delegate_wallet": delegate,
            "delegated_amount": args.delegated_amount,
            "is_active": True,
            "effective_from_round": effective_from,
            "revoked_at": None,
            "transaction_signature": ctx.signature,
        }
        upsert(
            session,
            DelegationRecord,
            values={
                "on_chain_address": record_address,
                "delegator_wallet": delegator,
                **fields,
            },
            conflict_columns=["on_chain_address"],
            update_values=fields,
        )
        logger.info(
            f"Delegation {delegator} -> {delegate} ({args.delegated_amount}) "
            f"from round {effective_from}"
        )

    def apply_revoke_delegation(self, session: Session, ctx: InstructionContext, args: NoArgs) -> None:
        """Deactivate the delegator's record."""
        delegator = ctx.account(3)

        record = (
            session.query(DelegationRecord)
            .filter(DelegationRecord.delegator_wallet == delegator)
            .first()
        )
        if record is None:
            raise ReferentialMiss("DelegationRecord", delegator)

        if not record.is_active:
            logger.debug(f"Delegation for {delegator} already revoked")
            return

        record.is_active = False
        record.revoked_at = ctx.block_time
        logger.info(f"Delegation revoked by {delegator}")

    def apply_update_governance_config(self, session: Session, ctx: InstructionContext, args: NoArgs) -> None:
        admin = ctx.account(1)
        logger.info(f"Governance config updated by {admin} (tx={ctx.signature})")
