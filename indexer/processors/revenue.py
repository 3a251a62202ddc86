"""Revenue processor - revenue events, claims and burns."""

from typing import Dict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chain.instructions import ExecuteBurnArgs, InstructionKind, NoArgs, RecordRevenueEventArgs
from db.models import RevenueClaim, RevenueEvent, RevenueStatus
from db.upsert import insert_ignore, upsert
from log import get_logger
from processors.base import Handler, InstructionContext, Processor, ReferentialMiss
from revenue.split import calculate_split

logger = get_logger(__name__)

REVENUE_STATUS_ORDER = [
    RevenueStatus.RECORDED,
    RevenueStatus.DISTRIBUTING,
    RevenueStatus.COMPLETED,
]


def advance_revenue_status(event: RevenueEvent, target: RevenueStatus) -> bool:
    """Move ``event`` forward to ``target``; never moves backwards.

    Returns:
        True if the status changed
    """
    current = RevenueStatus(event.status)
    if REVENUE_STATUS_ORDER.index(target) <= REVENUE_STATUS_ORDER.index(current):
        return False
    event.status = target.value
    return True


def next_event_index(session: Session) -> int:
    """Best-effort sequential index for a newly observed revenue event."""
    return session.execute(
        select(func.coalesce(func.max(RevenueEvent.event_index) + 1, 0))
    ).scalar_one()


def _find_event(session: Session, address: str) -> RevenueEvent:
    event = session.query(RevenueEvent).filter(RevenueEvent.on_chain_address == address).first()
    if event is None:
        raise ReferentialMiss("RevenueEvent", address)
    return event


class RevenueProcessor(Processor):
    """Applies revenue instructions."""

    def handlers(self) -> Dict[InstructionKind, Handler]:
        return {
            InstructionKind.RECORD_REVENUE_EVENT: self.apply_record_revenue_event,
            InstructionKind.CLAIM_REVENUE_SHARE: self.apply_claim_revenue_share,
            InstructionKind.EXECUTE_BURN: self.apply_execute_burn,
            InstructionKind.INIT_REVENUE_CONFIG: self.apply_init_revenue_config,
        }

    def apply_record_revenue_event(
        self, session: Session, ctx: InstructionContext, args: RecordRevenueEventArgs
    ) -> None:
        """Record the event (accounts[1]) keyed by its origin signature.

        A row created earlier by the distributor for the same origin only gets
        its on-chain address attached.
        """
        address = ctx.account(1)
        split = calculate_split(args.amount)

        upsert(
            session,
            RevenueEvent,
            values={
                "on_chain_address": address,
                "origin_signature": args.origin_signature,
                "event_index": next_event_index(session),
                "token": args.token.value,
                "status": RevenueStatus.RECORDED.value,
                **split.as_columns(),
            },
            conflict_columns=["origin_signature"],
            update_values={"on_chain_address": address},
        )
        logger.info(
            f"Revenue event {address}: {args.amount} {args.token.value} "
            f"(dev={split.developer_pool}, treasury={split.treasury_reserve}, "
            f"burn={split.burn_amount}, maintenance={split.maintenance_amount})"
        )

    def apply_claim_revenue_share(self, session: Session, ctx: InstructionContext, args: NoArgs) -> None:
        """Record the claimant's (accounts[5]) claim on event accounts[1]."""
        event_address = ctx.account(1)
        claimant = ctx.account(5)
        event = _find_event(session, event_address)

        inserted = insert_ignore(
            session,
            RevenueClaim,
            values={
                "revenue_event_id": event.id,
                "claimant_wallet": claimant,
                "transaction_signature": ctx.signature,
            },
            conflict_columns=["revenue_event_id", "claimant_wallet"],
        )
        if inserted:
            logger.info(f"Revenue claim by {claimant} on {event_address}")

    def apply_execute_burn(self, session: Session, ctx: InstructionContext, args: ExecuteBurnArgs) -> None:
        """Attach the burn result to event accounts[1] and complete it."""
        event_address = ctx.account(1)
        event = _find_event(session, event_address)

        event.burn_signature = args.burn_signature
        event.gsd_burned = args.gsd_amount
        advance_revenue_status(event, RevenueStatus.COMPLETED)
        logger.info(f"Burn executed for {event_address}: {args.gsd_amount} GSD")

    def apply_init_revenue_config(self, session: Session, ctx: InstructionContext, args: NoArgs) -> None:
        logger.info(f"Revenue config initialized (tx={ctx.signature})")
