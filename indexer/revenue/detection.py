"""Treasury inflow detection for notifications that carry no program instruction."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from chain.instructions import RevenueToken
from db.models import PendingRevenue, PendingRevenueStatus
from db.upsert import insert_ignore
from log import get_logger
from messaging.schema import TransactionNotification

logger = get_logger(__name__)

USDC_DECIMALS = 6


@dataclass(frozen=True)
class RevenueInflow:
    token: RevenueToken
    amount: int  # lamports or raw USDC units
    from_wallet: Optional[str]


def detect_revenue(
    notification: TransactionNotification,
    treasury: str,
    usdc_mint: str,
) -> Optional[RevenueInflow]:
    """Total SOL and USDC sent to ``treasury`` in one transaction.

    When both tokens arrive the larger raw amount wins. The sender is the
    first native transfer's source, if any.

    Returns:
        The inflow, or None if nothing reached the treasury
    """
    sol_total = sum(
        t.amount for t in notification.native_transfers
        if t.to_user_account == treasury and t.amount > 0
    )
    usdc_total = sum(
        int(round(t.token_amount * 10 ** USDC_DECIMALS)) for t in notification.token_transfers
        if t.to_user_account == treasury and t.mint == usdc_mint and t.token_amount > 0
    )

    if sol_total <= 0 and usdc_total <= 0:
        return None

    sender = notification.native_transfers[0].from_user_account if notification.native_transfers else None

    if sol_total >= usdc_total:
        return RevenueInflow(token=RevenueToken.SOL, amount=sol_total, from_wallet=sender)
    return RevenueInflow(token=RevenueToken.USDC, amount=usdc_total, from_wallet=sender)


def record_pending_revenue(
    session: Session,
    notification: TransactionNotification,
    treasury: Optional[str],
    usdc_mint: str,
) -> bool:
    """Persist a detected inflow as PendingRevenue awaiting promotion.

    Existing rows for the same signature are left untouched.

    Returns:
        True if a new pending row was created
    """
    if not treasury:
        return False

    inflow = detect_revenue(notification, treasury, usdc_mint)
    if inflow is None:
        return False

    created = insert_ignore(
        session,
        PendingRevenue,
        values={
            "transaction_signature": notification.signature,
            "amount": inflow.amount,
            "token": inflow.token.value,
            "from_wallet": inflow.from_wallet,
            "status": PendingRevenueStatus.PENDING.value,
        },
        conflict_columns=["transaction_signature"],
    )
    if created:
        logger.info(
            f"Pending revenue detected: {inflow.amount} {inflow.token.value} "
            f"from {inflow.from_wallet} (tx={notification.signature})"
        )
    return created
