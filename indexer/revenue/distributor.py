"""Revenue distribution: record the split, then attempt buy-and-burn."""

import json
from dataclasses import dataclass
from typing import Optional

from solders.keypair import Keypair
from sqlalchemy.exc import IntegrityError

from chain.instructions import RevenueToken
from config import SOL_MINT, Config
from db.models import PendingRevenue, PendingRevenueStatus, RevenueEvent, RevenueStatus
from db.session import get_session
from log import get_logger
from processors.revenue import next_event_index
from revenue.settlement import BuyAndBurnSettlement, KeypairSigner, SettlementResult
from revenue.split import RevenueSplit, calculate_split

logger = get_logger(__name__)


class DuplicateRevenueError(Exception):
    """Raised when revenue for an origin signature was already distributed."""

    def __init__(self, origin_signature: str):
        super().__init__(f"Revenue event already exists for origin {origin_signature}")
        self.origin_signature = origin_signature


@dataclass
class DistributionResult:
    event_id: int
    event_index: int
    split: RevenueSplit
    settlement: Optional[SettlementResult] = None


def load_burn_authority(config: Config) -> Optional[Keypair]:
    """Load the burn authority from a base58 secret or a JSON key file.

    Returns:
        The keypair, or None if unset or unreadable (buy-and-burn disabled)
    """
    if config.burn_authority_keypair:
        try:
            return Keypair.from_base58_string(config.burn_authority_keypair)
        except Exception as e:
            logger.error(f"Failed to load BURN_AUTHORITY_KEYPAIR: {e}")
            return None

    if config.burn_authority_keypair_path:
        try:
            with open(config.burn_authority_keypair_path, "r") as f:
                key_bytes = json.load(f)
            return Keypair.from_bytes(bytes(key_bytes))
        except Exception as e:
            logger.error(f"Failed to load BURN_AUTHORITY_KEYPAIR_PATH: {e}")
            return None

    logger.warning("BURN_AUTHORITY_KEYPAIR not set -- buy-and-burn disabled")
    return None


class RevenueDistributor:
    """Records revenue events off-chain and triggers the burn share swap."""

    def __init__(self, config: Config, settlement: Optional[BuyAndBurnSettlement] = None):
        """Initialize distributor.

        Args:
            config: Configuration object
            settlement: Buy-and-burn pipeline; None disables burning
        """
        self.config = config
        self.settlement = settlement

    @classmethod
    def from_config(cls, config: Config) -> "RevenueDistributor":
        """Build a distributor, wiring settlement only when fully configured."""
        if not config.burn_enabled:
            if not config.jupiter_api_key:
                logger.warning("JUPITER_API_KEY not set -- buy-and-burn disabled")
            if not config.gsd_mint:
                logger.warning("GSD_MINT not set -- buy-and-burn disabled")
            return cls(config)

        authority = load_burn_authority(config)
        if authority is None:
            return cls(config)
        return cls(config, BuyAndBurnSettlement.from_config(config, KeypairSigner(authority)))

    def distribute(self, total: int, token: RevenueToken, origin_signature: str) -> DistributionResult:
        """Split ``total`` and persist it as a recorded RevenueEvent.

        The event is committed before settlement starts; a failed burn leaves
        it recorded for manual retry.

        Raises:
            DuplicateRevenueError: If ``origin_signature`` was already distributed
            ValueError: If total is negative
        """
        split = calculate_split(total)

        try:
            with get_session() as session:
                existing = (
                    session.query(RevenueEvent.id)
                    .filter(RevenueEvent.origin_signature == origin_signature)
                    .first()
                )
                if existing:
                    raise DuplicateRevenueError(origin_signature)

                event = RevenueEvent(
                    event_index=next_event_index(session),
                    origin_signature=origin_signature,
                    token=token.value,
                    status=RevenueStatus.RECORDED.value,
                    **split.as_columns(),
                )
                session.add(event)
                session.flush()
                event_id, event_index = event.id, event.event_index
        except IntegrityError as e:
            raise DuplicateRevenueError(origin_signature) from e

        logger.info(
            f"Revenue event {event_index} recorded: {total} {token.value} "
            f"(dev={split.developer_pool}, treasury={split.treasury_reserve}, "
            f"burn={split.burn_amount}, maintenance={split.maintenance_amount})"
        )
        result = DistributionResult(event_id=event_id, event_index=event_index, split=split)

        if self.settlement is None or split.burn_amount <= 0:
            return result

        source_mint = SOL_MINT if token == RevenueToken.SOL else self.config.usdc_mint
        result.settlement = self.settlement.execute(split.burn_amount, source_mint)

        if result.settlement is None:
            logger.warning(
                f"Buy-and-burn failed for event {event_index} "
                f"(origin: {origin_signature}). Burn can be retried manually."
            )
            return result

        with get_session() as session:
            event = session.get(RevenueEvent, event_id)
            event.burn_signature = result.settlement.signature
            event.gsd_burned = result.settlement.gsd_amount
        return result

    def promote_pending(self, pending_id: int) -> DistributionResult:
        """Distribute a detected PendingRevenue and mark it promoted.

        Raises:
            LookupError: If no pending revenue has ``pending_id``
            DuplicateRevenueError: If it was already promoted or distributed
        """
        with get_session() as session:
            pending = session.get(PendingRevenue, pending_id)
            if pending is None:
                raise LookupError(f"PendingRevenue {pending_id} not found")
            if pending.status != PendingRevenueStatus.PENDING.value:
                raise DuplicateRevenueError(pending.transaction_signature)
            amount = pending.amount
            token = RevenueToken(pending.token)
            signature = pending.transaction_signature

        result = self.distribute(amount, token, signature)

        with get_session() as session:
            pending = session.get(PendingRevenue, pending_id)
            pending.status = PendingRevenueStatus.PROMOTED.value
            pending.revenue_event_id = result.event_id

        logger.info(f"Pending revenue {pending_id} promoted to event {result.event_index}")
        return result
