"""Deterministic treasury revenue split."""

from dataclasses import dataclass

BPS_DENOMINATOR = 10000
DEVELOPER_BPS = 6000
TREASURY_BPS = 2000
BURN_BPS = 1000
MAINTENANCE_BPS = 1000


@dataclass(frozen=True)
class RevenueSplit:
    """Four shares of a revenue amount; they always sum to ``total``."""
    total: int
    developer_pool: int
    treasury_reserve: int
    burn_amount: int
    maintenance_amount: int

    def as_columns(self) -> dict:
        """Share values keyed by RevenueEvent column name."""
        return {
            "total_amount": self.total,
            "developer_pool": self.developer_pool,
            "treasury_reserve": self.treasury_reserve,
            "burn_amount": self.burn_amount,
            "maintenance_amount": self.maintenance_amount,
        }


def calculate_split(total: int) -> RevenueSplit:
    """Split ``total`` 60/20/10/10 using integer division.

    The rounding remainder goes to the developer pool so no units are lost.

    Raises:
        ValueError: If total is negative
    """
    if total < 0:
        raise ValueError(f"Revenue total must be >= 0, got {total}")

    developer = total * DEVELOPER_BPS // BPS_DENOMINATOR
    treasury = total * TREASURY_BPS // BPS_DENOMINATOR
    burn = total * BURN_BPS // BPS_DENOMINATOR
    maintenance = total * MAINTENANCE_BPS // BPS_DENOMINATOR

    remainder = total - (developer + treasury + burn + maintenance)

    return RevenueSplit(
        total=total,
        developer_pool=developer + remainder,
        treasury_reserve=treasury,
        burn_amount=burn,
        maintenance_amount=maintenance,
    )
