"""Tests for off-chain revenue distribution."""

import json

import pytest
from solders.keypair import Keypair

from chain.instructions import RevenueToken
from config import SOL_MINT
from db.models import PendingRevenue, RevenueEvent
from db.session import get_session
from revenue.distributor import DuplicateRevenueError, RevenueDistributor, load_burn_authority
from revenue.settlement import SettlementResult


class StubSettlement:
    """Records execute() calls and returns a canned result."""

    def __init__(self, result=None):
        self.result = result
        self.calls = []

    def execute(self, amount, source_mint):
        self.calls.append((amount, source_mint))
        return self.result


def _add_pending(signature="detected-sig", amount=5_000_000, token="usdc", status="pending"):
    with get_session() as session:
        pending = PendingRevenue(transaction_signature=signature, amount=amount, token=token, status=status)
        session.add(pending)
        session.flush()
        return pending.id


def test_distribute_records_event(test_config, db):
    """Test the split is recorded without settlement configured."""
    result = RevenueDistributor(test_config).distribute(10_000_000_000, RevenueToken.SOL, "origin-1")

    assert result.settlement is None
    assert result.split.burn_amount == 1_000_000_000
    with get_session() as session:
        event = session.get(RevenueEvent, result.event_id)
        assert event.status == "recorded"
        assert event.developer_pool == 6_000_000_000
        assert event.burn_signature is None


def test_event_indexes_are_sequential(test_config, db):
    distributor = RevenueDistributor(test_config)
    first = distributor.distribute(100, RevenueToken.SOL, "origin-1")
    second = distributor.distribute(100, RevenueToken.SOL, "origin-2")
    assert (first.event_index, second.event_index) == (0, 1)


def test_duplicate_origin_rejected(test_config, db):
    distributor = RevenueDistributor(test_config)
    distributor.distribute(100, RevenueToken.SOL, "origin-1")

    with pytest.raises(DuplicateRevenueError):
        distributor.distribute(100, RevenueToken.SOL, "origin-1")

    with get_session() as session:
        assert session.query(RevenueEvent).count() == 1


def test_settlement_success_records_burn(test_config, db):
    """Test a confirmed swap stores its signature and GSD amount."""
    settlement = StubSettlement(SettlementResult(signature="swap-sig", gsd_amount=9999))
    result = RevenueDistributor(test_config, settlement).distribute(10_000, RevenueToken.SOL, "origin-1")

    assert settlement.calls == [(1_000, SOL_MINT)]
    assert result.settlement.signature == "swap-sig"
    with get_session() as session:
        event = session.get(RevenueEvent, result.event_id)
        assert event.burn_signature == "swap-sig"
        assert event.gsd_burned == 9999
        assert event.status == "recorded"


def test_usdc_sells_usdc_mint(test_config, db):
    settlement = StubSettlement(None)
    RevenueDistributor(test_config, settlement).distribute(10_000, RevenueToken.USDC, "origin-1")
    assert settlement.calls == [(1_000, test_config.usdc_mint)]


def test_settlement_failure_keeps_event(test_config, db):
    settlement = StubSettlement(None)
    result = RevenueDistributor(test_config, settlement).distribute(10_000, RevenueToken.SOL, "origin-1")

    assert result.settlement is None
    with get_session() as session:
        event = session.get(RevenueEvent, result.event_id)
        assert event.burn_signature is None
        assert event.gsd_burned == 0


def test_zero_burn_skips_settlement(test_config, db):
    settlement = StubSettlement(None)
    RevenueDistributor(test_config, settlement).distribute(9, RevenueToken.SOL, "origin-1")
    assert settlement.calls == []


def test_promote_pending(test_config, db):
    """Test a detected inflow becomes a revenue event and is marked promoted."""
    pending_id = _add_pending()
    result = RevenueDistributor(test_config).promote_pending(pending_id)

    with get_session() as session:
        pending = session.get(PendingRevenue, pending_id)
        assert pending.status == "promoted"
        assert pending.revenue_event_id == result.event_id
        event = session.get(RevenueEvent, result.event_id)
        assert event.origin_signature == "detected-sig"
        assert event.token == "usdc"
        assert event.total_amount == 5_000_000


def test_promote_twice_rejected(test_config, db):
    pending_id = _add_pending()
    distributor = RevenueDistributor(test_config)
    distributor.promote_pending(pending_id)

    with pytest.raises(DuplicateRevenueError):
        distributor.promote_pending(pending_id)


def test_promote_missing(test_config, db):
    with pytest.raises(LookupError):
        RevenueDistributor(test_config).promote_pending(404)


def test_from_config_without_burn_settings(test_config):
    assert RevenueDistributor.from_config(test_config).settlement is None


def test_from_config_with_keypair(test_config, tmp_path):
    keypair = Keypair()
    path = tmp_path / "authority.json"
    path.write_text(json.dumps(list(bytes(keypair))))
    test_config.burn_authority_keypair_path = str(path)

    distributor = RevenueDistributor.from_config(test_config)
    assert distributor.settlement is not None
    assert distributor.settlement.signer.public_key == str(keypair.pubkey())


def test_load_burn_authority_base58(test_config):
    keypair = Keypair()
    test_config.burn_authority_keypair = str(keypair)
    assert load_burn_authority(test_config).pubkey() == keypair.pubkey()


def test_load_burn_authority_invalid(test_config):
    test_config.burn_authority_keypair = "not-a-key"
    assert load_burn_authority(test_config) is None
