"""Tests for instruction dispatch and idempotent redelivery."""

from typing import Dict

import pytest

from chain.instructions import InstructionKind
from consumer.dispatcher import InstructionDispatcher, default_processors
from db.models import Idea, IdeaRound, IndexedInstruction
from db.session import get_session
from factories import (
    create_round_payload,
    instruction,
    notification,
    pubkey,
    submit_idea_payload,
    u8,
)
from processors.base import Handler, Processor

ROUND = pubkey(10)
IDEA = pubkey(11)


def _create_round_ix():
    return instruction("create_round", [pubkey(1), ROUND], create_round_payload())


def _submit_idea_ix():
    return instruction("submit_idea", [ROUND, IDEA, pubkey(12)], submit_idea_payload())


class ExplodingProcessor(Processor):
    """Routes transition_round to a handler that always raises."""

    def handlers(self) -> Dict[InstructionKind, Handler]:
        return {InstructionKind.TRANSITION_ROUND: self.explode}

    def explode(self, session, ctx, args):
        raise RuntimeError("boom")


@pytest.fixture
def dispatcher(test_config, db):
    return InstructionDispatcher(test_config)


def test_requires_a_handler_per_instruction(test_config):
    with pytest.raises(ValueError):
        InstructionDispatcher(test_config, processors=[])


def test_dispatch_applies_instructions(dispatcher):
    """Test create_round then submit_idea in one transaction."""
    result = dispatcher.dispatch(notification("sig-1", [_create_round_ix(), _submit_idea_ix()]))

    assert result.processed == 2
    assert result.failed == 0
    with get_session() as session:
        assert session.query(IdeaRound).one().idea_count == 1
        assert session.query(IndexedInstruction).count() == 2


def test_foreign_program_ignored(dispatcher):
    ix = instruction("create_round", [pubkey(1), ROUND], create_round_payload(), program_id=pubkey(99))
    result = dispatcher.dispatch(notification("sig-1", [ix]))

    assert result.processed == 0
    assert result.skipped == 0
    with get_session() as session:
        assert session.query(IdeaRound).count() == 0


def test_unknown_and_undecodable_skipped(dispatcher):
    """Test unknown discriminators and truncated payloads are skipped, not failed."""
    unknown = instruction("initialize", [pubkey(1)])
    truncated = instruction("cast_vote", [pubkey(1)], u8(7))
    bad_base58 = {**_create_round_ix(), "data": "0OIl"}

    result = dispatcher.dispatch(notification("sig-1", [unknown, truncated, bad_base58]))

    assert result.skipped == 3
    assert result.failed == 0


def test_missing_accounts_skipped(dispatcher):
    ix = instruction("create_round", [pubkey(1)], create_round_payload())
    result = dispatcher.dispatch(notification("sig-1", [ix]))

    assert result.skipped == 1
    with get_session() as session:
        assert session.query(IndexedInstruction).count() == 0


def test_redelivery_is_idempotent(dispatcher):
    """Test the same notification twice leaves state as if applied once."""
    tx = notification("sig-1", [_create_round_ix(), _submit_idea_ix()])
    dispatcher.dispatch(tx)
    result = dispatcher.dispatch(tx)

    assert result.processed == 0
    assert result.duplicates == 2
    with get_session() as session:
        assert session.query(IdeaRound).one().idea_count == 1
        assert session.query(Idea).count() == 1


def test_referential_miss_heals_on_redelivery(dispatcher):
    """Test an idea seen before its round is applied once the round arrives."""
    idea_tx = notification("sig-idea", [_submit_idea_ix()])

    first = dispatcher.dispatch(idea_tx)
    assert first.missing == 1
    with get_session() as session:
        assert session.query(IndexedInstruction).count() == 0

    dispatcher.dispatch(notification("sig-round", [_create_round_ix()]))
    retry = dispatcher.dispatch(idea_tx)

    assert retry.processed == 1
    with get_session() as session:
        assert session.query(Idea).count() == 1


def test_failure_does_not_affect_siblings(test_config, db):
    """Test one raising handler leaves the other instructions applied."""
    processors = default_processors(test_config) + [ExplodingProcessor()]
    dispatcher = InstructionDispatcher(test_config, processors=processors)

    transition = instruction("transition_round", [ROUND])
    result = dispatcher.dispatch(notification("sig-1", [_create_round_ix(), transition, _submit_idea_ix()]))

    assert result.processed == 2
    assert result.failed == 1
    assert result.failures[0].instruction == "transition_round"
    assert result.failures[0].index == 1
    assert dispatcher.instructions_failed == 1
    with get_session() as session:
        assert session.query(IdeaRound).one().status == "open"
        # The failed instruction is not in the ledger and can be retried
        assert session.query(IndexedInstruction).count() == 2
