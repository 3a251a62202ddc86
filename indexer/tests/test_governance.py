"""Tests for governance state updates."""

from datetime import timedelta

import pytest

from chain.instructions import CastVoteArgs, CreateRoundArgs, NoArgs, QuorumType, SubmitIdeaArgs, TokenAmountArgs, VoteChoice
from db.models import EPOCH, Idea, IdeaRound, Vote, VoteDeposit, from_unix
from db.session import get_session
from factories import TIMESTAMP, apply, context, pubkey
from processors.base import ReferentialMiss
from processors.governance import GovernanceProcessor

ROUND = pubkey(10)
IDEA = pubkey(11)
AUTHOR = pubkey(12)
VOTER = pubkey(13)


@pytest.fixture
def governance(test_config, db):
    return GovernanceProcessor(test_config)


def _create_round(governance, address=ROUND, signature="sig-round"):
    args = CreateRoundArgs(
        submission_start=TIMESTAMP,
        submission_end=TIMESTAMP + 86400,
        voting_end=TIMESTAMP + 172800,
        quorum_type=QuorumType.SMALL,
        content_hash="ab" * 32,
    )
    apply(governance.apply_create_round, context([pubkey(1), address], signature=signature), args)


def _submit_idea(governance, idea=IDEA, signature="sig-idea"):
    apply(
        governance.apply_submit_idea,
        context([ROUND, idea, AUTHOR], signature=signature),
        SubmitIdeaArgs(content_hash="cd" * 32),
    )


def _deposit(governance, wallet, amount, timestamp=TIMESTAMP, signature="sig-dep"):
    apply(
        governance.apply_deposit_tokens,
        context([pubkey(1), pubkey(2), wallet], signature=signature, timestamp=timestamp),
        TokenAmountArgs(amount=amount),
    )


def _vote(governance, choice, voter=VOTER, signature="sig-vote"):
    apply(
        governance.apply_cast_vote,
        context([IDEA, pubkey(3), pubkey(4), pubkey(5), voter], signature=signature),
        CastVoteArgs(vote=choice),
    )


def _transition(governance, signature):
    apply(governance.apply_transition_round, context([ROUND], signature=signature), NoArgs())


def test_create_round(governance):
    """Test create_round stores an open round with its schedule."""
    _create_round(governance)

    with get_session() as session:
        idea_round = session.query(IdeaRound).filter(IdeaRound.on_chain_address == ROUND).one()
        assert idea_round.status == "open"
        assert idea_round.round_index == 0
        assert idea_round.quorum_type == "small"
        assert idea_round.submission_start == from_unix(TIMESTAMP)
        assert idea_round.idea_count == 0


def test_create_round_indexes_are_sequential(governance):
    _create_round(governance)
    _create_round(governance, address=pubkey(20), signature="sig-round-2")

    with get_session() as session:
        second = session.query(IdeaRound).filter(IdeaRound.on_chain_address == pubkey(20)).one()
        assert second.round_index == 1


def test_submit_idea_increments_round(governance):
    """Test submit_idea creates the idea and bumps the round's idea count once."""
    _create_round(governance)
    _submit_idea(governance)
    _submit_idea(governance)  # replay of the same idea address

    with get_session() as session:
        idea = session.query(Idea).filter(Idea.on_chain_address == IDEA).one()
        assert idea.author_wallet == AUTHOR
        assert idea.status == "submitted"
        assert idea.idea_index == 0
        assert session.query(IdeaRound).one().idea_count == 1


def test_submit_idea_unknown_round(governance):
    with pytest.raises(ReferentialMiss):
        _submit_idea(governance)


def test_transition_sequence(governance):
    """Test open -> voting -> closed, then further transitions are no-ops."""
    _create_round(governance)

    statuses = []
    for i in range(3):
        _transition(governance, signature=f"sig-t{i}")
        with get_session() as session:
            statuses.append(session.query(IdeaRound).one().status)

    assert statuses == ["voting", "closed", "closed"]


def test_cast_vote_uses_deposit_weight(governance):
    """Test cast_vote adds the voter's deposit to the matching tally only."""
    _create_round(governance)
    _submit_idea(governance)
    _deposit(governance, VOTER, 500)
    _vote(governance, VoteChoice.YES)

    with get_session() as session:
        idea = session.query(Idea).one()
        assert idea.yes_weight == 500
        assert idea.no_weight == 0
        assert idea.abstain_weight == 0
        assert idea.voter_count == 1
        vote = session.query(Vote).one()
        assert vote.weight == 500
        assert vote.vote == "yes"
        deposit = session.query(VoteDeposit).one()
        assert deposit.active_votes == 1


def test_cast_vote_without_deposit_has_zero_weight(governance):
    _create_round(governance)
    _submit_idea(governance)
    _vote(governance, VoteChoice.NO)

    with get_session() as session:
        idea = session.query(Idea).one()
        assert idea.no_weight == 0
        assert idea.voter_count == 1


def test_revote_moves_weight(governance):
    """Test a changed vote moves weight between tallies without a second voter."""
    _create_round(governance)
    _submit_idea(governance)
    _deposit(governance, VOTER, 300)
    _vote(governance, VoteChoice.YES, signature="sig-vote-1")
    _vote(governance, VoteChoice.NO, signature="sig-vote-2")

    with get_session() as session:
        idea = session.query(Idea).one()
        assert idea.yes_weight == 0
        assert idea.no_weight == 300
        assert idea.voter_count == 1
        assert session.query(Vote).one().vote == "no"


def test_cast_vote_unknown_idea(governance):
    with pytest.raises(ReferentialMiss):
        _vote(governance, VoteChoice.YES)


def test_deposit_sets_timelock_once(governance, test_config):
    """Test timestamps are set on the first deposit and kept on top-ups."""
    _deposit(governance, VOTER, 100, timestamp=TIMESTAMP, signature="sig-dep-1")
    _deposit(governance, VOTER, 50, timestamp=TIMESTAMP + 1000, signature="sig-dep-2")

    with get_session() as session:
        deposit = session.query(VoteDeposit).one()
        assert deposit.deposited_amount == 150
        assert deposit.deposit_timestamp == from_unix(TIMESTAMP)
        assert deposit.eligible_at == from_unix(TIMESTAMP) + timedelta(seconds=test_config.vote_timelock_seconds)


def test_partial_and_full_withdrawal(governance):
    """Test partial withdrawals decrement and a full withdrawal resets timestamps."""
    _deposit(governance, VOTER, 100)
    withdraw_ctx = context([pubkey(1), pubkey(2), VOTER], signature="sig-w1")
    apply(governance.apply_withdraw_tokens, withdraw_ctx, TokenAmountArgs(amount=40))

    with get_session() as session:
        assert session.query(VoteDeposit).one().deposited_amount == 60

    apply(
        governance.apply_withdraw_tokens,
        context([pubkey(1), pubkey(2), VOTER], signature="sig-w2"),
        TokenAmountArgs(amount=60),
    )

    with get_session() as session:
        deposit = session.query(VoteDeposit).one()
        assert deposit.deposited_amount == 0
        assert deposit.deposit_timestamp == EPOCH
        assert deposit.eligible_at == EPOCH


def test_withdraw_without_deposit(governance):
    with pytest.raises(ReferentialMiss):
        apply(
            governance.apply_withdraw_tokens,
            context([pubkey(1), pubkey(2), VOTER]),
            TokenAmountArgs(amount=1),
        )


def test_relinquish_vote_floors_at_zero(governance):
    _create_round(governance)
    _submit_idea(governance)
    _deposit(governance, VOTER, 10)
    _vote(governance, VoteChoice.ABSTAIN)

    for i in range(2):
        apply(
            governance.apply_relinquish_vote,
            context([IDEA, pubkey(3), pubkey(4), VOTER], signature=f"sig-r{i}"),
            NoArgs(),
        )

    with get_session() as session:
        assert session.query(VoteDeposit).one().active_votes == 0


def test_veto_idea(governance):
    _create_round(governance)
    _submit_idea(governance)
    apply(governance.apply_veto_idea, context([IDEA]), NoArgs())

    with get_session() as session:
        assert session.query(Idea).one().status == "vetoed"
