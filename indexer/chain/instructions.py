"""Closed set of program instructions with typed, decoded payloads.

Each ``InstructionKind`` maps to exactly one payload dataclass and one
decoder. Payload offsets are relative to the end of the 8-byte
discriminator; all integers are little-endian.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Tuple

from chain.base58 import DecodeError, b58encode
from chain.discriminators import name_of
from chain.reader import FieldReader

DISCRIMINATOR_SIZE = 8


class UnknownInstruction(Exception):
    """Discriminator is not registered (instruction is not ours)."""


class Domain(str, Enum):
    """Business domain an instruction belongs to."""
    GOVERNANCE = "governance"
    DELEGATION = "delegation"
    REVENUE = "revenue"
    VERIFICATION = "verification"
    CONTRIBUTION = "contribution"


class InstructionKind(str, Enum):
    """Instruction variants routed by the dispatcher."""
    CREATE_ROUND = "create_round"
    SUBMIT_IDEA = "submit_idea"
    TRANSITION_ROUND = "transition_round"
    CAST_VOTE = "cast_vote"
    DEPOSIT_TOKENS = "deposit_tokens"
    WITHDRAW_TOKENS = "withdraw_tokens"
    RELINQUISH_VOTE = "relinquish_vote"
    VETO_IDEA = "veto_idea"
    DELEGATE_VOTE = "delegate_vote"
    REVOKE_DELEGATION = "revoke_delegation"
    UPDATE_GOVERNANCE_CONFIG = "update_governance_config"
    RECORD_REVENUE_EVENT = "record_revenue_event"
    CLAIM_REVENUE_SHARE = "claim_revenue_share"
    EXECUTE_BURN = "execute_burn"
    INIT_REVENUE_CONFIG = "init_revenue_config"
    SUBMIT_VERIFICATION = "submit_verification"
    SUBMIT_PEER_REVIEW = "submit_peer_review"
    FINALIZE_PEER_VERIFICATION = "finalize_peer_verification"
    INIT_VERIFICATION_CONFIG = "init_verification_config"
    RECORD_CONTRIBUTION = "record_contribution"

    @property
    def domain(self) -> Domain:
        return _DOMAINS[self]


_DOMAINS: Dict[InstructionKind, Domain] = {
    InstructionKind.CREATE_ROUND: Domain.GOVERNANCE,
    InstructionKind.SUBMIT_IDEA: Domain.GOVERNANCE,
    InstructionKind.TRANSITION_ROUND: Domain.GOVERNANCE,
    InstructionKind.CAST_VOTE: Domain.GOVERNANCE,
    InstructionKind.DEPOSIT_TOKENS: Domain.GOVERNANCE,
    InstructionKind.WITHDRAW_TOKENS: Domain.GOVERNANCE,
    InstructionKind.RELINQUISH_VOTE: Domain.GOVERNANCE,
    InstructionKind.VETO_IDEA: Domain.GOVERNANCE,
    InstructionKind.DELEGATE_VOTE: Domain.DELEGATION,
    InstructionKind.REVOKE_DELEGATION: Domain.DELEGATION,
    InstructionKind.UPDATE_GOVERNANCE_CONFIG: Domain.DELEGATION,
    InstructionKind.RECORD_REVENUE_EVENT: Domain.REVENUE,
    InstructionKind.CLAIM_REVENUE_SHARE: Domain.REVENUE,
    InstructionKind.EXECUTE_BURN: Domain.REVENUE,
    InstructionKind.INIT_REVENUE_CONFIG: Domain.REVENUE,
    InstructionKind.SUBMIT_VERIFICATION: Domain.VERIFICATION,
    InstructionKind.SUBMIT_PEER_REVIEW: Domain.VERIFICATION,
    InstructionKind.FINALIZE_PEER_VERIFICATION: Domain.VERIFICATION,
    InstructionKind.INIT_VERIFICATION_CONFIG: Domain.VERIFICATION,
    InstructionKind.RECORD_CONTRIBUTION: Domain.CONTRIBUTION,
}


class QuorumType(str, Enum):
    SMALL = "small"
    TREASURY = "treasury"
    PARAMETER_CHANGE = "parameter_change"


class VoteChoice(str, Enum):
    YES = "yes"
    NO = "no"
    ABSTAIN = "abstain"


class RevenueToken(str, Enum):
    SOL = "sol"
    USDC = "usdc"


# On-chain enum tag order
_QUORUM_TAGS = (QuorumType.SMALL, QuorumType.TREASURY, QuorumType.PARAMETER_CHANGE)
_VOTE_TAGS = (VoteChoice.YES, VoteChoice.NO, VoteChoice.ABSTAIN)
_TOKEN_TAGS = (RevenueToken.SOL, RevenueToken.USDC)


def _enum_at(reader: FieldReader, offset: int, tags: Tuple, field: str):
    tag = reader.u8(offset)
    if tag >= len(tags):
        raise DecodeError(f"Unknown {field} tag {tag}")
    return tags[tag]


# Payloads

@dataclass(frozen=True)
class NoArgs:
    """Instruction whose arguments the indexer does not use."""


@dataclass(frozen=True)
class CreateRoundArgs:
    submission_start: int
    submission_end: int
    voting_end: int
    quorum_type: QuorumType
    content_hash: str


@dataclass(frozen=True)
class SubmitIdeaArgs:
    content_hash: str


@dataclass(frozen=True)
class CastVoteArgs:
    vote: VoteChoice


@dataclass(frozen=True)
class TokenAmountArgs:
    amount: int


@dataclass(frozen=True)
class DelegateVoteArgs:
    delegated_amount: int


@dataclass(frozen=True)
class RecordRevenueEventArgs:
    origin_signature: str
    amount: int
    token: RevenueToken


@dataclass(frozen=True)
class ExecuteBurnArgs:
    gsd_amount: int
    burn_signature: str


@dataclass(frozen=True)
class SubmitVerificationArgs:
    task_ref: str
    score: int
    confidence: int
    report_hash: str
    is_peer: bool


@dataclass(frozen=True)
class SubmitPeerReviewArgs:
    score: int
    passed: bool
    review_hash: str


@dataclass(frozen=True)
class FinalizePeerVerificationArgs:
    final_score: int
    final_confidence: int
    peer_report_hash: str


@dataclass(frozen=True)
class RecordContributionArgs:
    developer: str
    task_ref: str
    score: int
    content_hash: str


@dataclass(frozen=True)
class DecodedInstruction:
    """A routed instruction variant and its typed payload."""
    kind: InstructionKind
    args: Any


# Decoders

def _no_args(reader: FieldReader) -> NoArgs:
    return NoArgs()


def _create_round(reader: FieldReader) -> CreateRoundArgs:
    return CreateRoundArgs(
        submission_start=reader.i64(0),
        submission_end=reader.i64(8),
        voting_end=reader.i64(16),
        quorum_type=_enum_at(reader, 24, _QUORUM_TAGS, "quorum_type"),
        content_hash=reader.hex(25, 32),
    )


def _submit_idea(reader: FieldReader) -> SubmitIdeaArgs:
    return SubmitIdeaArgs(content_hash=reader.hex(0, 32))


def _cast_vote(reader: FieldReader) -> CastVoteArgs:
    return CastVoteArgs(vote=_enum_at(reader, 0, _VOTE_TAGS, "vote"))


def _token_amount(reader: FieldReader) -> TokenAmountArgs:
    return TokenAmountArgs(amount=reader.u64(0))


def _delegate_vote(reader: FieldReader) -> DelegateVoteArgs:
    return DelegateVoteArgs(delegated_amount=reader.u64(0))


def _record_revenue_event(reader: FieldReader) -> RecordRevenueEventArgs:
    origin_signature, offset = reader.string(0, max_length=200)
    if not origin_signature:
        raise DecodeError("Empty origin signature")
    return RecordRevenueEventArgs(
        origin_signature=origin_signature,
        amount=reader.u64(offset),
        token=_enum_at(reader, offset + 8, _TOKEN_TAGS, "token"),
    )


def _execute_burn(reader: FieldReader) -> ExecuteBurnArgs:
    return ExecuteBurnArgs(
        gsd_amount=reader.u64(0),
        burn_signature=b58encode(reader.fixed(8, 64)),
    )


def _submit_verification(reader: FieldReader) -> SubmitVerificationArgs:
    return SubmitVerificationArgs(
        task_ref=reader.hex(0, 32),
        score=reader.u16(32),
        confidence=reader.u16(34),
        report_hash=reader.hex(36, 32),
        is_peer=reader.u8(68) == 1,
    )


def _submit_peer_review(reader: FieldReader) -> SubmitPeerReviewArgs:
    return SubmitPeerReviewArgs(
        score=reader.u16(0),
        passed=reader.flag(2),
        review_hash=reader.hex(3, 32),
    )


def _finalize_peer_verification(reader: FieldReader) -> FinalizePeerVerificationArgs:
    return FinalizePeerVerificationArgs(
        final_score=reader.u16(0),
        final_confidence=reader.u16(2),
        peer_report_hash=reader.hex(4, 32),
    )


def _record_contribution(reader: FieldReader) -> RecordContributionArgs:
    return RecordContributionArgs(
        developer=reader.pubkey(0),
        task_ref=reader.hex(32, 32),
        score=reader.u16(64),
        content_hash=reader.hex(66, 32),
    )


DECODERS: Dict[InstructionKind, Callable[[FieldReader], Any]] = {
    InstructionKind.CREATE_ROUND: _create_round,
    InstructionKind.SUBMIT_IDEA: _submit_idea,
    InstructionKind.TRANSITION_ROUND: _no_args,
    InstructionKind.CAST_VOTE: _cast_vote,
    InstructionKind.DEPOSIT_TOKENS: _token_amount,
    InstructionKind.WITHDRAW_TOKENS: _token_amount,
    InstructionKind.RELINQUISH_VOTE: _no_args,
    InstructionKind.VETO_IDEA: _no_args,
    InstructionKind.DELEGATE_VOTE: _delegate_vote,
    InstructionKind.REVOKE_DELEGATION: _no_args,
    InstructionKind.UPDATE_GOVERNANCE_CONFIG: _no_args,
    InstructionKind.RECORD_REVENUE_EVENT: _record_revenue_event,
    InstructionKind.CLAIM_REVENUE_SHARE: _no_args,
    InstructionKind.EXECUTE_BURN: _execute_burn,
    InstructionKind.INIT_REVENUE_CONFIG: _no_args,
    InstructionKind.SUBMIT_VERIFICATION: _submit_verification,
    InstructionKind.SUBMIT_PEER_REVIEW: _submit_peer_review,
    InstructionKind.FINALIZE_PEER_VERIFICATION: _finalize_peer_verification,
    InstructionKind.INIT_VERIFICATION_CONFIG: _no_args,
    InstructionKind.RECORD_CONTRIBUTION: _record_contribution,
}


def decode_instruction(data: bytes) -> DecodedInstruction:
    """Decode raw instruction data into a typed variant.

    Args:
        data: Full instruction data (discriminator + arguments)

    Returns:
        Decoded instruction

    Raises:
        DecodeError: If data is too short or an argument is truncated
        UnknownInstruction: If the discriminator is not registered
    """
    if len(data) < DISCRIMINATOR_SIZE:
        raise DecodeError(f"Instruction data too short ({len(data)} bytes)")

    discriminator_hex = data[:DISCRIMINATOR_SIZE].hex()
    name = name_of(discriminator_hex)
    if name is None:
        raise UnknownInstruction(discriminator_hex)

    kind = InstructionKind(name)
    args = DECODERS[kind](FieldReader(data[DISCRIMINATOR_SIZE:]))
    return DecodedInstruction(kind=kind, args=args)
