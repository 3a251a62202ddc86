"""Shared types for instruction processors."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from chain.base58 import DecodeError
from chain.instructions import InstructionKind
from db.models import from_unix
from messaging.schema import InnerInstruction


class ReferentialMiss(Exception):
    """A decoded instruction references an entity not yet indexed locally.

    Signals an ordering or backfill gap; the instruction is skipped and can be
    applied when it is redelivered after the upstream event arrives.
    """

    def __init__(self, entity: str, key: str):
        super().__init__(f"{entity} not found: {key}")
        self.entity = entity
        self.key = key


@dataclass(frozen=True)
class InstructionContext:
    """Everything a processor may read about the instruction being applied.

    Attributes:
        signature: Transaction signature
        index: Position of the instruction within the transaction
        accounts: Ordered account addresses (position is the contract)
        inner_instructions: CPI instructions emitted by this instruction
        timestamp: Block time (Unix epoch), if known
    """
    signature: str
    index: int
    accounts: List[str]
    inner_instructions: List[InnerInstruction] = field(default_factory=list)
    timestamp: Optional[int] = None

    def account(self, position: int) -> str:
        """Account address at ``position``.

        Raises:
            DecodeError: If the instruction carries fewer accounts
        """
        if position >= len(self.accounts):
            raise DecodeError(
                f"Instruction has {len(self.accounts)} accounts, need position {position}"
            )
        return self.accounts[position]

    @property
    def block_time(self) -> datetime:
        return from_unix(self.timestamp)


Handler = Callable[[Session, InstructionContext, object], None]


class Processor:
    """Base class: maps instruction kinds to bound handler methods."""

    def handlers(self) -> Dict[InstructionKind, Handler]:
        raise NotImplementedError
