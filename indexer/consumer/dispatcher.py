"""Instruction dispatcher - routes program instructions to processors."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import OperationalError

from chain.base58 import DecodeError, b58decode
from chain.instructions import DecodedInstruction, InstructionKind, UnknownInstruction, decode_instruction
from config import Config
from consumer.ledger import claim_instruction
from db.session import get_session
from log import get_logger
from messaging.schema import TransactionNotification
from processors.base import Handler, InstructionContext, Processor, ReferentialMiss
from processors.contribution import ContributionProcessor
from processors.delegation import DelegationProcessor
from processors.governance import GovernanceProcessor
from processors.revenue import RevenueProcessor
from processors.verification import VerificationProcessor

logger = get_logger(__name__)


@dataclass(frozen=True)
class InstructionFailure:
    instruction: str
    signature: str
    index: int
    error: str


@dataclass
class DispatchResult:
    """Per-notification outcome counts."""
    signature: str
    processed: int = 0
    duplicates: int = 0
    skipped: int = 0
    missing: int = 0
    failed: int = 0
    failures: List[InstructionFailure] = field(default_factory=list)


def default_processors(config: Config) -> List[Processor]:
    return [
        GovernanceProcessor(config),
        DelegationProcessor(),
        RevenueProcessor(),
        VerificationProcessor(config),
        ContributionProcessor(config),
    ]


class InstructionDispatcher:
    """Decodes a notification's instructions and applies each in isolation.

    Every instruction gets its own session: the ledger claim and the
    processor's mutation commit together, and a failure in one instruction
    never affects its siblings.
    """

    def __init__(self, config: Config, processors: Optional[Sequence[Processor]] = None):
        """Initialize dispatcher.

        Args:
            config: Configuration object
            processors: Processors to route to (default: one per domain)

        Raises:
            ValueError: If some instruction kind has no handler
        """
        self.program_id = config.program_id
        self.routes: Dict[InstructionKind, Handler] = {}
        for processor in processors if processors is not None else default_processors(config):
            self.routes.update(processor.handlers())

        unrouted = set(InstructionKind) - set(self.routes)
        if unrouted:
            raise ValueError(f"No handler for instructions: {sorted(k.value for k in unrouted)}")

        # Stats
        self._instructions_processed = 0
        self._instructions_failed = 0

    def dispatch(self, notification: TransactionNotification) -> DispatchResult:
        """Apply every instruction of ``notification`` that targets the program.

        Args:
            notification: Validated transaction notification

        Returns:
            Outcome counts for this notification

        Raises:
            OperationalError: If the database is unavailable (caller retries)
        """
        result = DispatchResult(signature=notification.signature)

        for index, instruction in enumerate(notification.instructions):
            if instruction.program_id != self.program_id:
                continue

            try:
                decoded = decode_instruction(b58decode(instruction.data))
            except UnknownInstruction:
                result.skipped += 1
                continue
            except DecodeError as e:
                logger.debug(f"Undecodable instruction {index} in tx={notification.signature}: {e}")
                result.skipped += 1
                continue

            ctx = InstructionContext(
                signature=notification.signature,
                index=index,
                accounts=list(instruction.accounts),
                inner_instructions=list(instruction.inner_instructions),
                timestamp=notification.timestamp,
            )
            self._apply(decoded, ctx, result)

        return result

    def _apply(self, decoded: DecodedInstruction, ctx: InstructionContext, result: DispatchResult) -> None:
        name = decoded.kind.value
        handler = self.routes[decoded.kind]

        try:
            with get_session() as session:
                if not claim_instruction(session, ctx.signature, ctx.index, name):
                    result.duplicates += 1
                    return
                handler(session, ctx, decoded.args)
        except ReferentialMiss as e:
            logger.warning(f"{name} skipped: {e} (tx={ctx.signature})")
            result.missing += 1
            return
        except DecodeError as e:
            logger.debug(f"{name} has malformed accounts in tx={ctx.signature}: {e}")
            result.skipped += 1
            return
        except OperationalError:
            raise
        except Exception as e:
            logger.error(f"Error processing {name} in tx={ctx.signature}: {e}", exc_info=True)
            result.failed += 1
            result.failures.append(
                InstructionFailure(instruction=name, signature=ctx.signature, index=ctx.index, error=str(e))
            )
            self._instructions_failed += 1
            return

        result.processed += 1
        self._instructions_processed += 1
        logger.debug(f"Processed {name} in tx={ctx.signature}")

    @property
    def instructions_processed(self) -> int:
        """Get number of instructions applied."""
        return self._instructions_processed

    @property
    def instructions_failed(self) -> int:
        """Get number of instructions that raised."""
        return self._instructions_failed
