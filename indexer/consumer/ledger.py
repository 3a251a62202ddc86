"""Processed-instruction ledger used to make redelivery idempotent."""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models import IndexedInstruction
from log import get_logger

logger = get_logger(__name__)


def claim_instruction(session: Session, signature: str, instruction_index: int, instruction_name: str) -> bool:
    """Insert the ledger row for an instruction (idempotent).

    Must be the first write in the session that applies the instruction's
    state mutation so both commit or roll back together.

    Args:
        session: Database session
        signature: Transaction signature
        instruction_index: Position of the instruction in the transaction
        instruction_name: Decoded instruction name

    Returns:
        True if the instruction was claimed, False if it was already processed
    """
    # Check if already processed (avoid rollback issues)
    existing = (
        session.query(IndexedInstruction.id)
        .filter(
            IndexedInstruction.signature == signature,
            IndexedInstruction.instruction_index == instruction_index,
        )
        .first()
    )
    if existing:
        logger.debug(f"Instruction already processed: {signature}:{instruction_index}")
        return False

    try:
        session.add(
            IndexedInstruction(
                signature=signature,
                instruction_index=instruction_index,
                instruction_name=instruction_name,
            )
        )
        session.flush()  # Flush to trigger constraint checks
        return True
    except IntegrityError:
        # Concurrent worker claimed it between the check and the insert;
        # the claim is the first write of the session so nothing else is lost
        session.rollback()
        logger.debug(f"Instruction claimed concurrently: {signature}:{instruction_index}")
        return False
