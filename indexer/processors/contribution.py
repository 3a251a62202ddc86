"""Contribution processor - compressed contribution leaves."""

import hashlib
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from chain.base58 import DecodeError, b58decode
from chain.instructions import InstructionKind, RecordContributionArgs
from chain.reader import FieldReader
from config import Config
from db.models import Contribution, VerificationReport, from_unix
from db.upsert import upsert
from log import get_logger
from messaging.schema import InnerInstruction
from processors.base import Handler, InstructionContext, Processor
from review.profiles import record_verified_contribution

logger = get_logger(__name__)

# developer(32) + task_ref(32) + score u16 + timestamp i64 + content_hash(32)
LEAF_SIZE = 106


@dataclass(frozen=True)
class ContributionLeaf:
    developer: str
    task_ref: str
    score: int
    timestamp: int
    content_hash: str
    leaf_hash: str


def parse_leaf(data: bytes) -> ContributionLeaf:
    """Parse the serialized leaf logged through the noop program.

    Raises:
        DecodeError: If ``data`` is not exactly one leaf
    """
    if len(data) != LEAF_SIZE:
        raise DecodeError(f"Contribution leaf must be {LEAF_SIZE} bytes, got {len(data)}")
    reader = FieldReader(data)
    return ContributionLeaf(
        developer=reader.pubkey(0),
        task_ref=reader.hex(32, 32),
        score=reader.u16(64),
        timestamp=reader.i64(66),
        content_hash=reader.hex(74, 32),
        leaf_hash=hashlib.sha256(data).hexdigest(),
    )


def find_leaf(inner_instructions: List[InnerInstruction], noop_program_id: str) -> Optional[ContributionLeaf]:
    """First well-formed leaf among the noop program's inner instructions."""
    for inner in inner_instructions:
        if inner.program_id != noop_program_id:
            continue
        try:
            return parse_leaf(b58decode(inner.data))
        except DecodeError as e:
            logger.debug(f"Skipping noop data: {e}")
    return None


def report_domains(session: Session, task_ref: str, developer: str) -> List[str]:
    """Domain tags of the latest report scored for this task, if any."""
    report_json = (
        session.query(VerificationReport.report_json)
        .filter(VerificationReport.task_ref == task_ref, VerificationReport.developer_wallet == developer)
        .order_by(VerificationReport.id.desc())
        .limit(1)
        .scalar()
    )
    return list((report_json or {}).get("domain_tags") or [])


class ContributionProcessor(Processor):
    """Indexes record_contribution instructions."""

    def __init__(self, config: Config):
        self.noop_program_id = config.noop_program_id

    def handlers(self) -> Dict[InstructionKind, Handler]:
        return {InstructionKind.RECORD_CONTRIBUTION: self.apply_record_contribution}

    def apply_record_contribution(
        self, session: Session, ctx: InstructionContext, args: RecordContributionArgs
    ) -> None:
        """Store one contribution per transaction, preferring the logged leaf."""
        tree_address = ctx.account(1)
        leaf = find_leaf(ctx.inner_instructions, self.noop_program_id)

        if leaf is not None:
            values = {
                "developer_wallet": leaf.developer,
                "task_ref": leaf.task_ref,
                "verification_score": leaf.score,
                "contribution_timestamp": from_unix(leaf.timestamp),
                "content_hash": leaf.content_hash,
                "leaf_hash": leaf.leaf_hash,
            }
        else:
            values = {
                "developer_wallet": args.developer,
                "task_ref": args.task_ref,
                "verification_score": args.score,
                "contribution_timestamp": ctx.block_time,
                "content_hash": args.content_hash,
                "leaf_hash": None,
            }

        is_new = (
            session.query(Contribution.id)
            .filter(Contribution.transaction_signature == ctx.signature)
            .first()
        ) is None

        upsert(
            session,
            Contribution,
            values={"transaction_signature": ctx.signature, "tree_address": tree_address, **values},
            conflict_columns=["transaction_signature"],
            update_values={"tree_address": tree_address, **values},
        )
        if is_new:
            developer = values["developer_wallet"]
            record_verified_contribution(session, developer, report_domains(session, values["task_ref"], developer))
        logger.info(
            f"Contribution by {values['developer_wallet']} "
            f"(task={values['task_ref'][:12]}, score={values['verification_score']})"
        )
