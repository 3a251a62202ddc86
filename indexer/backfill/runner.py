"""Rate-limited backfill of verification reports for historical contributions.

Contributions indexed before AI verification existed have no
VerificationReport. The runner walks them in batches, tags the ones with no
recoverable artifacts as legacy (original score kept) and re-scores the rest
through the same scoring path the live system uses.
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional, Protocol

from sqlalchemy.orm import Session

from config import Config
from db.models import Contribution, VerificationReport, utcnow
from db.session import get_session
from log import get_logger
from review.profiles import credit_contribution_domains
from review.scoring import ScoredReport, TaskArtifacts, Verifier, build_ai_report, build_legacy_report

logger = get_logger(__name__)


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class MigrationStatus:
    """Point-in-time view of a backfill run."""
    total: int = 0
    processed: int = 0
    pending: int = 0
    failed: int = 0
    legacy_tagged: int = 0
    state: JobState = JobState.IDLE
    started_at: Optional[datetime] = None
    last_processed_at: Optional[datetime] = None
    estimated_completion_hours: Optional[float] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ContributionRecord:
    id: int
    developer_wallet: str
    task_ref: str
    verification_score: int


class ArtifactSource(Protocol):
    """Recovers verifier inputs (plan, diff, tests) for a contribution."""

    def load(self, record: ContributionRecord) -> Optional[TaskArtifacts]:
        ...


class NoArtifacts:
    """Artifact source for deployments that never stored task artifacts."""

    def load(self, record: ContributionRecord) -> Optional[TaskArtifacts]:
        return None


def find_unverified_contributions(session: Session) -> List[ContributionRecord]:
    """Contributions with no report for the same (task_ref, developer_wallet)."""
    verified = set(
        session.query(VerificationReport.task_ref, VerificationReport.developer_wallet).all()
    )
    return [
        ContributionRecord(
            id=c.id,
            developer_wallet=c.developer_wallet,
            task_ref=c.task_ref,
            verification_score=c.verification_score,
        )
        for c in session.query(Contribution).order_by(Contribution.id).all()
        if (c.task_ref, c.developer_wallet) not in verified
    ]


def estimate_completion_hours(status: MigrationStatus, now: datetime) -> Optional[float]:
    """Remaining items divided by the observed rate, to 0.1 h."""
    if status.state != JobState.RUNNING or status.processed <= 0 or status.started_at is None:
        return None
    elapsed = (now - status.started_at).total_seconds()
    if elapsed <= 0:
        return None
    rate = status.processed / elapsed
    return round(status.pending / rate / 3600, 1)


class MigrationRunner:
    """Single-flight supervisor for the backfill job."""

    def __init__(
        self,
        config: Config,
        verifier: Optional[Verifier] = None,
        artifacts: Optional[ArtifactSource] = None,
        batch_size: Optional[int] = None,
        delay_seconds: Optional[float] = None,
    ):
        """Initialize runner.

        Args:
            config: Configuration object
            verifier: External scorer; without one every record is tagged legacy
            artifacts: Artifact source (default: none recoverable)
            batch_size: Records per batch (default: from config)
            delay_seconds: Pause between batches (default: from config)
        """
        self.confidence_threshold = config.confidence_threshold
        self.verifier = verifier
        self.artifacts = artifacts or NoArtifacts()
        self.batch_size = batch_size or config.backfill_batch_size
        self.delay_seconds = config.backfill_delay_seconds if delay_seconds is None else delay_seconds

        self._run_lock = threading.Lock()
        self._status_lock = threading.Lock()
        self._cancel = threading.Event()
        self._status = MigrationStatus()
        self._thread: Optional[threading.Thread] = None

    def start(self, background: bool = True) -> bool:
        """Start a run unless one is already in progress.

        Args:
            background: Run in a daemon thread instead of blocking

        Returns:
            False if a run is already in progress
        """
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Backfill already in progress, ignoring start request")
            return False

        self._cancel.clear()
        with self._status_lock:
            self._status = MigrationStatus(state=JobState.RUNNING, started_at=utcnow())

        if background:
            self._thread = threading.Thread(target=self._run, name="backfill", daemon=True)
            self._thread.start()
        else:
            self._run()
        return True

    def cancel(self) -> None:
        """Request cancellation; takes effect before the next batch or item."""
        if self._run_lock.locked():
            logger.info("Backfill cancellation requested")
        self._cancel.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def status(self) -> MigrationStatus:
        with self._status_lock:
            snapshot = replace(self._status)
        snapshot.estimated_completion_hours = estimate_completion_hours(snapshot, utcnow())
        return snapshot

    def _run(self) -> None:
        try:
            with get_session() as session:
                records = find_unverified_contributions(session)

            with self._status_lock:
                self._status.total = len(records)
                self._status.pending = len(records)
            logger.info(f"Starting backfill of {len(records)} contributions")

            total_batches = (len(records) + self.batch_size - 1) // self.batch_size
            for offset in range(0, len(records), self.batch_size):
                if self._cancel.is_set():
                    logger.info("Backfill cancelled, stopping")
                    break

                batch = records[offset:offset + self.batch_size]
                logger.info(
                    f"Processing batch {offset // self.batch_size + 1}/{total_batches} "
                    f"({len(batch)} contributions)"
                )
                for record in batch:
                    if self._cancel.is_set():
                        break
                    self._process_one(record)

                status = self.status()
                logger.info(
                    f"Backfill progress: {status.processed}/{status.total} processed, "
                    f"{status.legacy_tagged} legacy, {status.failed} failed"
                )

                if offset + self.batch_size < len(records) and not self._cancel.is_set():
                    logger.info(f"Rate limit: waiting {self.delay_seconds}s before next batch")
                    self._cancel.wait(self.delay_seconds)
        except Exception as e:
            logger.error(f"Backfill failed: {e}", exc_info=True)
            with self._status_lock:
                self._status.error = str(e)
        finally:
            with self._status_lock:
                self._status.state = JobState.CANCELLED if self._cancel.is_set() else JobState.COMPLETED
                summary = replace(self._status)
            self._run_lock.release()
            logger.info(
                f"Backfill {summary.state.value}. Processed: {summary.processed}, "
                f"Legacy: {summary.legacy_tagged}, Failed: {summary.failed}"
            )

    def _process_one(self, record: ContributionRecord) -> None:
        try:
            legacy = self._score_and_store(record)
        except Exception as e:
            logger.error(f"Error backfilling contribution {record.id}: {e}")
            with self._status_lock:
                self._status.failed += 1
                self._status.pending -= 1
                self._status.last_processed_at = utcnow()
            return

        with self._status_lock:
            self._status.processed += 1
            self._status.pending -= 1
            if legacy:
                self._status.legacy_tagged += 1
            self._status.last_processed_at = utcnow()

    def _score_and_store(self, record: ContributionRecord) -> bool:
        """Create the record's report; returns True if it was tagged legacy."""
        artifacts = self.artifacts.load(record)
        if artifacts is None or self.verifier is None:
            report = build_legacy_report(record.verification_score)
        else:
            report = build_ai_report(self.verifier.verify(artifacts), self.confidence_threshold)

        with get_session() as session:
            session.add(_report_row(record, report))
            credit_contribution_domains(
                session, record.developer_wallet, report.report_json.get("domain_tags") or []
            )
        return artifacts is None or self.verifier is None


def _report_row(record: ContributionRecord, report: ScoredReport) -> VerificationReport:
    return VerificationReport(
        transaction_signature=None,
        on_chain_address=None,
        task_ref=record.task_ref,
        developer_wallet=record.developer_wallet,
        verification_type=report.verification_type,
        overall_score=report.overall_score,
        confidence=report.confidence,
        status=report.status,
        report_hash=report.report_hash,
        report_json=report.report_json,
    )
