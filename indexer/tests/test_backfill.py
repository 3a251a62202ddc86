"""Tests for the verification backfill runner."""

import threading
from datetime import timedelta

from backfill.runner import (
    JobState,
    MigrationRunner,
    MigrationStatus,
    estimate_completion_hours,
    find_unverified_contributions,
)
from db.models import Contribution, ReviewerProfile, VerificationReport, from_unix, utcnow
from db.session import get_session
from factories import TIMESTAMP, pubkey
from review.scoring import TaskArtifacts, VerificationResult


def _seed_contributions(count, score=7000):
    with get_session() as session:
        for i in range(count):
            session.add(
                Contribution(
                    transaction_signature=f"sig-{i}",
                    developer_wallet=pubkey(1),
                    task_ref=f"{i:064x}",
                    verification_score=score,
                    contribution_timestamp=from_unix(TIMESTAMP),
                    content_hash="00" * 32,
                )
            )


class StubVerifier:
    def __init__(self, confidence=90.0):
        self.confidence = confidence
        self.calls = 0

    def verify(self, artifacts):
        self.calls += 1
        return VerificationResult(overall_score=75.0, confidence=self.confidence, domain_tags=["api"])


class AllArtifacts:
    def load(self, record):
        return TaskArtifacts(task_ref=record.task_ref, plan_content="plan", code_diff="diff", test_results="ok")


class CancellingArtifacts:
    """Cancels the runner while loading the Nth record."""

    def __init__(self, runner_ref, cancel_at):
        self.runner_ref = runner_ref
        self.cancel_at = cancel_at
        self.loaded = 0

    def load(self, record):
        self.loaded += 1
        if self.loaded == self.cancel_at:
            self.runner_ref[0].cancel()
        return None


class BlockingArtifacts:
    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def load(self, record):
        self.entered.set()
        self.release.wait(5)
        return None


def test_find_unverified_contributions(db):
    _seed_contributions(3)
    with get_session() as session:
        session.add(
            VerificationReport(task_ref=f"{1:064x}", developer_wallet=pubkey(1), verification_type="ai")
        )

    with get_session() as session:
        records = find_unverified_contributions(session)
    assert [r.task_ref for r in records] == [f"{0:064x}", f"{2:064x}"]


def test_legacy_backfill(test_config, db):
    """Test records without artifacts are tagged legacy with their score kept."""
    _seed_contributions(5, score=6400)
    runner = MigrationRunner(test_config, batch_size=2, delay_seconds=0)

    assert runner.start(background=False) is True

    status = runner.status()
    assert status.state is JobState.COMPLETED
    assert status.total == 5
    assert status.processed == 5
    assert status.legacy_tagged == 5
    assert status.pending == 0
    with get_session() as session:
        reports = session.query(VerificationReport).all()
        assert len(reports) == 5
        assert {r.verification_type for r in reports} == {"legacy"}
        assert {r.overall_score for r in reports} == {6400}
        assert all(r.transaction_signature is None for r in reports)

    # A second run finds nothing left to do
    runner.start(background=False)
    assert runner.status().total == 0


def test_ai_backfill_uses_scoring_path(test_config, db):
    _seed_contributions(2)
    verifier = StubVerifier(confidence=40.0)
    runner = MigrationRunner(test_config, verifier=verifier, artifacts=AllArtifacts(), delay_seconds=0)
    runner.start(background=False)

    assert verifier.calls == 2
    assert runner.status().legacy_tagged == 0
    with get_session() as session:
        report = session.query(VerificationReport).first()
        assert report.verification_type == "ai"
        assert report.overall_score == 7500
        assert report.status == "pending"
        profile = session.query(ReviewerProfile).filter(ReviewerProfile.wallet_address == pubkey(1)).one()
        assert profile.domain_contributions == {"api": 2}


def test_verifier_failure_counted(test_config, db):
    class BrokenVerifier:
        def verify(self, artifacts):
            raise RuntimeError("verifier down")

    _seed_contributions(2)
    runner = MigrationRunner(test_config, verifier=BrokenVerifier(), artifacts=AllArtifacts(), delay_seconds=0)
    runner.start(background=False)

    status = runner.status()
    assert status.failed == 2
    assert status.processed == 0
    assert status.state is JobState.COMPLETED


def test_cancel_stops_between_items(test_config, db):
    """Test cancellation lets the current item finish and stops the run."""
    _seed_contributions(6)
    runner_ref = []
    artifacts = CancellingArtifacts(runner_ref, cancel_at=3)
    runner = MigrationRunner(test_config, artifacts=artifacts, batch_size=2, delay_seconds=0)
    runner_ref.append(runner)

    runner.start(background=False)

    status = runner.status()
    assert status.state is JobState.CANCELLED
    assert status.processed == 3
    assert status.pending == 3


def test_single_flight(test_config, db):
    """Test a second start is refused while a run is in progress."""
    _seed_contributions(1)
    artifacts = BlockingArtifacts()
    runner = MigrationRunner(test_config, artifacts=artifacts, delay_seconds=0)

    assert runner.start() is True
    assert artifacts.entered.wait(5)
    assert runner.status().state is JobState.RUNNING
    assert runner.start() is False

    artifacts.release.set()
    runner.join(5)
    assert runner.status().state is JobState.COMPLETED
    assert runner.start(background=False) is True


def test_estimate_completion_hours():
    now = utcnow()
    status = MigrationStatus(
        processed=10, pending=90, state=JobState.RUNNING, started_at=now - timedelta(hours=1)
    )
    assert estimate_completion_hours(status, now) == 9.0

    assert estimate_completion_hours(MigrationStatus(state=JobState.RUNNING, started_at=now), now) is None
    status.state = JobState.COMPLETED
    assert estimate_completion_hours(status, now) is None
