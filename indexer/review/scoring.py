"""Verification scoring path shared by live indexing and backfill.

The external verifier (an LLM-backed service) is consumed through the
``Verifier`` protocol and reports scores on a 0-100 scale. Everything stored
or compared on-chain uses the 0-10000 scale.
"""

import hashlib
import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from db.models import VerificationStatus, VerificationType
from review.constants import CONFIDENCE_THRESHOLD

# Category weights (sum to 10000)
DEFAULT_WEIGHTS = {
    "code_quality": 2500,
    "task_fulfillment": 2000,
    "test_coverage": 1500,
    "workflow_discipline": 2500,
    "plan_adherence": 1500,
}

# File path glob -> domain tag
DOMAIN_TAGS = {
    "programs/**/*.rs": "on-chain",
    "components/**/*.tsx": "frontend",
    "app/api/**": "api",
    "tests/**": "testing",
    "lib/**": "backend",
    "packages/**": "shared",
}

LEGACY_REASON = "Pre-AI contribution without recoverable artifacts"


@dataclass(frozen=True)
class TaskArtifacts:
    """Inputs the verifier scores a task from."""
    task_ref: str
    plan_content: str
    code_diff: str
    test_results: str
    file_list: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class VerificationResult:
    """Structured verifier output (0-100 scale)."""
    overall_score: float
    confidence: float
    categories: Dict[str, float] = field(default_factory=dict)
    domain_tags: List[str] = field(default_factory=list)
    summary: str = ""


class Verifier(Protocol):
    def verify(self, artifacts: TaskArtifacts) -> VerificationResult:
        ...


@dataclass(frozen=True)
class ScoredReport:
    """Report fields ready to persist on a VerificationReport row."""
    verification_type: str
    overall_score: int
    confidence: int
    status: str
    report_json: Dict[str, Any]
    report_hash: str


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def scale_to_onchain(score: float) -> int:
    """0-100 float to 0-10000 integer (two decimals of precision)."""
    return int(_clamp(score, 0, 100) * 100 + 0.5)


def scale_from_onchain(score: int) -> float:
    return _clamp(score, 0, 10000) / 100


def compute_weighted_score(categories: Dict[str, float], weights: Optional[Dict[str, int]] = None) -> int:
    """Combine category scores (0-100 each) into a 0-100 integer."""
    weights = weights or DEFAULT_WEIGHTS
    total_weight = sum(weights.values())
    weighted_sum = sum(
        _clamp(categories.get(name, 0), 0, 100) * weight for name, weight in weights.items()
    )
    return int(_clamp(int(weighted_sum / total_weight + 0.5), 0, 100))


def _glob_to_regex(pattern: str) -> re.Pattern:
    escaped = re.escape(pattern).replace(r"\*\*", "<<GLOBSTAR>>").replace(r"\*", "[^/]*")
    return re.compile("^" + escaped.replace("<<GLOBSTAR>>", ".*") + "$")


_DOMAIN_PATTERNS = [(_glob_to_regex(pattern), tag) for pattern, tag in DOMAIN_TAGS.items()]


def infer_domain_tags(file_list: List[str]) -> List[str]:
    """Sorted unique domain tags for the touched file paths."""
    tags = set()
    for path in file_list:
        normalized = path.lstrip("/")
        for regex, tag in _DOMAIN_PATTERNS:
            if regex.match(normalized):
                tags.add(tag)
    return sorted(tags)


def status_for_confidence(confidence: int, threshold: int = CONFIDENCE_THRESHOLD) -> VerificationStatus:
    """Low-confidence reports stay pending until peer review completes them."""
    if confidence < threshold:
        return VerificationStatus.PENDING
    return VerificationStatus.COMPLETED


def compute_report_hash(report: Dict[str, Any]) -> str:
    """SHA-256 hex of the canonical (sorted-key, compact) JSON of a report."""
    canonical = json.dumps(report, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_legacy_report(original_score: int) -> ScoredReport:
    """Legacy tag for a record with nothing to re-score; keeps its score."""
    report_json = {
        "type": VerificationType.LEGACY.value,
        "reason": LEGACY_REASON,
        "originalScore": original_score,
    }
    return ScoredReport(
        verification_type=VerificationType.LEGACY.value,
        overall_score=original_score,
        confidence=0,
        status=VerificationStatus.COMPLETED.value,
        report_json=report_json,
        report_hash=compute_report_hash(report_json),
    )


def build_ai_report(result: VerificationResult, threshold: int = CONFIDENCE_THRESHOLD) -> ScoredReport:
    """Scale verifier output to on-chain units and gate on confidence."""
    report_json = asdict(result)
    confidence = scale_to_onchain(result.confidence)
    return ScoredReport(
        verification_type=VerificationType.AI.value,
        overall_score=scale_to_onchain(result.overall_score),
        confidence=confidence,
        status=status_for_confidence(confidence, threshold).value,
        report_json=report_json,
        report_hash=compute_report_hash(report_json),
    )
