from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional


FileAction = Literal["create", "modify", "delete"]
ChangeType = Literal["created", "modified", "deleted"]
IssueType = Literal["blocker", "question", "discovery", "suggestion"]
ConfidenceLevel = Literal["high", "medium", "low"]
OutcomeStatus = Literal["success", "partial", "failed", "blocked"]
CheckResult = Literal["pass", "fail", "skip", "warning"]
ScopeViolationType = Literal["out_of_scope_file", "unrelated_change", "missing_file"]
# Ticket status a validated task should move to (not the execution-task status set).
SuggestedStatus = Literal["done", "blocked", "in_progress", "verification"]

CONFIDENCE_RANK: dict[str, int] = {"high": 3, "medium": 2, "low": 1}


@dataclass(frozen=True)
class FileReference:
    path: str
    action: FileAction
    description: str = ""


@dataclass(frozen=True)
class WorkOrder:
    """The scope handed to an executor: criteria to satisfy and files it may touch."""

    id: str
    task_id: str
    summary: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)
    file_references: list[FileReference] = field(default_factory=list)


@dataclass(frozen=True)
class FileChange:
    file_path: str
    change_type: ChangeType
    lines_added: int = 0
    lines_removed: int = 0
    content: Optional[str] = None
    diff: Optional[str] = None


@dataclass(frozen=True)
class TestFailure:
    __test__ = False

    test_name: str
    message: str
    stack_trace: Optional[str] = None


@dataclass(frozen=True)
class TestResult:
    __test__ = False

    suite_name: str
    total_tests: int
    passed: int
    failed: int
    skipped: int = 0
    failures: list[TestFailure] = field(default_factory=list)
    coverage_percent: Optional[float] = None
    duration_ms: int = 0


@dataclass(frozen=True)
class DiscoveredIssue:
    type: IssueType
    title: str
    description: str = ""
    affected_files: list[str] = field(default_factory=list)
    severity: int = 3  # 1 = critical, 5 = trivial


@dataclass(frozen=True)
class OutcomeReport:
    """What an executor hands back for one work order."""

    id: str
    work_order_id: str
    task_id: str
    agent_id: str
    submitted_at: str
    file_changes: list[FileChange]
    test_results: list[TestResult]
    issues: list[DiscoveredIssue]
    time_spent_minutes: float
    original_estimate_minutes: float
    confidence: ConfidenceLevel
    status: OutcomeStatus
    summary: str


@dataclass(frozen=True)
class ValidationCheck:
    name: str
    result: CheckResult
    details: str


@dataclass(frozen=True)
class ScopeViolation:
    type: ScopeViolationType
    file_path: str
    reason: str


@dataclass(frozen=True)
class ValidationResult:
    accepted: bool
    checks: list[ValidationCheck]
    scope_violations: list[ScopeViolation]
    criteria_matched: int
    criteria_total: int
    summary: str
    suggested_status: SuggestedStatus

    def check(self, name: str) -> Optional[ValidationCheck]:
        for c in self.checks:
            if c.name == name:
                return c
        return None


def generate_outcome_id(task_id: str, now: Optional[datetime] = None) -> str:
    """``HB-<task>-<UTC yyyymmddThhmmss>``"""
    ts = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%S")
    return f"HB-{task_id}-{ts}"


def derive_outcome_status(
    file_changes: list[FileChange],
    test_results: list[TestResult],
    issues: list[DiscoveredIssue],
    confidence: ConfidenceLevel,
) -> OutcomeStatus:
    if any(i.type == "blocker" for i in issues):
        return "blocked"
    if not file_changes:
        return "failed"
    if all(r.failed == 0 for r in test_results) and confidence != "low":
        return "success"
    return "partial"


def create_outcome_report(
    *,
    work_order_id: str,
    task_id: str,
    agent_id: str,
    file_changes: list[FileChange],
    test_results: list[TestResult],
    issues: list[DiscoveredIssue],
    time_spent_minutes: float,
    original_estimate_minutes: float,
    confidence: ConfidenceLevel,
    summary: str,
) -> OutcomeReport:
    """Stamp id and submission time, and derive the status from the results."""
    now = datetime.now(timezone.utc)
    return OutcomeReport(
        id=generate_outcome_id(task_id, now),
        work_order_id=work_order_id,
        task_id=task_id,
        agent_id=agent_id,
        submitted_at=now.isoformat(),
        file_changes=list(file_changes),
        test_results=list(test_results),
        issues=list(issues),
        time_spent_minutes=time_spent_minutes,
        original_estimate_minutes=original_estimate_minutes,
        confidence=confidence,
        status=derive_outcome_status(file_changes, test_results, issues, confidence),
        summary=summary,
    )
