from __future__ import annotations

import logging
from typing import Callable, Optional

from plan_executor.core.handback.contracts import (
    CONFIDENCE_RANK,
    CheckResult,
    OutcomeReport,
    ScopeViolation,
    SuggestedStatus,
    TestResult,
    ValidationCheck,
    ValidationResult,
    WorkOrder,
)
from plan_executor.core.handback.policy import DEFAULT_HANDBACK_POLICY, HandbackPolicy


logger = logging.getLogger(__name__)

TESTS_PASS = "Tests Pass"
ACCEPTANCE_CRITERIA = "Acceptance Criteria"
SCOPE_COMPLIANCE = "Scope Compliance"
TEST_COVERAGE = "Test Coverage"
TIME_BUDGET = "Time Budget"
CONFIDENCE_LEVEL = "Confidence Level"

MIN_KEYWORD_LENGTH = 4


def check_tests_pass(test_results: list[TestResult]) -> ValidationCheck:
    if not test_results:
        return ValidationCheck(TESTS_PASS, "skip", "No test results provided")

    failed = sum(r.failed for r in test_results)
    passed = sum(r.passed for r in test_results)
    total = sum(r.total_tests for r in test_results)

    if failed == 0:
        return ValidationCheck(TESTS_PASS, "pass", f"All {passed}/{total} tests passed")
    return ValidationCheck(TESTS_PASS, "fail", f"{failed} test(s) failed out of {total}")


def count_matched_criteria(work_order: WorkOrder, outcome: OutcomeReport) -> int:
    """Count criteria with at least one keyword (>= 4 chars) in the summary or changed paths.

    Deliberately coarse: this is a keyword heuristic, not a review.
    """
    context = " ".join([outcome.summary, *(c.file_path for c in outcome.file_changes)]).lower()
    matched = 0
    for criterion in work_order.acceptance_criteria:
        keywords = [w for w in criterion.lower().split() if len(w) >= MIN_KEYWORD_LENGTH]
        if any(kw in context for kw in keywords):
            matched += 1
    return matched


def check_acceptance_criteria(work_order: WorkOrder, outcome: OutcomeReport) -> ValidationCheck:
    total = len(work_order.acceptance_criteria)
    if total == 0:
        return ValidationCheck(ACCEPTANCE_CRITERIA, "skip", "No acceptance criteria defined")

    matched = count_matched_criteria(work_order, outcome)
    result: CheckResult = "pass" if matched == total else "warning" if matched > 0 else "fail"
    return ValidationCheck(
        ACCEPTANCE_CRITERIA, result, f"{matched}/{total} criteria appear to be addressed"
    )


def check_scope(
    work_order: WorkOrder, outcome: OutcomeReport, policy: HandbackPolicy
) -> tuple[ValidationCheck, list[ScopeViolation]]:
    allowed = {ref.path for ref in work_order.file_references}
    changed = {c.file_path for c in outcome.file_changes}
    violations: list[ScopeViolation] = []

    for change in outcome.file_changes:
        if change.file_path not in allowed:
            violations.append(
                ScopeViolation(
                    type="out_of_scope_file",
                    file_path=change.file_path,
                    reason=f"File {change.file_path} was not listed in the work order file references",
                )
            )

    for ref in work_order.file_references:
        if ref.action != "delete" and ref.path not in changed:
            violations.append(
                ScopeViolation(
                    type="missing_file",
                    file_path=ref.path,
                    reason=f"Expected file {ref.path} to be {ref.action}d but it was not changed",
                )
            )

    if not violations:
        return ValidationCheck(SCOPE_COMPLIANCE, "pass", "All changes within scope"), violations

    result: CheckResult = "warning" if policy.allow_out_of_scope_changes else "fail"
    return (
        ValidationCheck(SCOPE_COMPLIANCE, result, f"{len(violations)} scope violation(s) found"),
        violations,
    )


def check_coverage(test_results: list[TestResult], policy: HandbackPolicy) -> ValidationCheck:
    values = [r.coverage_percent for r in test_results if r.coverage_percent is not None]
    if not values:
        return ValidationCheck(TEST_COVERAGE, "skip", "No coverage data available")

    avg = sum(values) / len(values)
    if avg >= policy.min_test_coverage:
        return ValidationCheck(
            TEST_COVERAGE, "pass", f"Coverage {avg:.1f}% meets minimum {policy.min_test_coverage:g}%"
        )
    return ValidationCheck(
        TEST_COVERAGE, "fail", f"Coverage {avg:.1f}% below minimum {policy.min_test_coverage:g}%"
    )


def check_time_budget(outcome: OutcomeReport, policy: HandbackPolicy) -> ValidationCheck:
    estimate = outcome.original_estimate_minutes
    spent = outcome.time_spent_minutes
    if estimate <= 0:
        return ValidationCheck(TIME_BUDGET, "skip", "No time estimate provided")

    overrun = (spent - estimate) / estimate * 100
    if overrun <= 0:
        return ValidationCheck(
            TIME_BUDGET, "pass", f"Completed in {spent:g}/{estimate:g} min (under budget)"
        )
    if overrun <= policy.max_time_overrun_percent:
        return ValidationCheck(
            TIME_BUDGET, "warning", f"Overrun {overrun:.0f}% ({spent:g}/{estimate:g} min)"
        )
    return ValidationCheck(
        TIME_BUDGET,
        "fail",
        f"Overrun {overrun:.0f}% exceeds max {policy.max_time_overrun_percent:g}% "
        f"({spent:g}/{estimate:g} min)",
    )


def check_confidence(outcome: OutcomeReport, policy: HandbackPolicy) -> ValidationCheck:
    # Low confidence alone never rejects work; it only asks for a look.
    required = CONFIDENCE_RANK[policy.min_auto_accept_confidence]
    actual = CONFIDENCE_RANK[outcome.confidence]
    if actual >= required:
        return ValidationCheck(CONFIDENCE_LEVEL, "pass", f"Agent confidence: {outcome.confidence}")
    return ValidationCheck(
        CONFIDENCE_LEVEL,
        "warning",
        f"Agent confidence {outcome.confidence} is below minimum {policy.min_auto_accept_confidence}",
    )


def _run_check(name: str, fn: Callable[[], ValidationCheck]) -> ValidationCheck:
    try:
        return fn()
    except Exception as e:
        logger.warning("handback check %r raised, recording as skipped: %s", name, e)
        return ValidationCheck(name, "skip", f"Check could not run: {e}")


def validate_handback(
    work_order: WorkOrder,
    outcome: OutcomeReport,
    policy: Optional[HandbackPolicy] = None,
) -> ValidationResult:
    """Run the six handback checks and decide whether the work is accepted.

    Rejection is data, never an exception: a check that blows up is recorded
    as ``skip`` and the remaining checks still run.
    """

    cfg = policy or DEFAULT_HANDBACK_POLICY

    violations: list[ScopeViolation] = []

    def scope() -> ValidationCheck:
        check, found = check_scope(work_order, outcome, cfg)
        violations.extend(found)
        return check

    tests_check = _run_check(TESTS_PASS, lambda: check_tests_pass(outcome.test_results))
    criteria_check = _run_check(
        ACCEPTANCE_CRITERIA, lambda: check_acceptance_criteria(work_order, outcome)
    )
    checks = [
        tests_check,
        criteria_check,
        _run_check(SCOPE_COMPLIANCE, scope),
        _run_check(TEST_COVERAGE, lambda: check_coverage(outcome.test_results, cfg)),
        _run_check(TIME_BUDGET, lambda: check_time_budget(outcome, cfg)),
        _run_check(CONFIDENCE_LEVEL, lambda: check_confidence(outcome, cfg)),
    ]

    failed = [c for c in checks if c.result == "fail"]
    must_pass_tests = cfg.require_all_tests_pass and tests_check.result == "fail"
    must_pass_criteria = cfg.require_all_criteria_met and criteria_check.result == "fail"
    accepted = not failed and not must_pass_tests and not must_pass_criteria

    criteria_total = len(work_order.acceptance_criteria)
    try:
        criteria_matched = count_matched_criteria(work_order, outcome) if criteria_total else 0
    except Exception as e:
        logger.warning("could not count matched criteria for %s: %s", outcome.id, e)
        criteria_matched = 0

    result = ValidationResult(
        accepted=accepted,
        checks=checks,
        scope_violations=violations,
        criteria_matched=criteria_matched,
        criteria_total=criteria_total,
        summary=summarize_validation(accepted, checks, violations),
        suggested_status=determine_suggested_status(accepted, outcome, failed),
    )
    logger.info("handback %s for task %s: %s", outcome.id, outcome.task_id, result.summary)
    return result


def determine_suggested_status(
    accepted: bool, outcome: OutcomeReport, failed_checks: list[ValidationCheck]
) -> SuggestedStatus:
    if accepted:
        return "done"
    if outcome.status == "blocked":
        return "blocked"
    if any(c.name == TESTS_PASS for c in failed_checks):
        return "in_progress"  # back to the executor for fixes
    return "verification"  # ambiguous; a human decides


def summarize_validation(
    accepted: bool, checks: list[ValidationCheck], violations: list[ScopeViolation]
) -> str:
    def count(result: str) -> int:
        return sum(1 for c in checks if c.result == result)

    parts = [
        "ACCEPTED" if accepted else "REJECTED",
        f"{count('pass')} passed, {count('fail')} failed, "
        f"{count('warning')} warnings, {count('skip')} skipped",
    ]
    if violations:
        parts.append(f"{len(violations)} scope violation(s)")
    return "; ".join(parts)
