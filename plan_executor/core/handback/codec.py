from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from plan_executor.core.errors import HandbackDecodeError
from plan_executor.core.handback.contracts import (
    CONFIDENCE_RANK,
    DiscoveredIssue,
    FileChange,
    FileReference,
    OutcomeReport,
    ScopeViolation,
    TestFailure,
    TestResult,
    ValidationCheck,
    ValidationResult,
    WorkOrder,
    derive_outcome_status,
)


# Handback records are persisted as YAML with field names mirroring the
# dataclasses. Decoding is strict: the first problem raises HandbackDecodeError
# with the offending path, never a half-filled record.

E_HANDBACK_DECODE = "E_HANDBACK_DECODE"

_FILE_ACTIONS = ("create", "modify", "delete")
_CHANGE_TYPES = ("created", "modified", "deleted")
_ISSUE_TYPES = ("blocker", "question", "discovery", "suggestion")
_OUTCOME_STATUSES = ("success", "partial", "failed", "blocked")
_CHECK_RESULTS = ("pass", "fail", "skip", "warning")
_VIOLATION_TYPES = ("out_of_scope_file", "unrelated_change", "missing_file")
_SUGGESTED_STATUSES = ("done", "blocked", "in_progress", "verification")


def dump_record(record: WorkOrder | OutcomeReport | ValidationResult) -> str:
    return yaml.safe_dump(asdict(record), sort_keys=False, allow_unicode=True)


def write_record(record: WorkOrder | OutcomeReport | ValidationResult, path: str) -> None:
    p = Path(path)
    if str(p.parent) not in (".", ""):
        p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(dump_record(record), encoding="utf-8")


def loads_work_order(text: str, *, file: str = "<work-order>") -> WorkOrder:
    r = _Reader(file)
    raw = r.document(text)
    return WorkOrder(
        id=r.string(raw, "id", "id"),
        task_id=r.string(raw, "task_id", "task_id"),
        summary=r.string(raw, "summary", "summary", default=""),
        acceptance_criteria=r.str_list(raw, "acceptance_criteria", "acceptance_criteria"),
        file_references=[
            FileReference(
                path=r.string(item, "path", f"{p}.path"),
                action=r.choice(item, "action", f"{p}.action", _FILE_ACTIONS),
                description=r.string(item, "description", f"{p}.description", default=""),
            )
            for p, item in r.mappings(raw, "file_references", "file_references")
        ],
    )


def loads_outcome(text: str, *, file: str = "<outcome>") -> OutcomeReport:
    r = _Reader(file)
    raw = r.document(text)

    file_changes = [
        FileChange(
            file_path=r.string(item, "file_path", f"{p}.file_path"),
            change_type=r.choice(item, "change_type", f"{p}.change_type", _CHANGE_TYPES),
            lines_added=r.integer(item, "lines_added", f"{p}.lines_added", default=0, low=0),
            lines_removed=r.integer(item, "lines_removed", f"{p}.lines_removed", default=0, low=0),
            content=r.optional_string(item, "content", f"{p}.content"),
            diff=r.optional_string(item, "diff", f"{p}.diff"),
        )
        for p, item in r.mappings(raw, "file_changes", "file_changes")
    ]

    test_results = [
        TestResult(
            suite_name=r.string(item, "suite_name", f"{p}.suite_name"),
            total_tests=r.integer(item, "total_tests", f"{p}.total_tests", low=0),
            passed=r.integer(item, "passed", f"{p}.passed", low=0),
            failed=r.integer(item, "failed", f"{p}.failed", low=0),
            skipped=r.integer(item, "skipped", f"{p}.skipped", default=0, low=0),
            failures=[
                TestFailure(
                    test_name=r.string(tf, "test_name", f"{fp}.test_name"),
                    message=r.string(tf, "message", f"{fp}.message"),
                    stack_trace=r.optional_string(tf, "stack_trace", f"{fp}.stack_trace"),
                )
                for fp, tf in r.mappings(item, "failures", f"{p}.failures")
            ],
            coverage_percent=r.optional_number(item, "coverage_percent", f"{p}.coverage_percent"),
            duration_ms=r.integer(item, "duration_ms", f"{p}.duration_ms", default=0, low=0),
        )
        for p, item in r.mappings(raw, "test_results", "test_results")
    ]

    issues = [
        DiscoveredIssue(
            type=r.choice(item, "type", f"{p}.type", _ISSUE_TYPES),
            title=r.string(item, "title", f"{p}.title"),
            description=r.string(item, "description", f"{p}.description", default=""),
            affected_files=r.str_list(item, "affected_files", f"{p}.affected_files"),
            severity=r.integer(item, "severity", f"{p}.severity", default=3, low=1, high=5),
        )
        for p, item in r.mappings(raw, "issues", "issues")
    ]

    confidence = r.choice(raw, "confidence", "confidence", tuple(CONFIDENCE_RANK))
    status = derive_outcome_status(file_changes, test_results, issues, confidence)
    if "status" in raw:
        stored = r.choice(raw, "status", "status", _OUTCOME_STATUSES)
        if stored != status:
            raise r.fail(
                f"status {stored!r} does not match the reported results ({status!r})", "status"
            )

    return OutcomeReport(
        id=r.string(raw, "id", "id"),
        work_order_id=r.string(raw, "work_order_id", "work_order_id"),
        task_id=r.string(raw, "task_id", "task_id"),
        agent_id=r.string(raw, "agent_id", "agent_id"),
        submitted_at=r.timestamp(raw, "submitted_at", "submitted_at"),
        file_changes=file_changes,
        test_results=test_results,
        issues=issues,
        time_spent_minutes=r.number(raw, "time_spent_minutes", "time_spent_minutes"),
        original_estimate_minutes=r.number(
            raw, "original_estimate_minutes", "original_estimate_minutes"
        ),
        confidence=confidence,
        status=status,
        summary=r.string(raw, "summary", "summary", default=""),
    )


def loads_validation_result(text: str, *, file: str = "<validation>") -> ValidationResult:
    r = _Reader(file)
    raw = r.document(text)
    return ValidationResult(
        accepted=r.boolean(raw, "accepted", "accepted"),
        checks=[
            ValidationCheck(
                name=r.string(item, "name", f"{p}.name"),
                result=r.choice(item, "result", f"{p}.result", _CHECK_RESULTS),
                details=r.string(item, "details", f"{p}.details", default=""),
            )
            for p, item in r.mappings(raw, "checks", "checks")
        ],
        scope_violations=[
            ScopeViolation(
                type=r.choice(item, "type", f"{p}.type", _VIOLATION_TYPES),
                file_path=r.string(item, "file_path", f"{p}.file_path"),
                reason=r.string(item, "reason", f"{p}.reason", default=""),
            )
            for p, item in r.mappings(raw, "scope_violations", "scope_violations")
        ],
        criteria_matched=r.integer(raw, "criteria_matched", "criteria_matched"),
        criteria_total=r.integer(raw, "criteria_total", "criteria_total"),
        summary=r.string(raw, "summary", "summary", default=""),
        suggested_status=r.choice(raw, "suggested_status", "suggested_status", _SUGGESTED_STATUSES),
    )


def load_work_order(path: str) -> WorkOrder:
    return loads_work_order(_read(path), file=path)


def load_outcome(path: str) -> OutcomeReport:
    return loads_outcome(_read(path), file=path)


def load_validation_result(path: str) -> ValidationResult:
    return loads_validation_result(_read(path), file=path)


def _read(path: str) -> str:
    p = Path(path)
    if not p.exists():
        raise HandbackDecodeError(
            code="E_FILE_NOT_FOUND", message=f"file not found: {path}", file=path, path=None
        )
    try:
        return p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise HandbackDecodeError(
            code=E_HANDBACK_DECODE, message=f"cannot read file: {e}", file=path, path=None
        ) from e


_MISSING = object()


class _Reader:
    def __init__(self, file: str) -> None:
        self.file = file

    def fail(self, message: str, path: Optional[str] = None) -> HandbackDecodeError:
        return HandbackDecodeError(code=E_HANDBACK_DECODE, message=message, file=self.file, path=path)

    def document(self, text: str) -> dict[str, Any]:
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise self.fail(f"invalid YAML: {e}") from e
        if not isinstance(raw, dict):
            got = "empty document" if raw is None else type(raw).__name__
            raise self.fail(f"top-level must be a mapping, got {got}")
        return raw

    def _get(self, raw: dict[str, Any], key: str, path: str, default: Any) -> Any:
        v = raw.get(key, _MISSING)
        if v is _MISSING:
            if default is _MISSING:
                raise self.fail("missing required field", path)
            return default
        return v

    def string(self, raw: dict[str, Any], key: str, path: str, default: Any = _MISSING) -> str:
        v = self._get(raw, key, path, default)
        if not isinstance(v, str):
            raise self.fail(f"expected string, got {type(v).__name__}", path)
        return v

    def optional_string(self, raw: dict[str, Any], key: str, path: str) -> Optional[str]:
        v = raw.get(key)
        if v is not None and not isinstance(v, str):
            raise self.fail(f"expected string or null, got {type(v).__name__}", path)
        return v

    def timestamp(self, raw: dict[str, Any], key: str, path: str) -> str:
        # YAML turns unquoted ISO timestamps into datetime objects.
        v = self._get(raw, key, path, _MISSING)
        if hasattr(v, "isoformat") and not isinstance(v, str):
            return v.isoformat()
        return self.string(raw, key, path)

    def choice(self, raw: dict[str, Any], key: str, path: str, allowed: Iterable[str]) -> Any:
        v = self.string(raw, key, path)
        allowed = tuple(allowed)
        if v not in allowed:
            raise self.fail(f"invalid value {v!r} (choose one of: {', '.join(allowed)})", path)
        return v

    def boolean(self, raw: dict[str, Any], key: str, path: str) -> bool:
        v = self._get(raw, key, path, _MISSING)
        if not isinstance(v, bool):
            raise self.fail(f"expected boolean, got {type(v).__name__}", path)
        return v

    def integer(
        self,
        raw: dict[str, Any],
        key: str,
        path: str,
        default: Any = _MISSING,
        *,
        low: Optional[int] = None,
        high: Optional[int] = None,
    ) -> int:
        v = self._get(raw, key, path, default)
        if isinstance(v, bool) or not isinstance(v, int):
            raise self.fail(f"expected integer, got {type(v).__name__}", path)
        if low is not None and v < low:
            raise self.fail(f"expected integer >= {low}, got {v}", path)
        if high is not None and v > high:
            raise self.fail(f"expected integer <= {high}, got {v}", path)
        return v

    def number(self, raw: dict[str, Any], key: str, path: str) -> float:
        v = self._get(raw, key, path, _MISSING)
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise self.fail(f"expected number, got {type(v).__name__}", path)
        return v

    def optional_number(self, raw: dict[str, Any], key: str, path: str) -> Optional[float]:
        if raw.get(key) is None:
            return None
        return self.number(raw, key, path)

    def str_list(self, raw: dict[str, Any], key: str, path: str) -> list[str]:
        v = self._get(raw, key, path, [])
        if not isinstance(v, list) or any(not isinstance(x, str) for x in v):
            raise self.fail("expected list[str]", path)
        return list(v)

    def mappings(self, raw: dict[str, Any], key: str, path: str) -> list[tuple[str, dict[str, Any]]]:
        v = self._get(raw, key, path, [])
        if not isinstance(v, list):
            raise self.fail(f"expected list, got {type(v).__name__}", path)
        out: list[tuple[str, dict[str, Any]]] = []
        for i, item in enumerate(v):
            if not isinstance(item, dict):
                raise self.fail(f"expected mapping, got {type(item).__name__}", f"{path}[{i}]")
            out.append((f"{path}[{i}]", item))
        return out
