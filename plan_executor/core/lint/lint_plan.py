from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from plan_executor.core.errors import PlanValidationError
from plan_executor.core.graph.cycles import find_cycles


logger = logging.getLogger(__name__)

# Plan lint rules:
# - L_DUPLICATE_ID: duplicate ids inside one collection
# - L_UNKNOWN_LINK_TARGET: link source/target is not a feature id
# - L_SELF_LINK: link whose source and target are the same feature
# - L_CYCLE_DETECTED: cycle over "requires" links
# - L_FEATURE_NO_CRITERIA: feature without acceptance criteria
# - L_UNKNOWN_FEATURE_REFERENCE: story/criterion points at an unknown feature

COLLECTIONS = ("features", "links", "user_stories", "developer_stories", "success_criteria")
REFERENCING = ("user_stories", "developer_stories", "success_criteria")


@dataclass
class _Index:
    file: Optional[str]
    entries: dict[str, list[tuple[int, dict[str, Any]]]] = field(default_factory=dict)
    feature_ids: set[str] = field(default_factory=set)
    feature_index: dict[str, int] = field(default_factory=dict)


def lint_plan(plan: dict[str, Any]) -> list[PlanValidationError]:
    """Lint a plan.

    Runs on the raw mapping, best effort, in addition to schema validation.
    A rule that raises is logged and skipped; the remaining rules still run.
    """

    idx = _index(plan)
    errors: list[PlanValidationError] = []

    rules: list[tuple[str, Callable[[_Index], list[PlanValidationError]]]] = [
        ("duplicate-id", _rule_duplicate_ids),
        ("unknown-link-target", _rule_unknown_link_targets),
        ("self-link", _rule_self_links),
        ("cycle", _rule_cycles),
        ("feature-no-criteria", _rule_feature_no_criteria),
        ("unknown-feature-reference", _rule_unknown_feature_references),
    ]
    for name, rule in rules:
        try:
            errors.extend(rule(idx))
        except Exception:
            logger.exception("lint rule %s failed; skipping", name)

    return _sorted(errors)


def _index(plan: dict[str, Any]) -> _Index:
    idx = _Index(file=_cast_optional_str(plan.get("__file__")))
    for key in COLLECTIONS:
        raw_list = plan.get(key)
        if not isinstance(raw_list, list):
            idx.entries[key] = []
            continue
        idx.entries[key] = [(i, raw) for i, raw in enumerate(raw_list) if isinstance(raw, dict)]

    for i, raw in idx.entries["features"]:
        fid = raw.get("id")
        if isinstance(fid, str):
            idx.feature_ids.add(fid)
            idx.feature_index.setdefault(fid, i)
    return idx


def _rule_duplicate_ids(idx: _Index) -> list[PlanValidationError]:
    errors: list[PlanValidationError] = []
    for key in COLLECTIONS:
        ids = [raw.get("id") for _, raw in idx.entries[key] if isinstance(raw.get("id"), str)]
        dupes = {k: v for k, v in Counter(ids).items() if v > 1}
        seen: set[str] = set()
        for i, raw in idx.entries[key]:
            eid = raw.get("id")
            if eid not in dupes:
                continue
            if eid not in seen:
                seen.add(eid)
                continue
            errors.append(
                PlanValidationError(
                    code="L_DUPLICATE_ID",
                    message=f"duplicate id in {key}: {eid} (count={dupes[eid]})",
                    file=idx.file,
                    path=f"{key}[{i}].id",
                )
            )
    return errors


def _rule_unknown_link_targets(idx: _Index) -> list[PlanValidationError]:
    errors: list[PlanValidationError] = []
    for i, raw in idx.entries["links"]:
        for end in ("source", "target"):
            ref = raw.get(end)
            if isinstance(ref, str) and ref not in idx.feature_ids:
                errors.append(
                    PlanValidationError(
                        code="L_UNKNOWN_LINK_TARGET",
                        message=f"link {end} references unknown feature: {ref}",
                        file=idx.file,
                        path=f"links[{i}].{end}",
                    )
                )
    return errors


def _rule_self_links(idx: _Index) -> list[PlanValidationError]:
    errors: list[PlanValidationError] = []
    for i, raw in idx.entries["links"]:
        source = raw.get("source")
        if isinstance(source, str) and source == raw.get("target"):
            errors.append(
                PlanValidationError(
                    code="L_SELF_LINK",
                    message=f"feature links to itself: {source}",
                    file=idx.file,
                    path=f"links[{i}]",
                )
            )
    return errors


def _rule_cycles(idx: _Index) -> list[PlanValidationError]:
    requires: dict[str, list[str]] = {fid: [] for fid in idx.feature_ids}
    for _, raw in idx.entries["links"]:
        source, target = raw.get("source"), raw.get("target")
        if raw.get("type") != "requires" or source not in requires or not isinstance(target, str):
            continue
        if target not in requires[source]:
            requires[source].append(target)

    errors: list[PlanValidationError] = []
    for cycle in find_cycles({k: requires[k] for k in sorted(requires)}):
        errors.append(
            PlanValidationError(
                code="L_CYCLE_DETECTED",
                message="requires cycle detected: " + " -> ".join(cycle),
                file=idx.file,
                path=f"features[{idx.feature_index.get(cycle[0], 0)}]",
            )
        )
    return errors


def _rule_feature_no_criteria(idx: _Index) -> list[PlanValidationError]:
    errors: list[PlanValidationError] = []
    for i, raw in idx.entries["features"]:
        criteria = raw.get("acceptance_criteria")
        if criteria is None or (isinstance(criteria, list) and len(criteria) == 0):
            errors.append(
                PlanValidationError(
                    code="L_FEATURE_NO_CRITERIA",
                    message="feature must have at least 1 acceptance criterion",
                    file=idx.file,
                    path=f"features[{i}].acceptance_criteria",
                )
            )
    return errors


def _rule_unknown_feature_references(idx: _Index) -> list[PlanValidationError]:
    errors: list[PlanValidationError] = []
    for key in REFERENCING:
        for i, raw in idx.entries[key]:
            refs = raw.get("related_feature_ids")
            if not isinstance(refs, list):
                continue
            for j, ref in enumerate(refs):
                if isinstance(ref, str) and ref not in idx.feature_ids:
                    errors.append(
                        PlanValidationError(
                            code="L_UNKNOWN_FEATURE_REFERENCE",
                            message=f"unknown feature id: {ref}",
                            file=idx.file,
                            path=f"{key}[{i}].related_feature_ids[{j}]",
                        )
                    )
    return errors


def _sorted(errors: list[PlanValidationError]) -> list[PlanValidationError]:
    return sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))


def _cast_optional_str(v: Any) -> Optional[str]:
    return v if isinstance(v, str) else None
