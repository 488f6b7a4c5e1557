from __future__ import annotations

from collections import Counter
from typing import Any, Iterable, Optional, cast

from plan_executor.core.errors import PlanValidationError
from plan_executor.core.model import (
    BlockLink,
    DeveloperStory,
    FeatureBlock,
    LinkType,
    PlanMetadata,
    PriorityLevel,
    ProjectOverview,
    ProjectPlan,
    SuccessCriterion,
    UserStory,
)


ALLOWED_PRIORITIES: set[str] = {"low", "medium", "high", "critical"}
ALLOWED_LINK_TYPES: set[str] = {"requires", "suggests", "blocks", "triggers"}

_MISSING = object()


def _is_list_of_str(v: Any) -> bool:
    return isinstance(v, list) and all(isinstance(x, str) for x in v)


class _Checker:
    """Collects field-level errors for one plan file."""

    def __init__(self, file: Optional[str]) -> None:
        self.file = file
        self.errors: list[PlanValidationError] = []

    def error(self, code: str, message: str, path: str) -> None:
        self.errors.append(
            PlanValidationError(code=code, message=message, file=self.file, path=path)
        )

    def required_str(self, raw: dict[str, Any], key: str, path: str) -> Optional[str]:
        v = raw.get(key)
        if not isinstance(v, str) or not v.strip():
            self.error(
                "E_REQUIRED_FIELD", f"{key} is required and must be a non-empty string", f"{path}.{key}"
            )
            return None
        return v

    def optional_str(self, raw: dict[str, Any], key: str, path: str, default: str = "") -> Any:
        v = raw.get(key)
        if v is None:
            return default
        if not isinstance(v, str):
            self.error("E_INVALID_TYPE", f"{key} must be a string", f"{path}.{key}")
            return _MISSING
        return v

    def str_list(self, raw: dict[str, Any], key: str, path: str) -> Any:
        v = raw.get(key)
        if v is None:
            return []
        if not _is_list_of_str(v):
            self.error("E_INVALID_TYPE", f"{key} must be an array of strings", f"{path}.{key}")
            return _MISSING
        return list(v)

    def priority(self, raw: dict[str, Any], path: str, default: Optional[str] = None) -> Any:
        v = raw.get("priority", default)
        if not isinstance(v, str) or v not in ALLOWED_PRIORITIES:
            self.error(
                "E_INVALID_ENUM", f"priority must be one of {sorted(ALLOWED_PRIORITIES)}", f"{path}.priority"
            )
            return _MISSING
        return v

    def number(self, raw: dict[str, Any], key: str, path: str) -> Any:
        v = raw.get(key)
        if v is None:
            return None
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            self.error("E_INVALID_TYPE", f"{key} must be a number", f"{path}.{key}")
            return _MISSING
        return v

    def entries(self, plan: dict[str, Any], key: str, required: bool = False) -> list[tuple[str, dict[str, Any]]]:
        raw = plan.get(key)
        if raw is None and not required:
            return []
        if not isinstance(raw, list):
            self.error(
                "E_REQUIRED_FIELD" if raw is None else "E_INVALID_TYPE",
                f"{key} {'is required and ' if required else ''}must be an array",
                key,
            )
            return []
        out: list[tuple[str, dict[str, Any]]] = []
        for i, item in enumerate(raw):
            item_path = f"{key}[{i}]"
            if not isinstance(item, dict):
                self.error("E_INVALID_TYPE", "entry must be an object", item_path)
                continue
            out.append((item_path, item))
        return out

    def unique(self, seen: set[str], entry_id: str, path: str) -> bool:
        if entry_id in seen:
            self.error("E_DUPLICATE_ID", f"duplicate id: {entry_id}", f"{path}.id")
            return False
        seen.add(entry_id)
        return True


def validate_plan(plan: dict[str, Any]) -> tuple[Optional[ProjectPlan], list[PlanValidationError]]:
    """Validate a raw project plan mapping.

    Returns (plan, errors). Plan is None when errors exist. Dangling link
    endpoints are *not* errors here; lint and the execution plan builder
    report them.
    """

    c = _Checker(cast(Optional[str], plan.get("__file__")))

    schema_version = plan.get("schema_version")
    if not isinstance(schema_version, str) or not schema_version.strip():
        c.error(
            "E_REQUIRED_FIELD",
            "schema_version is required and must be a non-empty string",
            "schema_version",
        )

    overview = _overview(c, plan.get("overview"))
    metadata = _metadata(c, plan.get("metadata"), overview)

    features: list[FeatureBlock] = []
    seen: set[str] = set()
    for path, raw in c.entries(plan, "features", required=True):
        fid = c.required_str(raw, "id", path)
        name = c.required_str(raw, "name", path)
        priority = c.priority(raw, path)
        description = c.optional_str(raw, "description", path)
        criteria = c.str_list(raw, "acceptance_criteria", path)
        order = raw.get("order", 0)
        if isinstance(order, bool) or not isinstance(order, int):
            c.error("E_INVALID_TYPE", "order must be an integer", f"{path}.order")
            continue
        if fid is None or name is None or _MISSING in (priority, description, criteria):
            continue
        if not c.unique(seen, fid, path):
            continue
        features.append(
            FeatureBlock(
                id=fid,
                name=name,
                priority=cast(PriorityLevel, priority),
                description=description,
                acceptance_criteria=criteria,
                order=order,
            )
        )

    links: list[BlockLink] = []
    seen = set()
    for i, (path, raw) in enumerate(c.entries(plan, "links")):
        lid = raw.get("id", f"link-{i}")
        source = c.required_str(raw, "source", path)
        target = c.required_str(raw, "target", path)
        ltype = raw.get("type", "requires")
        if not isinstance(ltype, str) or ltype not in ALLOWED_LINK_TYPES:
            c.error("E_INVALID_ENUM", f"type must be one of {sorted(ALLOWED_LINK_TYPES)}", f"{path}.type")
            continue
        if not isinstance(lid, str) or not lid.strip():
            c.error("E_INVALID_TYPE", "id must be a non-empty string", f"{path}.id")
            continue
        if source is None or target is None or not c.unique(seen, lid, path):
            continue
        links.append(BlockLink(id=lid, source=source, target=target, type=cast(LinkType, ltype)))

    user_stories: list[UserStory] = []
    seen = set()
    for path, raw in c.entries(plan, "user_stories"):
        sid = c.required_str(raw, "id", path)
        user_type = c.required_str(raw, "user_type", path)
        action = c.required_str(raw, "action", path)
        benefit = c.required_str(raw, "benefit", path)
        related = c.str_list(raw, "related_feature_ids", path)
        criteria = c.str_list(raw, "acceptance_criteria", path)
        priority = c.priority(raw, path, default="medium")
        if None in (sid, user_type, action, benefit) or _MISSING in (related, criteria, priority):
            continue
        if not c.unique(seen, cast(str, sid), path):
            continue
        user_stories.append(
            UserStory(
                id=cast(str, sid),
                user_type=cast(str, user_type),
                action=cast(str, action),
                benefit=cast(str, benefit),
                related_feature_ids=related,
                acceptance_criteria=criteria,
                priority=cast(PriorityLevel, priority),
            )
        )

    developer_stories: list[DeveloperStory] = []
    seen = set()
    for path, raw in c.entries(plan, "developer_stories"):
        sid = c.required_str(raw, "id", path)
        action = c.required_str(raw, "action", path)
        benefit = c.required_str(raw, "benefit", path)
        requirements = c.str_list(raw, "technical_requirements", path)
        related = c.str_list(raw, "related_feature_ids", path)
        hours = c.number(raw, "estimated_hours", path)
        if None in (sid, action, benefit) or _MISSING in (requirements, related, hours):
            continue
        if not c.unique(seen, cast(str, sid), path):
            continue
        developer_stories.append(
            DeveloperStory(
                id=cast(str, sid),
                action=cast(str, action),
                benefit=cast(str, benefit),
                technical_requirements=requirements,
                estimated_hours=hours,
                related_feature_ids=related,
            )
        )

    success_criteria: list[SuccessCriterion] = []
    seen = set()
    for path, raw in c.entries(plan, "success_criteria"):
        cid = c.required_str(raw, "id", path)
        description = c.required_str(raw, "description", path)
        related = c.str_list(raw, "related_feature_ids", path)
        priority = c.priority(raw, path, default="medium")
        testable = raw.get("testable", False)
        if not isinstance(testable, bool):
            c.error("E_INVALID_TYPE", "testable must be a boolean", f"{path}.testable")
            continue
        if None in (cid, description) or _MISSING in (related, priority):
            continue
        if not c.unique(seen, cast(str, cid), path):
            continue
        success_criteria.append(
            SuccessCriterion(
                id=cast(str, cid),
                description=cast(str, description),
                related_feature_ids=related,
                testable=testable,
                priority=cast(PriorityLevel, priority),
            )
        )

    if c.errors or overview is None or metadata is None:
        return None, _sorted(c.errors)

    return (
        ProjectPlan(
            schema_version=cast(str, schema_version),
            metadata=metadata,
            overview=overview,
            features=features,
            links=links,
            user_stories=user_stories,
            developer_stories=developer_stories,
            success_criteria=success_criteria,
        ),
        [],
    )


def _overview(c: _Checker, raw: Any) -> Optional[ProjectOverview]:
    if not isinstance(raw, dict):
        c.error("E_REQUIRED_FIELD", "overview is required and must be an object", "overview")
        return None
    name = c.required_str(raw, "name", "overview")
    description = c.optional_str(raw, "description", "overview")
    goals = c.str_list(raw, "goals", "overview")
    if name is None or _MISSING in (description, goals):
        return None
    return ProjectOverview(name=name, description=description, goals=goals)


def _metadata(c: _Checker, raw: Any, overview: Optional[ProjectOverview]) -> Optional[PlanMetadata]:
    # metadata is optional; the overview name stands in for it.
    if raw is None:
        name = overview.name if overview else "plan"
        return PlanMetadata(id=name, name=name)
    if not isinstance(raw, dict):
        c.error("E_INVALID_TYPE", "metadata must be an object", "metadata")
        return None
    mid = c.required_str(raw, "id", "metadata")
    name = c.optional_str(raw, "name", "metadata", default=overview.name if overview else "")
    author = c.optional_str(raw, "author", "metadata", default=None)
    version = raw.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        c.error("E_INVALID_TYPE", "version must be an integer", "metadata.version")
        return None
    if mid is None or _MISSING in (name, author):
        return None
    return PlanMetadata(id=mid, name=name, version=version, author=author)


def summarize_plan(plan: ProjectPlan) -> str:
    counts = Counter([f.priority for f in plan.features])
    ordered: list[str] = ["critical", "high", "medium", "low"]
    parts = [f"{p}={counts.get(p, 0)}" for p in ordered]
    requires = sum(1 for link in plan.links if link.type == "requires")
    return (
        f"OK: {len(plan.features)} features ("
        + ", ".join(parts)
        + f")\nLinks: {len(plan.links)} ({requires} requires)"
        + f"\nStories: {len(plan.user_stories)} user, {len(plan.developer_stories)} developer"
    )


def _sorted(errors: Iterable[PlanValidationError]) -> list[PlanValidationError]:
    return sorted(
        list(errors),
        key=lambda e: (
            e.file or "",
            e.path or "",
            e.code,
        ),
    )
