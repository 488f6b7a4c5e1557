from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional


PriorityLevel = Literal["low", "medium", "high", "critical"]
LinkType = Literal["requires", "suggests", "blocks", "triggers"]


@dataclass(frozen=True)
class PlanMetadata:
    id: str
    name: str
    version: int = 1
    author: Optional[str] = None


@dataclass(frozen=True)
class ProjectOverview:
    name: str
    description: str = ""
    goals: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FeatureBlock:
    id: str
    name: str
    priority: PriorityLevel
    description: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)
    order: int = 0


@dataclass(frozen=True)
class BlockLink:
    id: str
    source: str  # the feature that requires/suggests/...
    target: str
    type: LinkType


@dataclass(frozen=True)
class UserStory:
    id: str
    user_type: str
    action: str
    benefit: str
    related_feature_ids: list[str] = field(default_factory=list)
    acceptance_criteria: list[str] = field(default_factory=list)
    priority: PriorityLevel = "medium"


@dataclass(frozen=True)
class DeveloperStory:
    id: str
    action: str
    benefit: str
    technical_requirements: list[str] = field(default_factory=list)
    estimated_hours: Optional[float] = None
    related_feature_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SuccessCriterion:
    id: str
    description: str
    related_feature_ids: list[str] = field(default_factory=list)
    testable: bool = False
    priority: PriorityLevel = "medium"


@dataclass(frozen=True)
class ProjectPlan:
    """Read-only plan aggregate consumed by the execution plan builder."""

    schema_version: str
    metadata: PlanMetadata
    overview: ProjectOverview
    features: list[FeatureBlock]
    links: list[BlockLink] = field(default_factory=list)
    user_stories: list[UserStory] = field(default_factory=list)
    developer_stories: list[DeveloperStory] = field(default_factory=list)
    success_criteria: list[SuccessCriterion] = field(default_factory=list)

    def feature(self, feature_id: str) -> Optional[FeatureBlock]:
        for f in self.features:
            if f.id == feature_id:
                return f
        return None
