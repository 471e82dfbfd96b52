"""Domain models for human-friendly identifier resolution."""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional


class ResourceType(str, Enum):
    """Remote entity categories that accept human-friendly identifiers."""
    PERSON = "person"
    PROJECT = "project"
    COMPANY = "company"
    DEAL = "deal"
    SERVICE = "service"


@dataclass(frozen=True)
class ResolutionQuery:
    """A raw input to resolve, with optional disambiguation context."""
    value: str
    resource_type: ResourceType
    project_id: Optional[str] = None


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of a resolution that actually changed the value."""
    query: str
    id: str
    label: str
    resource_type: ResourceType
    exact: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["resource_type"] = self.resource_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolutionResult":
        return cls(
            query=data["query"],
            id=str(data["id"]),
            label=data.get("label", ""),
            resource_type=ResourceType(data["resource_type"]),
            exact=bool(data.get("exact", False)),
        )


@dataclass
class ResolvedFilters:
    """Result of batch filter resolution.

    ``resolved`` holds every input key with substitutions applied;
    ``metadata`` holds only the keys whose value changed.
    """
    resolved: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, ResolutionResult] = field(default_factory=dict)

    @property
    def did_resolve(self) -> bool:
        return bool(self.metadata)
