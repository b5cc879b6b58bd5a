"""
Core plugin types and dataclasses.

This module contains shared types used by resource handlers, data
sources and the controller.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class _Unknown:
    """Placeholder for a value that is only known after apply."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    def __deepcopy__(self, memo):
        return self


UNKNOWN = _Unknown()


def is_unknown(value: Any) -> bool:
    """True if ``value`` is, or contains, an unknown placeholder."""
    if value is UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(is_unknown(v) for v in value.values())
    if isinstance(value, list):
        return any(is_unknown(v) for v in value)
    return False


class ChangeAction(Enum):
    """What a plan will do to a resource."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NO_OP = "no-op"


@dataclass
class ResourceSpec:
    """A resource declared in a manifest."""

    type: str
    name: str
    config: Dict[str, Any]
    dependencies: List[str] = field(default_factory=list)

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"


@dataclass
class DataSourceSpec:
    """A data source lookup declared in a manifest."""

    type: str
    name: str
    config: Dict[str, Any]

    @property
    def address(self) -> str:
        return f"data.{self.type}.{self.name}"


@dataclass
class ResourceChange:
    """Planned change for a single resource."""

    address: str
    resource_type: str
    name: str
    action: ChangeAction
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    changes: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)


@dataclass
class Plan:
    """Result of comparing desired state with refreshed state."""

    changes: List[ResourceChange] = field(default_factory=list)
    data: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return any(c.action != ChangeAction.NO_OP for c in self.changes)

    def summary(self) -> Dict[str, int]:
        counts = {action.value: 0 for action in ChangeAction}
        for change in self.changes:
            counts[change.action.value] += 1
        return counts


@dataclass
class ApplyResult:
    """Outcome of applying a plan."""

    success: bool = False
    resources_created: int = 0
    resources_updated: int = 0
    resources_deleted: int = 0
    error_message: Optional[str] = None
    failed_address: Optional[str] = None
