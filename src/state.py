"""
State Store - Local record of the resources pzctl manages.

State is a single JSON document mapping resource addresses to the
remote ID and last known attributes of each resource.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from errors import StateError

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class ResourceState:
    """Recorded state of one managed resource."""

    type: str
    name: str
    id: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    dependencies: List[str] = field(default_factory=list)

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "id": self.id,
            "attributes": self.attributes,
            "dependencies": self.dependencies,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceState":
        return cls(
            type=data["type"],
            name=data["name"],
            id=data["id"],
            attributes=dict(data.get("attributes") or {}),
            dependencies=list(data.get("dependencies") or []),
        )


class StateStore:
    """
    JSON file backed state.

    Call load() before use. Every save() bumps the serial and replaces
    the file atomically.
    """

    def __init__(self, path: str):
        self.path = path
        self.serial = 0
        self.resources: Dict[str, ResourceState] = {}

    def load(self) -> None:
        """
        Read the state file. A missing file is an empty state.

        Raises:
            StateError: If the file is unreadable, malformed, or was written
                by a newer version.
        """
        if not os.path.exists(self.path):
            logger.debug(f"No state file at {self.path}, starting empty")
            self.serial = 0
            self.resources = {}
            return

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise StateError(f"Failed to read state file {self.path}: {e}") from e
        except json.JSONDecodeError as e:
            raise StateError(f"State file {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("resources"), dict):
            raise StateError(f"State file {self.path} is malformed")

        version = data.get("version")
        if not isinstance(version, int) or version > STATE_VERSION:
            raise StateError(
                f"State file {self.path} has unsupported version {version!r}"
            )

        try:
            self.resources = {
                address: ResourceState.from_dict(entry)
                for address, entry in data["resources"].items()
            }
        except (KeyError, TypeError, AttributeError) as e:
            raise StateError(f"State file {self.path} is malformed: {e}") from e

        self.serial = int(data.get("serial", 0))
        logger.debug(
            f"Loaded state serial {self.serial} with {len(self.resources)} resources"
        )

    def save(self) -> None:
        """Write the state file atomically and bump the serial."""
        self.serial += 1
        document = {
            "version": STATE_VERSION,
            "serial": self.serial,
            "resources": {
                address: resource.to_dict()
                for address, resource in sorted(self.resources.items())
            },
        }

        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=directory, prefix=".state-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2, sort_keys=True)
                    f.write("\n")
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StateError(f"Failed to write state file {self.path}: {e}") from e

        logger.debug(f"Saved state serial {self.serial} to {self.path}")

    def get(self, address: str) -> Optional[ResourceState]:
        return self.resources.get(address)

    def put(self, resource: ResourceState) -> None:
        self.resources[resource.address] = resource

    def remove(self, address: str) -> Optional[ResourceState]:
        return self.resources.pop(address, None)

    def addresses(self) -> List[str]:
        return sorted(self.resources.keys())
