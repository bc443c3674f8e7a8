"""Resource state container.

Holds the persisted identity of a project and the normalized attributes
written back after each read.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ResourceState:
    """State of a single managed project.

    ``id`` is the identity returned by Harbor at creation time (for
    example ``/projects/42``). An empty id means no remote project is
    tracked.
    """

    id: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return bool(self.id)

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def update(self, values: dict[str, Any]) -> None:
        self.attributes.update(values)

    def clear(self) -> None:
        """Forget the remote project."""
        self.id = ""
        self.attributes.clear()

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "attributes": copy.deepcopy(self.attributes)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceState:
        attributes = data.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise ValueError("state attributes must be a mapping")
        return cls(id=str(data.get("id") or ""), attributes=dict(attributes))
