"""Artifact: immutable, content-identified build output."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any


@dataclass(frozen=True, slots=True)
class Artifact:
    """A promoted build output.

    The identity is derived from the build's source revision by the stage's
    ``artifact`` expression, so the same revision always yields the same
    identity. Once stored, the payload never changes.

    Attributes
    ----------
    identity : str
        Stable identity, e.g. ``app-3f2c1a9``
    producer : str
        Id of the build stage that produced it
    payload : Mapping[str, Any]
        Opaque payload handle (the build action's outputs)
    created_at : datetime
        Promotion time
    """

    identity: str
    producer: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "producer": self.producer,
            "payload": dict(self.payload),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Artifact:
        return cls(
            identity=data["identity"],
            producer=data["producer"],
            payload=data.get("payload", {}),
            created_at=datetime.fromisoformat(data["created_at"]),
        )
