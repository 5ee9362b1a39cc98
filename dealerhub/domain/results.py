from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Success:
    record: dict[str, Any]
    # Pre-mutation snapshot for audit purposes; None on create.
    previous: dict[str, Any] | None = None


@dataclass(frozen=True)
class NotFound:
    resource: str
    id: str


@dataclass(frozen=True)
class ValidationFailed:
    message: str
    fields: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Conflict:
    message: str
    field: str


MutationResult = Union[Success, NotFound, ValidationFailed, Conflict]


@dataclass(frozen=True)
class Page:
    items: list[dict[str, Any]]
    total: int
    limit: int
    offset: int

    def as_dict(self) -> dict[str, Any]:
        return {"items": self.items, "total": self.total, "limit": self.limit, "offset": self.offset}
