"""
Base building blocks:
identity, creation timestamp, entity_type contract.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, ClassVar
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from cinerecon.domain.model.enums import EntityType


def new_id() -> UUID:
    return uuid4()


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(eq=False, kw_only=True)
class Entity:
    """Internal identity exists immediately in the domain."""

    id: UUID = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    # class-level discriminator; subclasses must override
    ENTITY_TYPE: ClassVar[EntityType]

    @property
    def entity_type(self) -> EntityType:
        return self.ENTITY_TYPE

    def age_key(self) -> tuple[datetime, str]:
        """Stable ordering key: creation time first, id as the final tie-break."""
        return (self.created_at, str(self.id))
