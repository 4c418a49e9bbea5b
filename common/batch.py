from typing import Any
from pydantic import BaseModel, Field


class EntityError(BaseModel):
    entity: str
    entity_id: str
    error: str


class BatchResult(BaseModel):
    """Outcome of one pass of a batch step over many entities."""
    processed: int = 0
    skipped: int = 0
    errors: list[EntityError] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    def record_error(self, entity: str, entity_id: Any, error: Exception) -> None:
        self.errors.append(EntityError(entity=entity, entity_id=str(entity_id), error=str(error)))

    def merge(self, other: "BatchResult") -> "BatchResult":
        self.processed += other.processed
        self.skipped += other.skipped
        self.errors.extend(other.errors)
        return self
