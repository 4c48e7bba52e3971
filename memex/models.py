"""Shared data models for memex."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from lancedb.pydantic import LanceModel


class MemoryRecord(LanceModel):
    """Persisted memory schema.

    IMPORTANT: Any changes to this schema change the store blob layout.
    The embedding length is checked against the store's configured dimension
    on insert and written as a fixed-size list (see vector_db.record_schema).
    """

    id: str | None = None  # assigned on insert when absent
    url: str
    title: str = ""
    content: str = ""
    summary: str = ""
    tags: list[str] = []  # insertion order kept, duplicates allowed
    embedding: list[float]
    created_at: int | None = None  # epoch ms, assigned on insert when absent

    def to_item(self, with_embedding: bool = False) -> MemoryItem:
        return MemoryItem(
            id=self.id or "",
            url=self.url,
            title=self.title,
            summary=self.summary,
            tags=list(self.tags),
            created_at=self.created_at or 0,
            embedding=list(self.embedding) if with_embedding else None,
        )


@dataclass(slots=True)
class MemoryItem:
    """Summary projection of a memory (no content)."""

    id: str
    url: str
    title: str
    summary: str
    tags: list[str] = field(default_factory=list)
    created_at: int = 0
    embedding: list[float] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.embedding is None:
            data.pop("embedding")
        return data


@dataclass(slots=True)
class RankedResult:
    """A memory ranked against a query."""

    id: str
    url: str
    title: str
    content: str
    summary: str
    tags: list[str]
    score: float
    created_at: int

    @classmethod
    def from_record(cls, record: MemoryRecord, score: float) -> RankedResult:
        return cls(
            id=record.id or "",
            url=record.url,
            title=record.title,
            content=record.content,
            summary=record.summary,
            tags=list(record.tags),
            score=float(score),
            created_at=record.created_at or 0,
        )

    def with_score(self, score: float) -> RankedResult:
        return RankedResult(
            id=self.id,
            url=self.url,
            title=self.title,
            content=self.content,
            summary=self.summary,
            tags=list(self.tags),
            score=score,
            created_at=self.created_at,
        )


@dataclass(slots=True)
class RememberResult:
    success: bool
    message: str
    id: str | None = None


@dataclass(slots=True)
class ImportResult:
    success: bool
    imported: int
    skipped: int
    message: str
