"""Data models for records, pass outputs and the category store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator


class LooseModel(BaseModel):
    """Model for LLM output: known fields are typed, anything else lands in ``extensions``.

    Inference responses routinely carry keys nobody asked for. Keeping them
    in an explicit bag (instead of as dynamic attributes) keeps merge logic
    total over the known fields.
    """

    _extensions: dict[str, Any] = PrivateAttr(default_factory=dict)

    @model_validator(mode="wrap")
    @classmethod
    def _collect_extensions(cls, data: Any, handler: Any) -> Any:
        extra: dict[str, Any] = {}
        if isinstance(data, dict):
            known = set(cls.model_fields)
            extra = {k: v for k, v in data.items() if k not in known}
            if extra:
                data = {k: v for k, v in data.items() if k in known}
        model = handler(data)
        if extra:
            model._extensions = extra
        return model

    @property
    def extensions(self) -> dict[str, Any]:
        """Keys the model returned that are not part of the schema."""
        return self._extensions


# ---------------------------------------------------------------------------
# Records and features
# ---------------------------------------------------------------------------


class Record(BaseModel):
    """An immutable input item: a free-text body plus small metadata."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    body_full: str = ""
    language: str | None = None
    topics: tuple[str, ...] = ()
    description: str = ""
    updated_at: str | None = None  # ISO-8601, used as the recency signal
    archived: bool = False


class Facts(BaseModel):
    """Short factual signals extracted from a record body."""

    is_framework: bool = False
    is_cli: bool = False
    is_library: bool = False
    is_demo: bool = False
    has_examples: bool = False
    has_benchmark: bool = False
    license: str | None = None


class Feature(BaseModel):
    """Pipeline-enriched projection of a Record, keyed by the record id."""

    id: str
    name: str = ""
    language: str | None = None
    topics: list[str] = Field(default_factory=list)
    description: str = ""
    updated_at: str | None = None
    archived: bool = False
    body_full: str = ""
    # Facts pass
    facts: Facts | None = None
    purpose: str = ""
    capabilities: list[str] = Field(default_factory=list)
    tech_stack: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    # Expand pass
    summary: str = ""
    key_topics: list[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: Record) -> Feature:
        return cls(
            id=record.id,
            name=record.name,
            language=record.language,
            topics=list(record.topics),
            description=record.description,
            updated_at=record.updated_at,
            archived=record.archived,
            body_full=record.body_full,
        )

    def days_since_update(self, now: datetime | None = None) -> int | None:
        """Whole days since ``updated_at``, or None when unknown/unparseable."""
        if not self.updated_at or not self.updated_at.strip():
            return None
        try:
            stamp = datetime.fromisoformat(self.updated_at.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        return (now - stamp).days


# ---------------------------------------------------------------------------
# Inference pass outputs
# ---------------------------------------------------------------------------


class FactsResult(LooseModel):
    id: str
    facts: Facts = Field(default_factory=Facts)
    purpose: str = ""
    capabilities: list[str] = Field(default_factory=list)
    tech_stack: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    disclaimers: list[str] = Field(default_factory=list)


class FactsBatch(LooseModel):
    results: list[FactsResult] = Field(default_factory=list)


class CategoryDraft(LooseModel):
    """Transient category proposal. Always canonicalized before it reaches the store."""

    slug: str | None = None
    title: str
    description: str = ""
    criteria: str = ""


class AssignmentDraft(LooseModel):
    id: str
    category: str
    reason: str = ""
    tags: list[str] = Field(default_factory=list)


class RecordSummary(LooseModel):
    id: str
    summary: str = ""
    key_topics: list[str] = Field(default_factory=list)


class ExpandPlan(LooseModel):
    """Expand/Refine output: category drafts, tentative assignments and summaries."""

    categories: list[CategoryDraft] = Field(default_factory=list)
    assignments: list[AssignmentDraft] = Field(default_factory=list)
    summaries: list[RecordSummary] = Field(default_factory=list)


class SummaryEntry(BaseModel):
    summary: str = ""
    key_topics: list[str] = Field(default_factory=list)


class MergedProposal(BaseModel):
    """Running proposal folded from every Expand (and Refine) output."""

    categories: list[CategoryDraft] = Field(default_factory=list)
    assignments: list[AssignmentDraft] = Field(default_factory=list)
    summaries: dict[str, SummaryEntry] = Field(default_factory=dict)


class StreamlinedRecord(LooseModel):
    id: str
    primary_category: str = ""
    reason: str = ""
    tags: list[str] = Field(default_factory=list)
    confidence: float = 0.75


class StreamlinedPlan(LooseModel):
    """Streamline output: one primary category per record plus an alias map."""

    categories: list[CategoryDraft] = Field(default_factory=list)
    aliases: dict[str, str] = Field(default_factory=dict)
    records: list[StreamlinedRecord] = Field(default_factory=list)


class Reassignment(LooseModel):
    id: str
    to_category: str


class Fix(LooseModel):
    """A batch of store edits applied atomically by ``apply_fix``."""

    categories: list[CategoryDraft] = Field(default_factory=list)
    aliases: dict[str, str] = Field(default_factory=dict)  # alias -> canonical slug/title
    reassign: list[Reassignment] = Field(default_factory=list)
    delete: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Canonical store
# ---------------------------------------------------------------------------


class Quality(BaseModel):
    last_commit_days: int | None = None
    archived: bool | None = None


class CategoryEntry(BaseModel):
    """One record's membership in a category."""

    id: str
    reason: str = ""
    tags: list[str] = Field(default_factory=list)
    confidence: float | None = None
    quality: Quality | None = None


class Category(BaseModel):
    slug: str
    title: str
    description: str = ""
    criteria: str = ""
    entries: list[CategoryEntry] = Field(default_factory=list)


class IndexEntry(BaseModel):
    category: str


class Policies(BaseModel):
    min_category_size: int = 1
    max_categories: int = 100


class ProvenanceEntry(BaseModel):
    ts: str
    action: str
    model: str | None = None


class Store(BaseModel):
    """Top-level aggregate: categories, the record index, aliases and policies."""

    version: int = 1
    generated_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    policies: Policies = Field(default_factory=Policies)
    categories: list[Category] = Field(default_factory=list)
    orphans: list[str] = Field(default_factory=list)
    aliases: dict[str, str] = Field(default_factory=dict)
    index: dict[str, IndexEntry] = Field(default_factory=dict)
    provenance: list[ProvenanceEntry] = Field(default_factory=list)

    def category(self, slug: str) -> Category | None:
        for c in self.categories:
            if c.slug == slug:
                return c
        return None

    def record_note(self, action: str, model: str | None = None) -> None:
        self.provenance.append(
            ProvenanceEntry(ts=datetime.now(timezone.utc).isoformat(), action=action, model=model)
        )
