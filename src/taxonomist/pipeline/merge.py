"""Pure folding helpers between passes.

Nothing here calls the inference service: these functions merge pass outputs,
graft them onto features and repair incomplete assignments.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from typing import Any

from taxonomist.pipeline.canonical import FALLBACK_SLUG, Slugger, draft_slug, slugify
from taxonomist.pipeline.models import (
    AssignmentDraft,
    CategoryDraft,
    ExpandPlan,
    FactsBatch,
    Feature,
    MergedProposal,
    StreamlinedPlan,
    StreamlinedRecord,
    SummaryEntry,
)

DEFAULT_TOPIC_CAP = 12
SUMMARY_MAX_CHARS = 500
SENTENCE_MAX_CHARS = 220
MIN_SUMMARY_CHARS = 20


def slim(value: Any) -> Any:
    """Drop empty strings, empty lists and None from a JSON-like payload, recursively."""
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if item is None or item == "" or (isinstance(item, (list, tuple)) and not item):
                continue
            result[key] = slim(item)
        return result
    if isinstance(value, (list, tuple)):
        return [slim(item) for item in value if item is not None and item != ""]
    return value


def _union(existing: list[str], extra: Iterable[str], cap: int) -> list[str]:
    seen = list(dict.fromkeys(existing))
    for item in extra:
        if item not in seen:
            seen.append(item)
    return seen[:cap]


def merge_expand_plans(
    plans: Iterable[ExpandPlan | MergedProposal],
    slug: Slugger = slugify,
    topic_cap: int = DEFAULT_TOPIC_CAP,
) -> MergedProposal:
    """Fold Expand outputs (or an earlier merge plus a Refine output) into one proposal.

    Categories are deduplicated by normalized slug with the first title,
    description and criteria winning. Assignments are concatenated. Summaries
    are merged per id: the first non-empty summary wins and key topics are
    unioned, capped at ``topic_cap``.
    """
    categories: dict[str, CategoryDraft] = {}
    assignments: list[AssignmentDraft] = []
    summaries: dict[str, SummaryEntry] = {}

    for plan in plans:
        for draft in plan.categories:
            key = draft_slug(draft, slug)
            if key and key not in categories:
                categories[key] = CategoryDraft(
                    slug=key,
                    title=draft.title,
                    description=draft.description,
                    criteria=draft.criteria,
                )
        assignments.extend(plan.assignments)

        if isinstance(plan, MergedProposal):
            incoming = list(plan.summaries.items())
        else:
            incoming = [(s.id, SummaryEntry(summary=s.summary, key_topics=s.key_topics)) for s in plan.summaries]

        for record_id, entry in incoming:
            current = summaries.get(record_id)
            if current is None:
                summaries[record_id] = SummaryEntry(
                    summary=entry.summary[:SUMMARY_MAX_CHARS],
                    key_topics=_union([], entry.key_topics, topic_cap),
                )
                continue
            if not current.summary and entry.summary:
                current.summary = entry.summary[:SUMMARY_MAX_CHARS]
            current.key_topics = _union(current.key_topics, entry.key_topics, topic_cap)

    return MergedProposal(
        categories=list(categories.values()),
        assignments=assignments,
        summaries=summaries,
    )


def graft_facts(
    features: list[Feature], batch: FactsBatch, ids: Iterable[str] | None = None
) -> int:
    """Copy Facts-pass signals onto features. Empty values never overwrite filled ones.

    When ``ids`` is given, results for any other record are ignored.
    Returns the number of features updated.
    """
    by_id = {f.id: f for f in features}
    wanted = set(ids) if ids is not None else None
    updated = 0
    for result in batch.results:
        feature = by_id.get(result.id)
        if feature is None or (wanted is not None and result.id not in wanted):
            continue
        feature.facts = result.facts
        if result.purpose:
            feature.purpose = result.purpose
        if result.capabilities:
            feature.capabilities = list(result.capabilities)
        if result.tech_stack:
            feature.tech_stack = list(result.tech_stack)
        if result.keywords:
            feature.keywords = list(result.keywords)
        updated += 1
    return updated


def graft_summaries(features: list[Feature], summaries: dict[str, SummaryEntry]) -> int:
    """Copy merged summaries and key topics onto features."""
    by_id = {f.id: f for f in features}
    updated = 0
    for record_id, entry in summaries.items():
        feature = by_id.get(record_id)
        if feature is None:
            continue
        if entry.summary:
            feature.summary = entry.summary
        if entry.key_topics:
            feature.key_topics = list(entry.key_topics)
        updated += 1
    return updated


def complete_assignments(
    plan: StreamlinedPlan,
    features: list[Feature],
    merged: MergedProposal,
    slug: Slugger = slugify,
) -> tuple[StreamlinedPlan, list[str]]:
    """Guarantee exactly one primary category for every feature.

    Unknown ids, duplicates and blank categories are discarded. When the plan
    has no records at all, the merged Expand assignments stand in. Whatever is
    still missing goes to the most frequent assigned category, or to the first
    proposed category when nothing is assigned yet.

    Returns the repaired plan and the ids that were filled in.
    """
    known = {f.id for f in features}
    records = plan.records
    if not records:
        records = [
            StreamlinedRecord(
                id=a.id, primary_category=a.category, reason=a.reason, tags=a.tags, confidence=0.5
            )
            for a in merged.assignments
        ]

    kept: list[StreamlinedRecord] = []
    assigned: set[str] = set()
    for record in records:
        if record.id not in known or record.id in assigned:
            continue
        if not slug(record.primary_category):
            continue
        kept.append(record)
        assigned.add(record.id)

    missing = [f.id for f in features if f.id not in assigned]
    if missing:
        fallback = _fallback_category(kept, merged, plan, slug)
        for record_id in missing:
            kept.append(
                StreamlinedRecord(
                    id=record_id,
                    primary_category=fallback,
                    reason="Auto-filled to ensure full coverage",
                    confidence=0.5,
                )
            )

    return plan.model_copy(update={"records": kept}), missing


def _fallback_category(
    assigned: list[StreamlinedRecord],
    merged: MergedProposal,
    plan: StreamlinedPlan,
    slug: Slugger,
) -> str:
    counts = Counter(slug(r.primary_category) for r in assigned)
    if counts:
        # Counter keeps first-seen order, so ties go to the earliest category
        return counts.most_common(1)[0][0]
    for draft in [*merged.categories, *plan.categories]:
        key = draft_slug(draft, slug)
        if key:
            return key
    return FALLBACK_SLUG


def _normalized(values: Iterable[Any], limit: int, fallback: str) -> list[str]:
    result: list[str] = []
    for value in values:
        text = str(value or "").lower().strip()
        if text and text not in result:
            result.append(text)
        if len(result) >= limit:
            break
    return result or [fallback]


def _sentence(text: str) -> str:
    return " ".join((text or "").split())[:SENTENCE_MAX_CHARS]


def ensure_minimum_signals(features: list[Feature]) -> None:
    """Backfill empty capabilities, keywords, tech stack, purpose and summary."""
    for f in features:
        if not f.capabilities:
            f.capabilities = _normalized(f.keywords or f.topics, 8, "general")
        if not f.keywords:
            f.keywords = _normalized(f.topics or f.capabilities, 12, "misc")
        if not f.tech_stack:
            stack: list[str] = []
            if f.language:
                stack.append(f.language)
            if f.facts is not None:
                if f.facts.is_cli:
                    stack.append("CLI")
                if f.facts.is_library:
                    stack.append("library")
                if f.facts.is_framework:
                    stack.append("framework")
            f.tech_stack = stack
        if not f.purpose.strip():
            f.purpose = _sentence(f.description)
        if len(f.summary.strip()) < MIN_SUMMARY_CHARS:
            language = f"{f.language} " if f.language else ""
            snippet = ", ".join(f.capabilities[:3]) or ", ".join(f.topics[:3])
            base = f.description or f"{f.name} - {language}{snippet}"
            f.summary = _sentence(base or f"{f.name} record.")
