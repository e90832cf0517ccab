"""Canonicalization engine for the category store.

Every change to ``Store.categories`` goes through this module so that the
store keeps its invariants: slugs are unique, no category is empty, each record
sits in exactly one category, and ``Store.index`` agrees with the entries.

Deleting a category without reassigning its records DROPS those records:
they leave the categories and the index and are listed in ``Store.orphans``.
Nothing re-homes them automatically. Callers that want to keep a record must
send an explicit reassignment for it in the same fix.
"""

from __future__ import annotations

import logging
import math
import re
import unicodedata
from collections.abc import Callable, Iterable

from taxonomist.pipeline.models import (
    Category,
    CategoryDraft,
    CategoryEntry,
    Feature,
    Fix,
    IndexEntry,
    Policies,
    Quality,
    Store,
    StreamlinedPlan,
)

logger = logging.getLogger("taxonomist.canonical")

Slugger = Callable[[str], str]

FALLBACK_SLUG = "uncategorized"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Deterministic kebab-case slug: ascii-folded, lowercase, alphanumerics only."""
    folded = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    folded = folded.replace("&", " and ").lower()
    return _NON_ALNUM.sub("-", folded).strip("-")


class SlugNormalizer:
    """Memoizing wrapper around :func:`slugify`, owned by a run context."""

    def __init__(self) -> None:
        self._cache: dict[str, str] = {}

    def __call__(self, text: str) -> str:
        cached = self._cache.get(text)
        if cached is None:
            cached = slugify(text)
            self._cache[text] = cached
        return cached

    def __len__(self) -> int:
        return len(self._cache)

    def invalidate(self) -> None:
        self._cache.clear()


def draft_slug(draft: CategoryDraft, slug: Slugger = slugify) -> str:
    """Canonical slug of a draft: its own slug when given, else derived from the title."""
    return slug(draft.slug or draft.title or "")


def title_from_slug(slug: str) -> str:
    return " ".join(word.capitalize() for word in slug.split("-") if word)


def entry_sort_key(entry: CategoryEntry) -> tuple[float, str]:
    """Most recently updated first, then by id."""
    days = entry.quality.last_commit_days if entry.quality else None
    return (math.inf if days is None else days, entry.id)


def category_sort_key(category: Category) -> tuple[str, str]:
    return (category.title.casefold(), category.title)


def sort_store(store: Store) -> None:
    """Apply the documented ordering to entries and categories."""
    for category in store.categories:
        category.entries.sort(key=entry_sort_key)
    store.categories.sort(key=category_sort_key)


def quality_for(feature: Feature | None) -> Quality | None:
    if feature is None:
        return None
    return Quality(last_commit_days=feature.days_since_update(), archived=feature.archived)


def resolve_aliases(aliases: dict[str, str], slug: Slugger = slugify) -> dict[str, str]:
    """Normalize an alias map and collapse chains (a -> b -> c becomes a -> c).

    Cycles are cut at the first repeated slug.
    """
    direct: dict[str, str] = {}
    for alias, target in aliases.items():
        a, t = slug(alias), slug(target)
        if a and t and a != t:
            direct[a] = t

    resolved: dict[str, str] = {}
    for alias in direct:
        seen = {alias}
        current = direct[alias]
        while current in direct and direct[current] not in seen:
            seen.add(current)
            current = direct[current]
        resolved[alias] = current
    return resolved


def apply_fix(store: Store, fix: Fix, slug: Slugger = slugify) -> Store:
    """Apply a Fix (aliases, canonical categories, reassignments, deletions) in place.

    Re-applying the same fix is a no-op, and a fix that only restates the
    current categories leaves the store unchanged. Returns the store for
    chaining.
    """
    alias_to = resolve_aliases(fix.aliases, slug)

    canon: dict[str, Category] = {}
    for draft in fix.categories:
        key = draft_slug(draft, slug)
        if not key:
            continue
        canon[key] = Category(
            slug=key,
            title=draft.title or title_from_slug(key),
            description=draft.description,
            criteria=draft.criteria,
        )

    reassign: dict[str, str] = {}
    for item in fix.reassign:
        if item.id.strip() and item.to_category.strip():
            reassign[item.id] = slug(item.to_category)

    kill = {slug(s) for s in fix.delete if s.strip()}
    existing = {c.slug: c for c in store.categories}

    def home(key: str, like: Category | None) -> Category:
        category = canon.get(key)
        if category is None:
            like = existing.get(key, like)
            if like is None:
                # Reassignment to a category nobody defined: keep the record anyway
                category = Category(slug=key, title=key)
            else:
                category = Category(
                    slug=key, title=like.title, description=like.description, criteria=like.criteria
                )
            canon[key] = category
        return category

    dropped: list[str] = []
    for source in store.categories:
        orig = source.slug
        target = reassign.get(orig) or alias_to.get(orig) or orig
        # Only the original slug decides; a folded category keeps its records
        deleted = orig in kill

        for entry in source.entries:
            forced = reassign.get(entry.id)
            if forced is not None:
                dest = home(forced, None)
            elif deleted:
                dropped.append(entry.id)
                continue
            else:
                dest = home(target, source)
            dest.entries.append(entry)
            store.index[entry.id] = IndexEntry(category=dest.slug)

    for record_id in dropped:
        store.index.pop(record_id, None)
        if record_id not in store.orphans:
            store.orphans.append(record_id)
    if dropped:
        logger.warning(
            f"Deleted categories took {len(dropped)} record(s) with them: {', '.join(dropped)}"
        )

    store.aliases.update(alias_to)
    store.categories = [c for c in canon.values() if c.entries]
    sort_store(store)
    return store


def backfill_from_index(store: Store, features: Iterable[Feature]) -> Store:
    """Rebuild every category's entries from ``store.index``.

    The index is the source of truth: categories missing for an indexed slug
    are created (title-cased from the slug), entries are re-derived with fresh
    quality data, and categories left empty are dropped. Reasons, tags and
    confidence of existing entries are carried over.
    """
    by_id = {f.id: f for f in features}
    by_slug: dict[str, Category] = {c.slug: c for c in store.categories}
    previous: dict[str, CategoryEntry] = {}
    for category in store.categories:
        for entry in category.entries:
            previous.setdefault(entry.id, entry)

    for ref in store.index.values():
        if ref.category not in by_slug:
            by_slug[ref.category] = Category(
                slug=ref.category, title=title_from_slug(ref.category) or ref.category
            )

    for category in by_slug.values():
        category.entries = []

    for record_id, ref in store.index.items():
        old = previous.get(record_id)
        by_slug[ref.category].entries.append(
            CategoryEntry(
                id=record_id,
                reason=old.reason if old else "",
                tags=list(old.tags) if old else [],
                confidence=old.confidence if old and old.confidence is not None else 0.75,
                quality=quality_for(by_id.get(record_id)),
            )
        )

    store.categories = [c for c in by_slug.values() if c.entries]
    sort_store(store)
    return store


def build_store(
    features: Iterable[Feature],
    plan: StreamlinedPlan,
    policies: Policies | None = None,
    slug: Slugger = slugify,
) -> Store:
    """Create the first canonical store from a fully assigned Streamline plan."""
    store = Store(policies=policies or Policies())
    by_id = {f.id: f for f in features}

    taken: set[str] = set()

    def unique(base: str) -> str:
        candidate, n = base, 2
        while candidate in taken:
            candidate = f"{base}-{n}"
            n += 1
        taken.add(candidate)
        return candidate

    by_slug: dict[str, Category] = {}
    for draft in plan.categories:
        base = draft_slug(draft, slug)
        if not base:
            continue
        key = unique(base)
        category = Category(
            slug=key, title=draft.title, description=draft.description, criteria=draft.criteria
        )
        store.categories.append(category)
        # Assignments name the base slug; the first category claiming it wins
        by_slug.setdefault(base, category)

    for item in plan.records:
        if item.id in store.index:
            continue
        primary = item.primary_category or FALLBACK_SLUG
        key = slug(primary) or FALLBACK_SLUG
        category = by_slug.get(key)
        if category is None:
            category = Category(slug=unique(key), title=primary)
            by_slug[key] = category
            store.categories.append(category)
        category.entries.append(
            CategoryEntry(
                id=item.id,
                reason=item.reason,
                tags=list(item.tags),
                confidence=min(max(item.confidence, 0.0), 1.0),
                quality=quality_for(by_id.get(item.id)),
            )
        )
        store.index[item.id] = IndexEntry(category=category.slug)

    store.aliases = {slug(k): slug(v) for k, v in plan.aliases.items() if slug(k) and slug(v)}
    store.categories = [c for c in store.categories if c.entries]
    sort_store(store)
    return store


def filter_categories(store: Store, min_size: int = 1) -> list[Category]:
    """Categories with at least ``min_size`` entries, for renderers."""
    return [c for c in store.categories if len(c.entries) >= min_size]
