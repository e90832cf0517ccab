"""System prompts and payload builders for the inference passes.

Every pass sends two messages: a system prompt with the instructions and a
user message holding a JSON payload. Record text always travels in a field
named ``body`` so the executor can blank it out as a last resort.
"""

from __future__ import annotations

import json
from typing import Any

from taxonomist.budget.tokens import head_tail_slice
from taxonomist.glossary import CategoryGlossary
from taxonomist.llm.base import Message
from taxonomist.pipeline.merge import slim
from taxonomist.pipeline.models import Feature, MergedProposal, Store

PAYLOAD_FIELD = "body"

CONVENTIONS = """Conventions:
- Titles in Title Case. Slugs in kebab-case, derived deterministically from the title.
- Descriptions at most 140 characters. Criteria start with "Includes ...".
- Reasons cite the evidence fields they rely on and stay under 140 characters.
- No marketing language and no step-by-step reasoning in the output.
- Use only the text provided. Never invent facts."""

FACTS_PROMPT = """Taxonomist pass: FACTS.
For each record, extract short factual signals that help categorize it.
Use only the metadata and body text given.

Fill the fields by asking yourself:
- What is the record's primary purpose, in one short phrase?
- Which concrete capabilities are stated explicitly? Avoid generic words.
- Which technologies are named (frameworks, runtimes, tools)?
- Which keywords best pin down the domain (at most 16)?
- Is it clearly a CLI, a library, a framework or a demo?
- Is a license or disclaimer mentioned?"""

EXPAND_PROMPT = f"""{CONVENTIONS}

Taxonomist pass: EXPAND.
For every record in the batch:
(A) write a factual summary of one or two sentences;
(B) list 3 to 10 lowercase key topics without duplicates;
(C) propose candidate categories with a title, a short description and inclusion criteria;
(D) assign the record to exactly one primary category, with a short reason.

Prefer domain and intent over implementation details when choosing a category.
Create narrow categories when records clearly differ; small categories are merged later.
When a broad category would swallow unrelated records, segment it by language,
software layer or major framework and say so in the criteria."""

REFINE_PROMPT = f"""{CONVENTIONS}

Taxonomist pass: REFINE.
You receive a proposed category list with preliminary assignments. Improve it:
1) Split oversized or mixed categories into specific subdomains using key topics, keywords and facts.
2) Rename vague categories to clear, domain-specific titles with precise criteria.
3) Keep the total number of categories at or below max_categories.

Split a category when it holds at least split_threshold records that span several
languages, layers or subdomains. Keep slugs stable. Criteria state both what is
included and what is excluded. Return the updated categories and assignments."""

STREAMLINE_PROMPT = f"""{CONVENTIONS}

Taxonomist pass: STREAMLINE.
Merge overlapping categories, map aliases onto a canonical set and assign
EXACTLY ONE primary category to every record. Every record id in the payload
must appear once in the output records.

Rules:
- Prefer purpose and domain over implementation technology.
- Reuse glossary slugs when they mean the same thing; avoid discouraged aliases.
- Create at most max_new_categories new categories.
- Give each assignment a short reason citing its evidence.

When signals conflict, trust them in this order: purpose, capabilities, facts,
keywords, topics, tech stack. When two categories fit equally, pick the larger
one, then the glossary one, then the broader domain."""

CONSOLIDATE_PROMPT = f"""{CONVENTIONS}

Taxonomist pass: CONSOLIDATE.
Bring the number of categories inside the target window while keeping useful
specificity:
1) Merge near-duplicates and micro-categories into their best-fit parent.
2) Keep widely recognized domains distinct.
3) Split by layer or language only when the window allows it.

Return the canonical categories, an alias map (old slug to new slug), explicit
reassignments (record id to category) and the slugs to delete. Records in a
deleted category that are not reassigned are removed from the result."""

QA_PROMPT = f"""{CONVENTIONS}

Taxonomist pass: QA.
You receive the canonical categories, the primary assignment index and record
metadata. Then:
1) Detect near-duplicate categories and propose alias merges.
2) Merge or drop categories smaller than min_category_size unless they are a
   widely recognized, distinctive term.
3) Flag obvious misfits and propose reassignments.
4) Tighten titles, descriptions and criteria.

Never create a category except to consolidate two or more existing ones. When
renaming, add an alias from the old slug to the new one. Records in a deleted
category that are not reassigned are removed from the result."""


def _payload(data: dict[str, Any]) -> str:
    return json.dumps(slim(data), ensure_ascii=False)


def _messages(system: str, payload: dict[str, Any]) -> list[Message]:
    return [
        Message(role="system", content=system),
        Message(role="user", content=_payload(payload)),
    ]


def _glossary_payload(glossary: CategoryGlossary) -> dict[str, Any]:
    return {
        "preferred": [e.model_dump() for e in glossary.preferred],
        "discouraged_aliases": dict(glossary.discouraged_aliases),
    }


def _facts(f: Feature) -> dict[str, Any] | None:
    return f.facts.model_dump() if f.facts is not None else None


def facts_messages(features: list[Feature], body_tokens: int) -> list[Message]:
    """Facts payload. Bodies are skipped for records that already carry signals."""
    records = []
    for f in features:
        has_signals = bool(f.purpose or f.capabilities)
        records.append(
            {
                "id": f.id,
                "name": f.name,
                "language": f.language,
                "topics": f.topics,
                PAYLOAD_FIELD: "" if has_signals else head_tail_slice(f.body_full, body_tokens),
            }
        )
    return _messages(
        FACTS_PROMPT,
        {
            "records": records,
            "return_schema": "{ results: [{ id, facts, purpose, capabilities, tech_stack, keywords, disclaimers }] }",
            "constraints": {"max_keywords": 16, "max_caps": 10},
        },
    )


def expand_messages(
    features: list[Feature], body_tokens: int, max_new_categories: int
) -> list[Message]:
    records = [
        {
            "id": f.id,
            "name": f.name,
            "language": f.language,
            "topics": f.topics,
            "facts": _facts(f),
            "purpose": f.purpose,
            "capabilities": f.capabilities,
            "tech_stack": f.tech_stack,
            "keywords": f.keywords,
            PAYLOAD_FIELD: head_tail_slice(f.body_full, body_tokens),
        }
        for f in features
    ]
    return _messages(
        EXPAND_PROMPT,
        {
            "records": records,
            "return_schema": "{ categories[], assignments[], summaries[] }",
            "policy": {
                "max_new_categories": max_new_categories,
                "title_max": 32,
                "description_max": 140,
                "summary_max_chars": 220,
            },
        },
    )


def _signals(f: Feature) -> dict[str, Any]:
    return {
        "id": f.id,
        "name": f.name,
        "language": f.language,
        "topics": f.topics,
        "key_topics": f.key_topics,
        "keywords": f.keywords,
        "facts": _facts(f),
        "capabilities": f.capabilities,
        "tech_stack": f.tech_stack,
    }


def refine_messages(
    features: list[Feature],
    merged: MergedProposal,
    max_categories: int,
    split_threshold: int,
) -> list[Message]:
    return _messages(
        REFINE_PROMPT,
        {
            "policies": {"max_categories": max_categories, "split_threshold": split_threshold},
            "records": [_signals(f) for f in features],
            "proposed": merged.model_dump(),
            "return_schema": "{ categories[], assignments[] }",
        },
    )


def streamline_messages(
    features: list[Feature],
    merged: MergedProposal,
    policies: dict[str, Any],
    glossary: CategoryGlossary,
) -> list[Message]:
    records = []
    for f in features:
        entry = merged.summaries.get(f.id)
        records.append(
            {
                **_signals(f),
                "summary": entry.summary if entry else f.summary,
                "key_topics": entry.key_topics if entry else f.key_topics,
            }
        )
    return _messages(
        STREAMLINE_PROMPT,
        {
            "policies": policies,
            "records": records,
            "proposed": merged.model_dump(),
            "glossary": _glossary_payload(glossary),
            "return_schema": "{ categories[], aliases{}, records: [{ id, primary_category, reason, tags, confidence }] }",
        },
    )


def consolidate_messages(
    store: Store, features: list[Feature], budget: dict[str, int]
) -> list[Message]:
    snapshot = [
        {
            "slug": c.slug,
            "title": c.title,
            "description": c.description,
            "criteria": c.criteria,
            "records": [e.id for e in c.entries],
        }
        for c in store.categories
    ]
    return _messages(
        CONSOLIDATE_PROMPT,
        {
            "budget": budget,
            "categories": snapshot,
            "records": [_signals(f) for f in features],
            "return_schema": "{ categories[], aliases{}, reassign: [{ id, to_category }], delete[] }",
        },
    )


def qa_messages(
    store: Store,
    features: list[Feature],
    min_category_size: int,
    glossary: CategoryGlossary,
) -> list[Message]:
    categories = [
        {
            "slug": c.slug,
            "title": c.title,
            "count": len(c.entries),
            "sample": [e.id for e in c.entries[:6]],
        }
        for c in store.categories
    ]
    meta = {
        f.id: {
            "summary": f.summary,
            "topics": f.key_topics or f.topics,
            "facts": _facts(f),
            "capabilities": f.capabilities,
            "tech_stack": f.tech_stack,
        }
        for f in features
    }
    return _messages(
        QA_PROMPT,
        {
            "policies": {"min_category_size": min_category_size},
            "categories": categories,
            "index": {k: v.category for k, v in store.index.items()},
            "record_meta": meta,
            "glossary": _glossary_payload(glossary),
            "return_schema": "{ categories[], aliases{}, reassign: [{ id, to_category }], delete[], notes[] }",
        },
    )
