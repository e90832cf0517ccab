"""Category glossary: preferred category names and discouraged aliases.

The glossary persists across runs in ``.taxonomist/glossary.json``. It is shown
to the Streamline and QA passes so they reuse established slugs, and QA aliases
are absorbed back into it after each run.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from taxonomist.config import GLOSSARY_FILE, get_taxonomist_dir
from taxonomist.pipeline.models import Fix

logger = logging.getLogger("taxonomist.glossary")


class GlossaryEntry(BaseModel):
    slug: str
    title: str
    criteria: str = ""


class CategoryGlossary(BaseModel):
    version: int = 3
    preferred: list[GlossaryEntry] = Field(default_factory=list)
    discouraged_aliases: dict[str, str] = Field(default_factory=dict)


def default_glossary() -> CategoryGlossary:
    """Starter glossary used when a project has none yet."""
    return CategoryGlossary(
        preferred=[
            GlossaryEntry(
                slug="ai-agents",
                title="AI Agents",
                criteria="Autonomous or tool-using agents that plan, act and reflect over several steps",
            ),
            GlossaryEntry(
                slug="browser-automation",
                title="Browser Automation",
                criteria="Headless or vision-guided automation of web interfaces",
            ),
            GlossaryEntry(
                slug="authentication",
                title="Authentication",
                criteria="Login, authorization and user identity management",
            ),
            GlossaryEntry(
                slug="databases",
                title="Databases",
                criteria="Database engines, ORMs and data persistence",
            ),
            GlossaryEntry(
                slug="frameworks",
                title="Frameworks",
                criteria="Application frameworks and development platforms",
            ),
            GlossaryEntry(
                slug="libraries",
                title="Libraries",
                criteria="Utility libraries and reusable packages",
            ),
            GlossaryEntry(
                slug="cli-tools",
                title="CLI Tools",
                criteria="Command-line interfaces and terminal applications",
            ),
            GlossaryEntry(
                slug="web-development",
                title="Web Development",
                criteria="Frontend, backend and full-stack web tooling",
            ),
        ]
    )


def glossary_path(root: Path) -> Path:
    return get_taxonomist_dir(root) / GLOSSARY_FILE


def load_glossary(root: Path | None) -> CategoryGlossary:
    """Load the project glossary, or the default one when it is missing or unreadable."""
    if root is None:
        return default_glossary()
    path = glossary_path(root)
    if not path.exists():
        return default_glossary()
    try:
        return CategoryGlossary(**json.loads(path.read_text()))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Ignoring invalid glossary {path}: {e}")
        return default_glossary()


def save_glossary(root: Path, glossary: CategoryGlossary) -> None:
    path = glossary_path(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(glossary.model_dump(), indent=2))


def absorb_aliases(glossary: CategoryGlossary, fix: Fix) -> int:
    """Record the fix's aliases as discouraged names. Existing entries are kept.

    Returns the number of aliases added.
    """
    added = 0
    for alias, target in fix.aliases.items():
        if alias and alias not in glossary.discouraged_aliases:
            glossary.discouraged_aliases[alias] = target
            added += 1
    return added
