"""Shared test fixtures for Taxonomist."""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

import pytest

from taxonomist.config import ProjectConfig
from taxonomist.context import RunContext
from taxonomist.llm.base import LLMProvider, Message
from taxonomist.pipeline.models import Record

_PASS_MARKER = re.compile(r"Taxonomist pass: (\w+)\.")


@dataclass
class Call:
    """One request seen by the fake provider."""

    pass_name: str
    messages: list[Message]
    model: str | None
    max_tokens: int

    @property
    def size(self) -> int:
        return sum(len(m.content) for m in self.messages)

    @property
    def payload(self) -> dict:
        return json.loads(self.messages[-1].content)


class FakeProvider(LLMProvider):
    """Scripted provider: replies (or raises) per pass, streaming in small chunks.

    ``script`` maps a pass name (FACTS, EXPAND, ...) or ``"*"`` to a list of
    outcomes. Each outcome is a JSON string, a dict (serialized) or an
    exception instance (raised before any chunk). Outcomes are consumed in
    order and the last one repeats.
    """

    def __init__(self, script: dict[str, list] | None = None, chunk_size: int = 16) -> None:
        super().__init__(model="fake-model")
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.chunk_size = chunk_size
        self.calls: list[Call] = []

    def _pass_name(self, messages: list[Message]) -> str:
        for m in messages:
            if m.role == "system":
                found = _PASS_MARKER.search(m.content)
                if found:
                    return found.group(1)
        return "*"

    def _next(self, pass_name: str):
        queue = self.script.get(pass_name) or self.script.get("*")
        if not queue:
            raise AssertionError(f"No scripted response for {pass_name}")
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def stream(
        self,
        messages: list[Message],
        temperature: float = 0.0,
        max_tokens: int = 4096,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        pass_name = self._pass_name(messages)
        self.calls.append(Call(pass_name, list(messages), model, max_tokens))
        outcome = self._next(pass_name)
        if isinstance(outcome, BaseException):
            raise outcome
        text = outcome if isinstance(outcome, str) else json.dumps(outcome)
        for i in range(0, len(text), self.chunk_size):
            yield text[i : i + self.chunk_size]

    def calls_for(self, pass_name: str) -> list[Call]:
        return [c for c in self.calls if c.pass_name == pass_name]


@pytest.fixture
def records() -> list[Record]:
    """Five small records, two natural groups."""
    return [
        Record(
            id="r1",
            name="fastroute",
            body_full="Fastroute is a tiny web framework for building HTTP APIs. " * 20,
            language="Python",
            topics=("web", "http"),
            description="Minimal HTTP routing framework",
            updated_at="2026-01-10T00:00:00Z",
        ),
        Record(
            id="r2",
            name="pageforge",
            body_full="Pageforge renders server-side HTML pages with templates.",
            language="Python",
            topics=("web", "templates"),
            description="Server-side page rendering",
            updated_at="2026-03-01T00:00:00Z",
        ),
        Record(
            id="r3",
            name="socketry",
            body_full="Websocket server with pub/sub channels.",
            language="Go",
            topics=("web", "websocket"),
            updated_at="2025-11-20T00:00:00Z",
        ),
        Record(
            id="r4",
            name="tabular",
            body_full="Tabular cleans CSV files and infers column types.",
            language="Python",
            topics=("data", "csv"),
            description="CSV cleaning toolkit",
        ),
        Record(
            id="r5",
            name="gridview",
            body_full="Gridview is a web dashboard for browsing tables.",
            language="TypeScript",
            topics=("web", "dashboard"),
            archived=True,
        ),
    ]


def pipeline_script() -> dict[str, list]:
    """A complete, well-behaved run where Streamline forgets record r5."""
    ids = ["r1", "r2", "r3", "r4", "r5"]
    return {
        "FACTS": [
            {
                "results": [
                    {
                        "id": i,
                        "facts": {"is_library": i != "r1", "is_framework": i == "r1"},
                        "purpose": f"purpose of {i}",
                        "capabilities": ["routing"] if i != "r4" else ["csv cleaning"],
                        "keywords": ["web"] if i != "r4" else ["data"],
                    }
                    for i in ids
                ]
            }
        ],
        "EXPAND": [
            {
                "categories": [
                    {"title": "Web Frameworks", "description": "HTTP servers", "criteria": "Includes servers"},
                    {"title": "Data Tools", "description": "Data wrangling", "criteria": "Includes CSV tools"},
                ],
                "assignments": [
                    {"id": i, "category": "data-tools" if i == "r4" else "web-frameworks"} for i in ids
                ],
                "summaries": [
                    {"id": i, "summary": f"Summary of record {i} in a sentence.", "key_topics": ["web"]}
                    for i in ids
                ],
            }
        ],
        "REFINE": [
            {
                "categories": [{"title": "Web Frameworks"}, {"title": "Data Tools"}],
                "assignments": [],
            }
        ],
        "STREAMLINE": [
            {
                "categories": [
                    {"title": "Web Frameworks", "description": "HTTP servers"},
                    {"title": "Data Tools", "description": "Data wrangling"},
                ],
                "aliases": {"web": "web-frameworks"},
                "records": [
                    {"id": "r1", "primary_category": "web-frameworks", "reason": "routing", "confidence": 0.9},
                    {"id": "r2", "primary_category": "web-frameworks", "reason": "templates"},
                    {"id": "r3", "primary_category": "web-frameworks", "reason": "websockets"},
                    {"id": "r4", "primary_category": "data-tools", "reason": "csv"},
                ],
            }
        ],
        "CONSOLIDATE": [{"categories": [], "aliases": {}, "reassign": [], "delete": []}],
        "QA": [{"aliases": {"web-apps": "web-frameworks"}, "notes": ["looks fine"]}],
    }


@pytest.fixture
def script() -> dict[str, list]:
    return pipeline_script()


@pytest.fixture
def fake_provider(script: dict[str, list]) -> FakeProvider:
    return FakeProvider(script)


@pytest.fixture
def run_context() -> RunContext:
    """Context whose model limits never touch the network."""
    return RunContext.offline(ProjectConfig())


@pytest.fixture
def tmp_root(tmp_path: Path) -> Path:
    (tmp_path / ".taxonomist").mkdir()
    return tmp_path
