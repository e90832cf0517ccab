"""End-to-end tests for the pass pipeline with a scripted provider."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from taxonomist.config import ProjectConfig
from taxonomist.context import RunContext
from taxonomist.exceptions import ContextOverflowError, PassError
from taxonomist.glossary import glossary_path
from taxonomist.llm.limits import ModelLimits, ModelLimitsLookup
from taxonomist.pipeline.models import Feature, Record
from taxonomist.pipeline.orchestrator import PASSES, Pipeline

from conftest import FakeProvider, pipeline_script


def _ids(call) -> list[str]:
    return [r["id"] for r in call.payload["records"]]


class TestPipelineRun:
    @pytest.mark.asyncio
    async def test_full_run(self, fake_provider: FakeProvider, run_context: RunContext, records: list[Record]):
        result = await Pipeline(fake_provider, context=run_context).run(records)
        store = result.store

        assert set(store.index) == {"r1", "r2", "r3", "r4", "r5"}
        assert [c.slug for c in store.categories] == ["data-tools", "web-frameworks"]
        assert store.index["r4"].category == "data-tools"
        # Streamline forgot r5; it lands in the most used category
        assert result.filled == ["r5"]
        assert store.index["r5"].category == "web-frameworks"
        assert store.orphans == []

        web = store.category("web-frameworks")
        assert web.title == "Web Frameworks"
        assert web.description == "HTTP servers"
        assert {e.id for e in web.entries} == {"r1", "r2", "r3", "r5"}
        archived = next(e for e in web.entries if e.id == "r5")
        assert archived.quality.archived is True

        assert [p.action for p in store.provenance] == ["streamline", "consolidate", "qa"]
        assert store.aliases == {"web": "web-frameworks", "web-apps": "web-frameworks"}

    @pytest.mark.asyncio
    async def test_passes_run_in_order(self, fake_provider: FakeProvider, run_context: RunContext, records):
        await Pipeline(fake_provider, context=run_context).run(records)
        order = list(dict.fromkeys(c.pass_name for c in fake_provider.calls))
        assert order == list(PASSES)

    @pytest.mark.asyncio
    async def test_features_enriched(self, fake_provider: FakeProvider, run_context: RunContext, records):
        result = await Pipeline(fake_provider, context=run_context).run(records)
        by_id = {f.id: f for f in result.features}

        assert by_id["r1"].facts.is_framework is True
        assert by_id["r4"].purpose == "purpose of r4"
        assert by_id["r2"].summary == "Summary of record r2 in a sentence."
        assert by_id["r2"].key_topics == ["web"]
        assert all(f.capabilities and f.keywords for f in result.features)

    @pytest.mark.asyncio
    async def test_later_passes_see_earlier_results(
        self, fake_provider: FakeProvider, run_context: RunContext, records
    ):
        await Pipeline(fake_provider, context=run_context).run(records)

        expand = fake_provider.calls_for("EXPAND")[0].payload
        assert expand["records"][0]["purpose"] == "purpose of r1"

        qa = fake_provider.calls_for("QA")[0].payload
        assert qa["index"]["r5"] == "web-frameworks"
        assert qa["record_meta"]["r1"]["summary"] == "Summary of record r1 in a sentence."

    @pytest.mark.asyncio
    async def test_empty_input(self, fake_provider: FakeProvider, run_context: RunContext):
        result = await Pipeline(fake_provider, context=run_context).run([])
        assert result.store.categories == []
        assert result.store.index == {}
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_progress_callback(self, fake_provider: FakeProvider, run_context: RunContext, records):
        seen: list[tuple[str, str]] = []
        await Pipeline(fake_provider, context=run_context, on_progress=lambda p, m: seen.append((p, m))).run(records)

        started = [p for p, m in seen if m == "started"]
        assert started == list(PASSES)
        assert ("FACTS", "5/5 records enriched") in seen

    @pytest.mark.asyncio
    async def test_unassigned_records_logged(
        self, fake_provider: FakeProvider, run_context: RunContext, records, caplog: pytest.LogCaptureFixture
    ):
        with caplog.at_level(logging.WARNING, logger="taxonomist.pipeline"):
            await Pipeline(fake_provider, context=run_context).run(records)
        assert "filled in: r5" in caplog.text


class TestPipelineFailures:
    @pytest.mark.asyncio
    async def test_qa_failure_names_pass(self, run_context: RunContext, records):
        script = pipeline_script()
        boom = RuntimeError("boom")
        script["QA"] = [boom]

        with pytest.raises(PassError) as exc_info:
            await Pipeline(FakeProvider(script), context=run_context).run(records)

        assert exc_info.value.pass_name == "QA"
        assert str(exc_info.value) == "[QA] boom"
        assert exc_info.value.__cause__ is boom

    @pytest.mark.asyncio
    async def test_facts_failure_aborts_before_expand(self, run_context: RunContext, records):
        script = pipeline_script()
        script["FACTS"] = [RuntimeError("service unavailable")]
        provider = FakeProvider(script)

        with pytest.raises(PassError) as exc_info:
            await Pipeline(provider, context=run_context).run(records)

        assert exc_info.value.pass_name == "FACTS"
        assert provider.calls_for("EXPAND") == []

    @pytest.mark.asyncio
    async def test_qa_without_output_fails(self, run_context: RunContext, records):
        script = pipeline_script()
        script["QA"] = ["not json at all"]
        with pytest.raises(PassError) as exc_info:
            await Pipeline(FakeProvider(script), context=run_context).run(records)
        assert exc_info.value.pass_name == "QA"

    @pytest.mark.asyncio
    async def test_overflow_bisects_batch(self, records):
        config = ProjectConfig()
        config.pipeline.max_retries = 0
        script = pipeline_script()
        script["FACTS"] = [ContextOverflowError("context_length_exceeded"), *script["FACTS"]]
        provider = FakeProvider(script)

        result = await Pipeline(provider, context=RunContext.offline(config)).run(records)

        assert [_ids(c) for c in provider.calls_for("FACTS")] == [
            ["r1", "r2", "r3", "r4"],
            ["r1", "r2"],
            ["r3", "r4"],
            ["r5"],
        ]
        assert len(result.store.index) == 5


class TestPipelineStoreEdits:
    @pytest.mark.asyncio
    async def test_consolidate_delete_drops_records(self, run_context: RunContext, records):
        script = pipeline_script()
        script["CONSOLIDATE"] = [{"delete": ["data-tools"]}]

        result = await Pipeline(FakeProvider(script), context=run_context).run(records)

        assert result.orphans == ["r4"]
        assert "r4" not in result.store.index
        assert result.store.category("data-tools") is None
        assert len(result.features) == 5

    @pytest.mark.asyncio
    async def test_qa_reassign_moves_record(self, run_context: RunContext, records):
        script = pipeline_script()
        script["QA"] = [{"reassign": [{"id": "r5", "to_category": "data-tools"}]}]

        result = await Pipeline(FakeProvider(script), context=run_context).run(records)

        assert result.store.index["r5"].category == "data-tools"
        assert {e.id for e in result.store.category("data-tools").entries} == {"r4", "r5"}

    @pytest.mark.asyncio
    async def test_incomplete_expand_snapshot_ignored(self, run_context: RunContext, records):
        script = pipeline_script()
        # Truncated mid-stream: no summaries section
        script["EXPAND"] = ['{"categories": [{"title": "Partial"}], "assignments": [']
        script["REFINE"] = [{"categories": []}]

        result = await Pipeline(FakeProvider(script), context=run_context).run(records)

        assert result.store.category("partial") is None
        assert set(result.store.index) == {"r1", "r2", "r3", "r4", "r5"}

    @pytest.mark.asyncio
    async def test_glossary_absorbs_qa_aliases(self, tmp_root: Path, records):
        context = RunContext(root=tmp_root, limits=ModelLimitsLookup(table={}))

        await Pipeline(FakeProvider(pipeline_script()), context=context).run(records)

        saved = json.loads(glossary_path(tmp_root).read_text())
        assert saved["discouraged_aliases"] == {"web-apps": "web-frameworks"}
        assert context.glossary.discouraged_aliases == {"web-apps": "web-frameworks"}


class TestModelSizing:
    @pytest.mark.asyncio
    async def test_bodies_sized_for_fallback_model(self):
        config = ProjectConfig()
        config.llm.model = "small"
        config.llm.fallback_models = ["big"]
        config.budget.max_body_tokens = 300_000
        table = {
            "small": ModelLimits(context=40_000, output=4_000),
            "big": ModelLimits(context=400_000, output=8_000),
        }
        context = RunContext.offline(config, table=table)
        provider = FakeProvider(pipeline_script())
        pipeline = Pipeline(provider, context=context)
        body = "word " * 200_000
        feature = Feature.from_record(Record(id="r1", name="huge", body_full=body))

        async for _ in pipeline.passes.facts([feature]):
            pass

        call = provider.calls_for("FACTS")[0]
        assert call.model == "big"
        # Sized for the primary window the body would have been cut to ~38k tokens
        assert call.payload["records"][0]["body"] == body

    @pytest.mark.asyncio
    async def test_primary_model_when_it_fits(self, records):
        config = ProjectConfig()
        config.llm.model = "small"
        config.llm.fallback_models = ["big"]
        table = {
            "small": ModelLimits(context=40_000, output=4_000),
            "big": ModelLimits(context=400_000, output=8_000),
        }
        provider = FakeProvider(pipeline_script())
        pipeline = Pipeline(provider, context=RunContext.offline(config, table=table))

        async for _ in pipeline.passes.facts([Feature.from_record(r) for r in records]):
            pass

        assert {c.model for c in provider.calls_for("FACTS")} == {"small"}
