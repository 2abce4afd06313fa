"""Tests for the two-tier repair pipeline."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from migration_repair.config.schema import PipelineConfig
from migration_repair.core.pipeline import RepairPipeline
from migration_repair.models.diagnostic import Diagnostic, ErrorCluster, Severity
from migration_repair.models.patch import Patch, PatchSource
from migration_repair.models.report import ClusterResolution
from migration_repair.utils.async_helpers import GeneratorError
from migration_repair.utils.metrics import MetricsRegistry

WIDGET_PATCH = Patch(
    diff="--- a/src/app/widget.ts\n+++ b/src/app/widget.ts\n@@ -2,1 +2,1 @@\n-const b = 2;\n+const b: number = 2;\n",
    description="Annotate b",
    file_path="src/app/widget.ts",
    source=PatchSource.GENERATED,
)


def unmatched(message: str = "Cannot find name 'b'.", line: int = 2) -> Diagnostic:
    return Diagnostic(file_path="src/app/widget.ts", line_number=line, message=message)


@pytest.fixture
def generator() -> MagicMock:
    """Create a mock fix generator returning no patches."""
    mock = MagicMock()
    mock.model_name = "test-model"
    mock.generate_fix_for_error = AsyncMock(return_value=[])
    return mock


@pytest.fixture
def pipeline(pipeline_config: PipelineConfig, generator: MagicMock, metrics: MetricsRegistry) -> RepairPipeline:
    return RepairPipeline(pipeline_config, generator, metrics=metrics)


class TestTierOne:
    """Test clusters resolved by built-in rules."""

    async def test_pattern_fixes_applied(
        self,
        pipeline: RepairPipeline,
        workspace: Path,
        generator: MagicMock,
        http_module_error: Diagnostic,
        rxjs_error: Diagnostic,
    ) -> None:
        """Test matched clusters are patched without calling the generator."""
        summary = await pipeline.run([http_module_error, rxjs_error])

        assert summary.tier1_resolved == 2
        assert summary.patches_applied == 2
        assert summary.errors_fixed == 2
        assert summary.remaining_issues == 0
        assert [o.rule_id for o in summary.outcomes] == ["http-module-deprecation", "rxjs-operators"]
        generator.generate_fix_for_error.assert_not_awaited()

        module = (workspace / "src/app/app.module.ts").read_text(encoding="utf-8")
        service = (workspace / "src/app/data.service.ts").read_text(encoding="utf-8")
        assert "import { HttpClientModule } from '@angular/common/http';" in module
        assert "import { map } from 'rxjs/operators';" in service

    async def test_instances_in_one_file_patched_bottom_up(
        self, pipeline: RepairPipeline, workspace: Path
    ) -> None:
        """Test several line-anchored patches in one file do not collide."""
        block = "@NgModule({\n  entryComponents: [\n    MyComponent\n  ],\n})\n"
        target = workspace / "src/app/feature.module.ts"
        target.write_text(block + block, encoding="utf-8")
        message = (
            "Object literal may only specify known properties, and "
            "'entryComponents' does not exist in type 'NgModule'."
        )
        diagnostics = [
            Diagnostic("src/app/feature.module.ts", 2, message),
            Diagnostic("src/app/feature.module.ts", 7, message),
        ]

        summary = await pipeline.run(diagnostics)

        assert summary.outcomes[0].resolution == ClusterResolution.PATTERN
        assert summary.errors_fixed == 2
        assert target.read_text(encoding="utf-8") == "@NgModule({\n})\n@NgModule({\n})\n"

    async def test_rule_patch_rejected_when_lines_differ(
        self, pipeline: RepairPipeline, workspace: Path, generator: MagicMock
    ) -> None:
        """Test a one-line entryComponents entry is not replaced by the block fix."""
        target = workspace / "src/app/root.module.ts"
        content = (
            "@NgModule({\n"
            "  declarations: [AppComponent],\n"
            "  imports: [BrowserModule],\n"
            "  entryComponents: [DialogComponent],\n"
            "  providers: [AuthService],\n"
            "  bootstrap: [AppComponent],\n"
            "})\n"
            "export class AppModule {}\n"
        )
        target.write_text(content, encoding="utf-8")
        diagnostic = Diagnostic(
            "src/app/root.module.ts",
            4,
            "Object literal may only specify known properties, and "
            "'entryComponents' does not exist in type 'NgModule'.",
        )

        summary = await pipeline.run([diagnostic])

        (outcome,) = summary.outcomes
        assert outcome.resolution == ClusterResolution.FAILED
        assert outcome.rule_id == "entry-components"
        assert summary.errors_fixed == 0
        assert summary.remaining_issues == 1
        assert target.read_text(encoding="utf-8") == content
        generator.generate_fix_for_error.assert_not_awaited()

    async def test_rule_patch_keeps_extra_imports(
        self, pipeline: RepairPipeline, workspace: Path, http_module_error: Diagnostic
    ) -> None:
        """Test an import line naming more than HttpModule is left alone."""
        target = workspace / "src/app/app.module.ts"
        content = "import { NgModule } from '@angular/core';\nimport { HttpModule, Http } from '@angular/http';\n"
        target.write_text(content, encoding="utf-8")

        summary = await pipeline.run([http_module_error])

        assert summary.outcomes[0].resolution == ClusterResolution.FAILED
        assert summary.patches_applied == 0
        assert target.read_text(encoding="utf-8") == content

    async def test_no_apply_proposes_only(
        self, workspace: Path, generator: MagicMock, metrics: MetricsRegistry, http_module_error: Diagnostic
    ) -> None:
        """Test auto_apply off leaves files untouched."""
        config = PipelineConfig(workspace_root=workspace, auto_apply=False)
        before = (workspace / "src/app/app.module.ts").read_text(encoding="utf-8")

        summary = await RepairPipeline(config, generator, metrics=metrics).run([http_module_error])

        (outcome,) = summary.outcomes
        assert outcome.resolution == ClusterResolution.PATTERN
        assert len(outcome.patches) == 1
        assert outcome.applied is False
        assert summary.remaining_issues == 1
        assert (workspace / "src/app/app.module.ts").read_text(encoding="utf-8") == before

    async def test_rule_with_no_patches_goes_to_generator(
        self, pipeline: RepairPipeline, generator: MagicMock
    ) -> None:
        """Test a matched cluster with zero patches is routed to tier 2."""
        diagnostic = Diagnostic("src/app/widget.ts", 1, "Module 'rxjs' has no exported member 'debounceTime'.")

        summary = await pipeline.run([diagnostic])

        generator.generate_fix_for_error.assert_awaited_once()
        assert summary.outcomes[0].resolution == ClusterResolution.UNRESOLVED


class TestTierTwo:
    """Test clusters sent to the generator."""

    async def test_empty_generator_result_is_unresolved(
        self, pipeline: RepairPipeline, http_module_error: Diagnostic
    ) -> None:
        """Test an unmatched cluster with no generated patches is unresolved and the run continues."""
        summary = await pipeline.run([unmatched(), http_module_error])

        resolutions = {o.cluster.representative.message: o.resolution for o in summary.outcomes}
        assert resolutions[unmatched().message] == ClusterResolution.UNRESOLVED
        assert resolutions[http_module_error.message] == ClusterResolution.PATTERN
        assert summary.remaining_issues == 1

    async def test_generated_patch_applied(
        self, pipeline: RepairPipeline, generator: MagicMock, workspace: Path
    ) -> None:
        """Test a generated patch is applied and counted."""
        generator.generate_fix_for_error.return_value = [WIDGET_PATCH]

        summary = await pipeline.run([unmatched()])

        assert summary.tier2_resolved == 1
        assert summary.errors_fixed == 1
        assert summary.remaining_issues == 0
        assert "const b: number = 2;" in (workspace / "src/app/widget.ts").read_text(encoding="utf-8")

    async def test_generator_receives_context_and_docs(
        self, pipeline_config: PipelineConfig, generator: MagicMock, metrics: MetricsRegistry
    ) -> None:
        """Test the representative's message, code and docs are sent."""
        docs_provider = AsyncMock(return_value="Use typed declarations.")
        pipeline = RepairPipeline(pipeline_config, generator, docs_provider=docs_provider, metrics=metrics)

        await pipeline.run([unmatched()])

        message, code_context, docs = generator.generate_fix_for_error.await_args.args
        assert message == "Cannot find name 'b'."
        assert code_context.startswith("// src/app/widget.ts lines 1-3, error at line 2")
        assert "const b = 2;" in code_context
        assert docs == "Use typed declarations."
        assert isinstance(docs_provider.await_args.args[0], ErrorCluster)

    async def test_failing_docs_provider_sends_empty_docs(
        self, pipeline_config: PipelineConfig, generator: MagicMock, metrics: MetricsRegistry
    ) -> None:
        """Test a docs provider error does not stop generation."""
        docs_provider = AsyncMock(side_effect=OSError("offline"))
        pipeline = RepairPipeline(pipeline_config, generator, docs_provider=docs_provider, metrics=metrics)

        await pipeline.run([unmatched()])

        assert generator.generate_fix_for_error.await_args.args[2] == ""

    async def test_generator_error_is_contained(
        self, pipeline: RepairPipeline, generator: MagicMock, metrics: MetricsRegistry, rxjs_error: Diagnostic
    ) -> None:
        """Test a generator exception marks only its cluster unresolved."""
        generator.generate_fix_for_error.side_effect = GeneratorError("service down")

        summary = await pipeline.run([unmatched(), rxjs_error])

        assert summary.outcomes[0].resolution == ClusterResolution.UNRESOLVED
        assert "service down" in summary.outcomes[0].error
        assert summary.outcomes[1].resolution == ClusterResolution.PATTERN
        assert metrics.generator_errors.total() == 1

    async def test_budget_limits_generator_calls(
        self, workspace: Path, generator: MagicMock, metrics: MetricsRegistry
    ) -> None:
        """Test clusters beyond max_patches_per_run are skipped."""
        config = PipelineConfig(workspace_root=workspace, max_patches_per_run=1)
        diagnostics = [
            unmatched("Cannot find name 'b'."),
            unmatched("Unexpected token."),
            unmatched("Missing return type."),
        ]

        summary = await RepairPipeline(config, generator, metrics=metrics).run(diagnostics)

        assert generator.generate_fix_for_error.await_count == 1
        assert [o.resolution for o in summary.outcomes] == [
            ClusterResolution.UNRESOLVED,
            ClusterResolution.SKIPPED,
            ClusterResolution.SKIPPED,
        ]
        assert summary.unresolved == 3

    async def test_unknown_file_patches_dropped(
        self, pipeline: RepairPipeline, generator: MagicMock
    ) -> None:
        """Test patches without a target file are never applied."""
        generator.generate_fix_for_error.return_value = [
            Patch(diff="@@ -1,1 +1,1 @@\n-a\n+b", description="?", file_path="unknown")
        ]

        summary = await pipeline.run([unmatched()])

        (outcome,) = summary.outcomes
        assert outcome.resolution == ClusterResolution.UNRESOLVED
        assert outcome.error == "Generator produced no usable patches"

    async def test_stale_generated_patch_fails_and_rolls_back(
        self, pipeline: RepairPipeline, generator: MagicMock, workspace: Path
    ) -> None:
        """Test a batch with a stale patch is rolled back."""
        stale = Patch(
            diff="@@ -1,2 +1,2 @@\n const x = 0;\n-const b = 2;\n+const b = 3;\n",
            description="stale",
            file_path="src/app/widget.ts",
        )
        generator.generate_fix_for_error.return_value = [WIDGET_PATCH, stale]
        before = (workspace / "src/app/widget.ts").read_text(encoding="utf-8")

        summary = await pipeline.run([unmatched()])

        (outcome,) = summary.outcomes
        assert outcome.resolution == ClusterResolution.FAILED
        assert outcome.batch is not None and outcome.batch.rolled_back
        assert summary.rolled_back_batches == 1
        assert summary.patches_applied == 0
        assert (workspace / "src/app/widget.ts").read_text(encoding="utf-8") == before

    async def test_no_generator(self, pipeline_config: PipelineConfig, metrics: MetricsRegistry) -> None:
        """Test unmatched clusters are unresolved without a generator."""
        pipeline = RepairPipeline(pipeline_config, None, metrics=metrics)

        summary = await pipeline.run([unmatched()])

        assert pipeline.tier2_enabled is False
        assert summary.outcomes[0].resolution == ClusterResolution.UNRESOLVED

    async def test_generator_disabled_by_config(
        self, workspace: Path, generator: MagicMock, metrics: MetricsRegistry
    ) -> None:
        """Test use_generator off keeps the generator idle."""
        config = PipelineConfig(workspace_root=workspace, use_generator=False)

        await RepairPipeline(config, generator, metrics=metrics).run([unmatched()])

        generator.generate_fix_for_error.assert_not_awaited()


class TestRunAccounting:
    """Test filtering, summary and context handling."""

    async def test_empty_run(self, pipeline: RepairPipeline) -> None:
        """Test no diagnostics produce an empty summary."""
        summary = await pipeline.run([])

        assert summary.total_diagnostics == 0
        assert summary.outcomes == ()
        assert summary.message == "Migration completed successfully with no errors."

    async def test_severity_filter(self, pipeline: RepairPipeline, generator: MagicMock) -> None:
        """Test diagnostics outside the configured severities are ignored."""
        warning = Diagnostic("src/app/widget.ts", 1, "Unused variable 'a'.", Severity.WARNING)

        summary = await pipeline.run([warning])

        assert summary.total_diagnostics == 0
        generator.generate_fix_for_error.assert_not_awaited()

    async def test_metrics_recorded(
        self, pipeline: RepairPipeline, metrics: MetricsRegistry, http_module_error: Diagnostic
    ) -> None:
        """Test run metrics are updated."""
        await pipeline.run([http_module_error, unmatched()])

        assert metrics.diagnostics_received.total() == 2
        assert metrics.clusters_found.total() == 2
        assert metrics.pattern_matches.get({"rule": "http-module-deprecation"}) == 1
        assert metrics.generator_requests.total() == 1
        assert metrics.run_duration.get_stats()["count"] == 1

    async def test_run_id_unbound_after_run(self, pipeline: RepairPipeline) -> None:
        """Test the run id does not leak into later log calls."""
        await pipeline.run([])
        assert "run_id" not in structlog.contextvars.get_contextvars()

    async def test_unexpected_errors_propagate(
        self, pipeline_config: PipelineConfig, metrics: MetricsRegistry
    ) -> None:
        """Test bugs in collaborators abort the run."""
        clusterer = MagicMock()
        clusterer.cluster_errors.side_effect = RuntimeError("bug")
        pipeline = RepairPipeline(pipeline_config, clusterer=clusterer, metrics=metrics)

        with pytest.raises(RuntimeError, match="bug"):
            await pipeline.run([unmatched()])


class TestCodeContext:
    """Test code context extraction."""

    def test_window_is_clamped(self, workspace: Path) -> None:
        """Test the window stays inside the file."""
        pipeline = RepairPipeline(PipelineConfig(workspace_root=workspace, context_lines=1))

        context = pipeline.build_code_context(unmatched(line=3))

        assert context == "// src/app/widget.ts lines 2-3, error at line 3\nconst b = 2;\nconst c = 3;"

    def test_missing_file_placeholder(self, workspace: Path) -> None:
        """Test an unreadable file yields a placeholder."""
        pipeline = RepairPipeline(PipelineConfig(workspace_root=workspace))

        context = pipeline.build_code_context(Diagnostic("src/app/missing.ts", 4, "x"))

        assert context == "// Error at src/app/missing.ts:4 (source unavailable)"

    def test_absolute_paths_kept(self, workspace: Path) -> None:
        """Test absolute paths are not joined to the workspace."""
        pipeline = RepairPipeline(PipelineConfig(workspace_root=Path("/elsewhere")))
        absolute = workspace / "src/app/widget.ts"

        assert pipeline.resolve_path(str(absolute)) == absolute
