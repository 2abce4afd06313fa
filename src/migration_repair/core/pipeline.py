"""Two-tier repair pipeline.

This module implements the RepairPipeline class that coordinates one repair
run:
1. Filter diagnostics to the configured severities
2. Cluster them by pattern key
3. Tier 1: match each cluster against the deterministic rule registry and
   apply the generated patches as one batch
4. Tier 2: send each remaining cluster's representative to the external fix
   generator, sequentially and within the per-run budget, and apply the
   returned patches as one batch
5. Summarize fixed, failed and unresolved clusters

A failure in one cluster (no rule, generator error, stale patch, rolled back
batch) never stops the others. Only unexpected exceptions abort the run.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from migration_repair.config.schema import PipelineConfig
from migration_repair.core.clusterer import ErrorClusterer
from migration_repair.core.patch_engine import PatchEngine, parse_diff
from migration_repair.core.patterns import PatternMatcher
from migration_repair.core.response_parser import UNKNOWN_FILE
from migration_repair.models.diagnostic import Diagnostic, ErrorCluster
from migration_repair.models.patch import BatchItem, Patch
from migration_repair.models.report import ClusterOutcome, ClusterResolution, RunSummary
from migration_repair.utils.logging import LogEventNames, bind_context, unbind_context
from migration_repair.utils.metrics import MetricsRegistry, Timer, get_metrics

if TYPE_CHECKING:
    from migration_repair.interfaces.generator import FixGenerator

log = structlog.get_logger()

DocsProvider = Callable[[ErrorCluster], Awaitable[str]]


class RepairPipeline:
    """Orchestrates clustering, tier-1 rules, tier-2 generation and patching.

    Configuration is passed in explicitly; the pipeline holds no global
    state, so several pipelines with different settings can coexist.

    Example:
        pipeline = RepairPipeline(config.pipeline, generator=generator)
        summary = await pipeline.run(diagnostics)
        print(summary.message)
    """

    def __init__(
        self,
        config: PipelineConfig,
        generator: FixGenerator | None = None,
        *,
        engine: PatchEngine | None = None,
        matcher: PatternMatcher | None = None,
        clusterer: ErrorClusterer | None = None,
        docs_provider: DocsProvider | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the RepairPipeline.

        Args:
            config: Pipeline configuration
            generator: Tier-2 fix generator; None disables tier 2
            engine: Patch engine (defaults to one honoring strict_validation)
            matcher: Tier-1 matcher (defaults to the built-in rules)
            clusterer: Diagnostic clusterer
            docs_provider: Supplies migration docs for a cluster's prompt
            metrics: Metrics registry (defaults to the process-wide one)
        """
        self._config = config
        self._generator = generator
        self._metrics = metrics or get_metrics()
        self._engine = engine or PatchEngine(
            strict=config.strict_validation,
            metrics=self._metrics,
        )
        self._matcher = matcher or PatternMatcher()
        self._clusterer = clusterer or ErrorClusterer()
        self._docs_provider = docs_provider

    @property
    def tier2_enabled(self) -> bool:
        """True if unmatched clusters will be sent to the generator."""
        return self._generator is not None and self._config.use_generator

    async def run(self, diagnostics: Iterable[Diagnostic]) -> RunSummary:
        """Run one repair pass over a batch of diagnostics.

        Args:
            diagnostics: Diagnostics from one analysis pass

        Returns:
            RunSummary with per-cluster outcomes and totals
        """
        run_id = uuid.uuid4().hex[:12]
        bind_context(run_id=run_id)

        try:
            with Timer(self._metrics.run_duration) as timer:
                summary = await self._run(list(diagnostics))

            log.info(
                LogEventNames.RUN_COMPLETE,
                duration=round(timer.elapsed, 3),
                patches_applied=summary.patches_applied,
                errors_fixed=summary.errors_fixed,
                remaining_issues=summary.remaining_issues,
            )
            return summary
        finally:
            unbind_context("run_id")

    async def _run(self, diagnostics: list[Diagnostic]) -> RunSummary:
        selected = [d for d in diagnostics if d.severity in self._config.severities]
        self._metrics.diagnostics_received.inc(len(selected))

        log.info(
            LogEventNames.RUN_STARTED,
            diagnostics=len(diagnostics),
            selected=len(selected),
            tier2_enabled=self.tier2_enabled,
            auto_apply=self._config.auto_apply,
        )

        clusters = self._clusterer.cluster_errors(selected)
        self._metrics.clusters_found.inc(len(clusters))
        log.info(LogEventNames.CLUSTERING_COMPLETE, clusters=len(clusters))

        outcomes: dict[str, ClusterOutcome] = {}
        pending: list[ErrorCluster] = []

        # Tier 1
        for cluster in clusters:
            outcome = self._resolve_with_pattern(cluster)
            if outcome is None:
                pending.append(cluster)
            else:
                outcomes[cluster.id] = outcome

        # Tier 2
        budget = self._config.max_patches_per_run
        generator_calls = 0
        budget_logged = False
        for cluster in pending:
            if not self.tier2_enabled:
                outcomes[cluster.id] = ClusterOutcome(
                    cluster=cluster,
                    resolution=ClusterResolution.UNRESOLVED,
                    error="No matching pattern and generator disabled",
                )
                continue

            if generator_calls >= budget:
                if not budget_logged:
                    log.warning(
                        LogEventNames.GENERATOR_BUDGET_EXHAUSTED,
                        budget=budget,
                        skipped_clusters=len(pending) - budget,
                    )
                    budget_logged = True
                outcomes[cluster.id] = ClusterOutcome(
                    cluster=cluster,
                    resolution=ClusterResolution.SKIPPED,
                    error="Generator budget exhausted",
                )
                continue

            generator_calls += 1
            outcomes[cluster.id] = await self._resolve_with_generator(cluster)

        return self._summarize(len(selected), [outcomes[c.id] for c in clusters])

    # -------------------------------------------------------------------------
    # Tier 1
    # -------------------------------------------------------------------------

    def _resolve_with_pattern(self, cluster: ErrorCluster) -> ClusterOutcome | None:
        """Fix a cluster with a registered rule, or return None for tier 2."""
        rule = self._matcher.match_pattern(cluster)
        if rule is None:
            return None

        self._metrics.pattern_matches.inc(labels={"rule": rule.id})
        patches = self._matcher.generate_fixes(cluster, rule)
        if not patches:
            log.info("pattern_produced_no_patches", cluster_id=cluster.id, rule_id=rule.id)
            return None

        return self._apply(cluster, patches, ClusterResolution.PATTERN, rule_id=rule.id)

    # -------------------------------------------------------------------------
    # Tier 2
    # -------------------------------------------------------------------------

    async def _resolve_with_generator(self, cluster: ErrorCluster) -> ClusterOutcome:
        assert self._generator is not None

        representative = cluster.representative
        code_context = self.build_code_context(representative)
        docs = await self._supporting_docs(cluster)

        log.info(
            LogEventNames.GENERATOR_REQUEST,
            cluster_id=cluster.id,
            location=representative.location,
            model=self._generator.model_name,
        )
        self._metrics.generator_requests.inc()

        try:
            with Timer(self._metrics.generator_duration):
                candidates = await self._generator.generate_fix_for_error(
                    representative.message,
                    code_context,
                    docs,
                )
        except Exception as e:
            log.exception(
                LogEventNames.GENERATOR_FAILED,
                cluster_id=cluster.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._metrics.generator_errors.inc()
            return ClusterOutcome(
                cluster=cluster,
                resolution=ClusterResolution.UNRESOLVED,
                error=f"Generator failed: {e}",
            )

        patches = [p for p in candidates if p.file_path and p.file_path != UNKNOWN_FILE]
        if len(patches) < len(candidates):
            log.warning(
                "generated_patches_without_target_dropped",
                cluster_id=cluster.id,
                dropped=len(candidates) - len(patches),
            )

        if not patches:
            return ClusterOutcome(
                cluster=cluster,
                resolution=ClusterResolution.UNRESOLVED,
                error="Generator produced no usable patches",
            )

        return self._apply(cluster, patches, ClusterResolution.GENERATED)

    async def _supporting_docs(self, cluster: ErrorCluster) -> str:
        if self._docs_provider is None:
            return ""
        try:
            return await self._docs_provider(cluster)
        except Exception as e:
            log.warning("docs_provider_failed", cluster_id=cluster.id, error=str(e))
            return ""

    def build_code_context(self, diagnostic: Diagnostic) -> str:
        """Source lines around a diagnostic, for the generator prompt.

        Returns a placeholder comment when the file cannot be read.
        """
        path = self.resolve_path(diagnostic.file_path)
        radius = self._config.context_lines

        try:
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError:
            log.debug("context_file_unreadable", file_path=str(path))
            return f"// Error at {diagnostic.location} (source unavailable)"

        start = max(1, diagnostic.line_number - radius)
        end = min(len(lines), diagnostic.line_number + radius)
        snippet = "\n".join(lines[start - 1 : end])
        header = f"// {diagnostic.file_path} lines {start}-{end}, error at line {diagnostic.line_number}"
        return f"{header}\n{snippet}"

    def resolve_path(self, file_path: str) -> Path:
        """Resolve a diagnostic or patch path against the workspace root."""
        path = Path(file_path)
        if path.is_absolute():
            return path
        return self._config.workspace_root / path

    # -------------------------------------------------------------------------
    # Application and accounting
    # -------------------------------------------------------------------------

    def _apply(
        self,
        cluster: ErrorCluster,
        patches: list[Patch],
        resolution: ClusterResolution,
        rule_id: str | None = None,
    ) -> ClusterOutcome:
        """Apply a cluster's patches as one all-or-nothing batch."""
        if not self._config.auto_apply:
            log.info("patches_proposed", cluster_id=cluster.id, patches=len(patches))
            return ClusterOutcome(
                cluster=cluster,
                resolution=resolution,
                rule_id=rule_id,
                patches=tuple(patches),
            )

        items = [
            BatchItem(file_path=str(self.resolve_path(p.file_path)), patch=p)
            for p in _bottom_up(patches)
        ]
        batch = self._engine.apply_patch_batch(items)

        if batch.success:
            return ClusterOutcome(
                cluster=cluster,
                resolution=resolution,
                rule_id=rule_id,
                patches=tuple(patches),
                batch=batch,
            )

        error = batch.failure_reason
        if not batch.rollback_clean:
            error = f"{error}; rollback incomplete for {len(batch.rollback_failures)} patches"

        return ClusterOutcome(
            cluster=cluster,
            resolution=ClusterResolution.FAILED,
            rule_id=rule_id,
            patches=tuple(patches),
            batch=batch,
            error=error,
        )

    def _summarize(self, total: int, outcomes: list[ClusterOutcome]) -> RunSummary:
        patches_applied = 0
        errors_fixed = 0
        rolled_back = 0

        for outcome in outcomes:
            if outcome.batch is not None and outcome.batch.rolled_back:
                rolled_back += 1
            if not outcome.applied:
                continue
            patches_applied += len(outcome.patches)
            errors_fixed += self._fixed_count(outcome)

        return RunSummary(
            total_diagnostics=total,
            outcomes=tuple(outcomes),
            patches_applied=patches_applied,
            errors_fixed=errors_fixed,
            remaining_issues=total - errors_fixed,
            rolled_back_batches=rolled_back,
        )

    @staticmethod
    def _fixed_count(outcome: ClusterOutcome) -> int:
        """Diagnostics addressed by an applied outcome.

        A tier-1 patch fixes the instance it was generated from; a tier-2
        response is generated for the representative only.
        """
        if outcome.resolution == ClusterResolution.PATTERN:
            return min(len(outcome.patches), outcome.cluster.size)
        return 1


def _bottom_up(patches: list[Patch]) -> list[Patch]:
    """Order patches so later lines are patched first.

    Line-anchored patches for the same file would otherwise shift each
    other's targets. Patches without hunks keep their relative order.
    """

    def first_line(patch: Patch) -> int:
        hunks = parse_diff(patch.diff)
        return hunks[0].old_start if hunks else 0

    return sorted(patches, key=first_line, reverse=True)
