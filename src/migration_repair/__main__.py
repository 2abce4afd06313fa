"""Entry point for running migration-repair.

This module provides the main entry point for a repair run.
It handles:
- Configuration loading and CLI overrides
- Logging setup
- Diagnostic loading
- Generator instantiation
- Printing the run summary and mapping it to an exit code
- Exporting run metrics
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from migration_repair._version import __version__

if TYPE_CHECKING:
    from migration_repair.config.schema import RepairConfig
    from migration_repair.models.diagnostic import ErrorCluster
    from migration_repair.models.report import RunSummary

log = structlog.get_logger()

EXIT_CLEAN = 0
EXIT_FATAL = 1
EXIT_REMAINING = 2


def setup_logging(
    debug: bool = False,
    log_format: str = "console",
    file_path: Path | None = None,
    file_enabled: bool = False,
) -> None:
    """Configure structured logging.

    Args:
        debug: Enable debug logging if True
        log_format: Output format ("json" or "console")
        file_path: Path to log file (if file logging enabled)
        file_enabled: Whether to enable file logging
    """
    from migration_repair.utils.logging import LogFormat, LogLevel, configure_logging

    level = LogLevel.DEBUG if debug else LogLevel.INFO
    fmt = LogFormat(log_format.lower()) if isinstance(log_format, str) else log_format

    configure_logging(
        level=level,
        log_format=fmt,
        file_path=file_path,
        file_enabled=file_enabled,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed argument namespace
    """
    parser = argparse.ArgumentParser(
        prog="migration-repair",
        description="Repair compiler errors left behind by a dependency upgrade",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--diagnostics",
        type=Path,
        required=True,
        help="Diagnostics file: JSON list or saved tsc output",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (defaults and environment if omitted)",
    )

    parser.add_argument(
        "-w",
        "--workspace",
        type=Path,
        default=None,
        help="Workspace root that diagnostic paths are relative to",
    )

    parser.add_argument(
        "--docs",
        type=Path,
        default=None,
        help="Migration notes passed to the generator as supporting docs",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Load config and diagnostics, print the clusters, and exit",
    )

    parser.add_argument(
        "--no-generator",
        action="store_true",
        help="Only apply tier-1 pattern fixes",
    )

    parser.add_argument(
        "--no-apply",
        action="store_true",
        help="Propose patches without writing them",
    )

    parser.add_argument(
        "--max-patches",
        type=int,
        default=None,
        help="Maximum generator calls for this run",
    )

    parser.add_argument(
        "--metrics-out",
        type=Path,
        default=None,
        help="Write run metrics here (JSON for .json files, else Prometheus text)",
    )

    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    parser.add_argument(
        "--format",
        choices=["json", "console"],
        default=None,
        help="Log output format (default: from config, else console)",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> "RepairConfig":
    """Load configuration and apply CLI overrides.

    Without ``--config`` the defaults are used, with settings taken from
    ``MIGRATION_REPAIR_*`` variables. ``ANTHROPIC_API_KEY`` enables the
    generator when no Anthropic section is configured.
    """
    from migration_repair.config.loader import load_config, validate_config
    from migration_repair.config.schema import AnthropicConfig, RepairConfig

    if args.config is not None:
        config = load_config(args.config)
    else:
        config = RepairConfig()
        if config.llm.anthropic is None and os.environ.get("ANTHROPIC_API_KEY"):
            config.llm.anthropic = AnthropicConfig(api_key=os.environ["ANTHROPIC_API_KEY"])
        if config.llm.anthropic is None:
            config.pipeline.use_generator = False

    pipeline = config.pipeline
    if args.workspace is not None:
        pipeline.workspace_root = args.workspace
    if args.no_generator:
        pipeline.use_generator = False
    if args.no_apply:
        pipeline.auto_apply = False
    if args.max_patches is not None:
        if args.max_patches < 1:
            raise ValueError("--max-patches must be at least 1")
        pipeline.max_patches_per_run = args.max_patches

    validate_config(config)
    return config


def write_metrics(path: Path) -> None:
    """Export the process-wide metrics registry to a file."""
    from migration_repair.utils.metrics import get_metrics

    metrics = get_metrics()
    if path.suffix.lower() == ".json":
        text = json.dumps(metrics.get_all_metrics(), indent=2)
    else:
        text = metrics.to_prometheus_format()

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text + "\n", encoding="utf-8")
    log.info("metrics_written", path=str(path))


def print_summary(summary: "RunSummary") -> None:
    """Print a run summary for the user."""
    print(summary.message)
    print(
        f"  clusters: {len(summary.outcomes)}  "
        f"pattern: {summary.tier1_resolved}  "
        f"generated: {summary.tier2_resolved}  "
        f"unresolved: {summary.unresolved}"
    )
    for outcome in summary.outcomes:
        cluster = outcome.cluster
        line = f"  [{outcome.resolution}] {cluster.id} x{cluster.size}: {cluster.pattern}"
        if outcome.error:
            line += f" ({outcome.error})"
        print(line)


async def run_repair(args: argparse.Namespace) -> int:
    """Run one repair pass.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 if nothing remains, 2 if issues remain, 1 on error)
    """
    log.info("starting_migration_repair", version=__version__)

    try:
        config = build_config(args)

        if args.config is not None:
            setup_logging(
                debug=args.debug or config.logging.level == "DEBUG",
                log_format=args.format or config.logging.format,
                file_path=config.logging.file.path,
                file_enabled=config.logging.file.enabled,
            )

        from migration_repair.core.diagnostics import load_diagnostics

        diagnostics = load_diagnostics(args.diagnostics)
        log.info("diagnostics_loaded", path=str(args.diagnostics), count=len(diagnostics))

        if args.dry_run:
            from migration_repair.core.clusterer import ErrorClusterer

            selected = [d for d in diagnostics if d.severity in config.pipeline.severities]
            for cluster in ErrorClusterer().cluster_errors(selected):
                print(f"{cluster.id} x{cluster.size}: {cluster.pattern}")
            return EXIT_CLEAN

        generator = None
        if config.pipeline.use_generator and config.llm.anthropic is not None:
            from migration_repair.adapters.llm.anthropic import AnthropicFixGenerator

            generator = AnthropicFixGenerator(config.llm.anthropic, retry_config=config.retry)

        docs_provider = None
        if args.docs is not None:
            docs = args.docs.read_text(encoding="utf-8")

            async def docs_provider(cluster: "ErrorCluster") -> str:
                return docs

        from migration_repair.core.pipeline import RepairPipeline

        pipeline = RepairPipeline(config.pipeline, generator, docs_provider=docs_provider)
        summary = await pipeline.run(diagnostics)

        print_summary(summary)
        if args.metrics_out is not None:
            write_metrics(args.metrics_out)
        return EXIT_CLEAN if summary.remaining_issues == 0 else EXIT_REMAINING

    except FileNotFoundError as e:
        log.error("file_not_found", error=str(e))
        return EXIT_FATAL
    except ValueError as e:
        log.error("configuration_invalid", error=str(e))
        return EXIT_FATAL
    except Exception as e:
        log.exception("fatal_error", error=str(e))
        return EXIT_FATAL


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    setup_logging(
        debug=args.debug,
        log_format=args.format or "console",
    )

    try:
        return asyncio.run(run_repair(args))
    except KeyboardInterrupt:
        log.info("interrupted")
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
