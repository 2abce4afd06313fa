"""Shared test fixtures for migration-repair."""

from pathlib import Path

import pytest

from migration_repair.config.schema import PipelineConfig
from migration_repair.models.diagnostic import Diagnostic, Severity
from migration_repair.utils.logging import clear_context
from migration_repair.utils.metrics import MetricsRegistry

# Get the fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the path to the fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def metrics() -> MetricsRegistry:
    """Return a fresh, isolated metrics registry."""
    return MetricsRegistry()


@pytest.fixture(autouse=True)
def _clear_log_context() -> None:
    """Make sure no bound log context leaks between tests."""
    clear_context()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a small Angular-like workspace."""
    app = tmp_path / "src" / "app"
    app.mkdir(parents=True)

    (app / "app.module.ts").write_text(
        "import { NgModule } from '@angular/core';\n"
        "import { HttpModule } from '@angular/http';\n"
        "\n"
        "@NgModule({\n"
        "  imports: [HttpModule],\n"
        "})\n"
        "export class AppModule {}\n",
        encoding="utf-8",
    )
    (app / "data.service.ts").write_text(
        "import { Injectable } from '@angular/core';\n"
        "import 'rxjs/add/operator/map';\n"
        "\n"
        "@Injectable()\n"
        "export class DataService {}\n",
        encoding="utf-8",
    )
    (app / "widget.ts").write_text(
        "const a = 1;\nconst b = 2;\nconst c = 3;\n",
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def pipeline_config(workspace: Path) -> PipelineConfig:
    """Pipeline configuration rooted at the test workspace."""
    return PipelineConfig(workspace_root=workspace)


@pytest.fixture
def http_module_error() -> Diagnostic:
    """HttpModule diagnostic matching the built-in rule."""
    return Diagnostic(
        file_path="src/app/app.module.ts",
        line_number=2,
        message="Module '\"@angular/http\"' has no exported member 'HttpModule'.",
        severity=Severity.ERROR,
    )


@pytest.fixture
def rxjs_error() -> Diagnostic:
    """RxJS operator diagnostic matching the built-in rule."""
    return Diagnostic(
        file_path="src/app/data.service.ts",
        line_number=2,
        message="Module 'rxjs' has no exported member 'map'.",
        severity=Severity.ERROR,
    )
