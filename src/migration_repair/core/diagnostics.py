"""Adapters from analyzer-native diagnostic shapes to ``Diagnostic``.

Nothing analyzer-specific enters the repair core: every source of
diagnostics is mapped here into the fixed ``Diagnostic`` model first.
Supported inputs:
- ``tsc`` output in both ``--pretty false`` and colon forms
- JSON lists of mappings (camelCase or snake_case keys, or the numeric
  TypeScript ``category`` field)
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

import structlog

from migration_repair.models.diagnostic import Diagnostic, Severity

log = structlog.get_logger()


class DiagnosticSource(Protocol):
    """Anything that can produce diagnostics for one analysis pass."""

    def collect(self) -> list[Diagnostic]:
        """Return the diagnostics found, in reporting order."""
        ...


# TypeScript DiagnosticCategory values
TS_CATEGORY_SEVERITY = {
    0: Severity.WARNING,
    1: Severity.ERROR,
}

SEVERITY_WORDS = {
    "error": Severity.ERROR,
    "warning": Severity.WARNING,
    "warn": Severity.WARNING,
    "info": Severity.INFO,
    "message": Severity.INFO,
    "suggestion": Severity.INFO,
}


def _severity_from_word(word: str) -> Severity:
    return SEVERITY_WORDS.get(word.lower(), Severity.INFO)


class TscOutputParser:
    """Parser for TypeScript compiler output.

    Example:
        parser = TscOutputParser()
        diagnostics = parser.parse(build_output)
    """

    # src/app/app.module.ts(12,5): error TS2305: Module ... has no exported member ...
    PAREN_PATTERN = re.compile(
        r"^(?P<file>[^\s(][^(]*)\((?P<line>\d+),(?P<col>\d+)\):\s+"
        r"(?P<severity>error|warning|message|suggestion)\s+(?P<code>TS\d+):\s*(?P<message>.*)$",
        re.IGNORECASE,
    )
    # src/app/app.module.ts:12:5 - error TS2305: Module ... has no exported member ...
    COLON_PATTERN = re.compile(
        r"^(?P<file>[^\s:][^:]*):(?P<line>\d+):(?P<col>\d+)\s+-\s+"
        r"(?P<severity>error|warning|message|suggestion)\s+(?P<code>TS\d+):\s*(?P<message>.*)$",
        re.IGNORECASE,
    )

    def parse(self, text: str) -> list[Diagnostic]:
        """Parse every diagnostic in ``text``.

        Indented lines directly after a diagnostic are treated as message
        continuations. Lines that match neither form are skipped.
        """
        diagnostics: list[Diagnostic] = []
        pending: dict[str, Any] | None = None

        def flush() -> None:
            if pending is not None:
                diagnostics.append(
                    Diagnostic(
                        file_path=pending["file"],
                        line_number=pending["line"],
                        message=" ".join(pending["message"]).strip(),
                        severity=pending["severity"],
                    )
                )

        for raw_line in text.splitlines():
            line = raw_line.rstrip()
            match = self.PAREN_PATTERN.match(line) or self.COLON_PATTERN.match(line)

            if match:
                flush()
                pending = {
                    "file": match.group("file").strip(),
                    "line": max(1, int(match.group("line"))),
                    "severity": _severity_from_word(match.group("severity")),
                    "message": [match.group("message").strip()],
                }
            elif pending is not None and line.startswith((" ", "\t")) and line.strip():
                pending["message"].append(line.strip())
            else:
                flush()
                pending = None

        flush()

        log.debug("tsc_output_parsed", diagnostics=len(diagnostics))
        return diagnostics


def _first(mapping: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in mapping and mapping[key] is not None:
            return mapping[key]
    return None


def diagnostic_from_mapping(mapping: Mapping[str, Any]) -> Diagnostic:
    """Build a ``Diagnostic`` from an analyzer's dictionary shape.

    Raises:
        ValueError: If the file, line or message is missing or invalid
    """
    file_path = _first(mapping, "filePath", "file_path", "file")
    line = _first(mapping, "lineNumber", "line_number", "line")
    message = _first(mapping, "message", "messageText", "text")

    if not file_path or not isinstance(file_path, str):
        raise ValueError(f"Diagnostic has no file path: {dict(mapping)!r}")
    if message is None:
        raise ValueError(f"Diagnostic has no message: {dict(mapping)!r}")
    try:
        line_number = int(line) if line is not None else 1
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid line number: {line!r}") from e

    severity_value = mapping.get("severity")
    if severity_value is not None:
        severity = _severity_from_word(str(severity_value))
    elif isinstance(mapping.get("category"), int):
        severity = TS_CATEGORY_SEVERITY.get(mapping["category"], Severity.INFO)
    else:
        severity = Severity.ERROR

    return Diagnostic(
        file_path=file_path,
        line_number=max(1, line_number),
        message=str(message),
        severity=severity,
    )


def load_diagnostics(path: Path) -> list[Diagnostic]:
    """Load diagnostics from a JSON list or a saved ``tsc`` output file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If a JSON file is not a list of diagnostic mappings
    """
    if not path.exists():
        raise FileNotFoundError(f"Diagnostics file not found: {path}")

    text = path.read_text(encoding="utf-8")

    if path.suffix.lower() == ".json":
        data = json.loads(text)
        if not isinstance(data, list):
            raise ValueError("Diagnostics JSON must be a list")
        return [diagnostic_from_mapping(item) for item in data]

    return TscOutputParser().parse(text)


class FileDiagnosticSource:
    """``DiagnosticSource`` reading a file produced by an earlier build."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def collect(self) -> list[Diagnostic]:
        return load_diagnostics(self._path)
