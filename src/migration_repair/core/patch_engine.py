"""Unified-diff parsing and safe application to source files.

This module implements the text-level patch engine used by the repair
pipeline. It handles:
- Parsing unified-diff text into hunks
- Context validation against the current file content
- Applying and reversing hunks
- All-or-nothing batch application with logical rollback

The engine works purely on lines; it knows nothing about the syntax of the
files it edits.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path

import structlog

from migration_repair.models.patch import BatchItem, BatchResult, Hunk, Patch, PatchSource
from migration_repair.utils.async_helpers import RepairError
from migration_repair.utils.logging import LogEventNames
from migration_repair.utils.metrics import MetricsRegistry, get_metrics

log = structlog.get_logger()

HUNK_HEADER = re.compile(r"^@@ -(\d+),?(\d*) \+(\d+),?(\d*) @@")


class PatchError(RepairError):
    """Base exception for patch engine errors."""


class PatchParseError(PatchError):
    """Diff text has no recoverable hunk structure."""


class ValidationMismatchError(PatchError):
    """File content no longer matches the patch's context."""


class PatchApplyError(PatchError):
    """A hunk could not be spliced into the content."""


def _is_removal(line: str) -> bool:
    return line.startswith("-") and not line.startswith("---")


def _is_addition(line: str) -> bool:
    return line.startswith("+") and not line.startswith("+++")


def _is_context(line: str) -> bool:
    return line.startswith(" ")


def _parse_hunks(diff_text: str) -> list[tuple[Hunk, list[str]]]:
    """Parse hunks along with their raw body lines."""
    parsed: list[tuple[Hunk, list[str]]] = []
    header: re.Match[str] | None = None
    body: list[str] = []

    def flush() -> None:
        if header is None:
            return
        removed = [line[1:] for line in body if _is_removal(line)]
        added = [line[1:] for line in body if _is_addition(line)]

        leading: list[str] = []
        for line in body:
            if not _is_context(line):
                break
            leading.append(line[1:])

        changes_seen = False
        trailing = False
        for line in body:
            if _is_removal(line) or _is_addition(line):
                changes_seen = True
            elif changes_seen and _is_context(line):
                trailing = True
                break

        hunk = Hunk(
            old_start=int(header.group(1)),
            old_count=int(header.group(2)) if header.group(2) else 1,
            new_start=int(header.group(3)),
            new_count=int(header.group(4)) if header.group(4) else 1,
            removed_lines=tuple(removed),
            added_lines=tuple(added),
            context_lines=tuple(leading),
            has_trailing_context=trailing,
        )
        parsed.append((hunk, list(body)))

    for line in diff_text.split("\n"):
        match = HUNK_HEADER.match(line)
        if match:
            flush()
            header = match
            body = []
        elif header is not None:
            body.append(line)

    flush()
    return parsed


def parse_diff(diff_text: str) -> list[Hunk]:
    """Parse unified-diff text into hunks, in file order.

    Lines before the first ``@@`` header (including ``---``/``+++`` file
    headers) are ignored. A missing count in a header defaults to 1.

    Args:
        diff_text: Unified-diff text

    Returns:
        Parsed hunks; empty if the text contains no hunk header
    """
    return [hunk for hunk, _ in _parse_hunks(diff_text)]


def validate(file_content: str, patch: Patch) -> bool:
    """Check that each hunk's leading context still matches the file.

    Only the run of context lines immediately after each header is
    compared, starting at the hunk's ``old_start`` line. Hunks without
    leading context always pass. Context appearing after a change line is
    not checked; such hunks are logged as weakly validated.

    Args:
        file_content: Current content of the target file
        patch: Patch to validate

    Returns:
        True if every hunk's leading context matches
    """
    file_lines = file_content.split("\n")

    for hunk in parse_diff(patch.diff):
        if hunk.has_trailing_context:
            log.debug(
                "hunk_weakly_validated",
                file_path=patch.file_path,
                old_start=hunk.old_start,
            )

        index = hunk.old_start - 1
        for expected in hunk.context_lines:
            if index < 0 or index >= len(file_lines) or file_lines[index] != expected:
                log.warning(
                    "context_mismatch",
                    file_path=patch.file_path,
                    line=index + 1,
                )
                return False
            index += 1

    return True


def _verify_hunk(lines: list[str], hunk: Hunk, body: list[str]) -> None:
    """Check every context and removed line of a hunk against the content."""
    index = hunk.old_start - 1
    for line in body:
        if _is_context(line) or _is_removal(line):
            if index < 0 or index >= len(lines) or lines[index] != line[1:]:
                raise ValidationMismatchError(
                    f"Line {index + 1} does not match hunk at -{hunk.old_start}"
                )
            index += 1


def _splice_hunk(lines: list[str], hunk: Hunk, body: list[str]) -> None:
    position = hunk.old_start - 1
    if position < 0:
        raise PatchApplyError(f"Invalid hunk start {hunk.old_start}")

    for line in body:
        if _is_removal(line):
            if position >= len(lines):
                raise PatchApplyError(f"Removal past end of content at line {position + 1}")
            del lines[position]
        elif _is_addition(line):
            lines.insert(position, line[1:])
            position += 1
        elif _is_context(line):
            position += 1


def apply_diff(content: str, diff_text: str, strict: bool = False) -> str:
    """Apply unified-diff text to content.

    Hunks are applied last-first so earlier hunks' line numbers stay valid.
    Within a hunk, lines are replayed from ``old_start``: context lines
    advance the position, removals delete at it, additions insert at it.
    For a hunk without context this is a splice that removes
    ``len(removed_lines)`` lines at ``old_start - 1`` and inserts
    ``added_lines`` in their place.

    Args:
        content: Original content
        diff_text: Unified-diff text
        strict: Also require every context and removed line to match

    Returns:
        Patched content

    Raises:
        PatchParseError: If a non-empty diff contains no hunks
        PatchApplyError: If a hunk position is invalid
        ValidationMismatchError: In strict mode, if a line does not match
    """
    parsed = _parse_hunks(diff_text)
    if not parsed:
        if diff_text.strip():
            raise PatchParseError("No hunks found in diff")
        return content

    lines = content.split("\n")
    for hunk, body in reversed(parsed):
        if strict:
            _verify_hunk(lines, hunk, body)
        _splice_hunk(lines, hunk, body)

    return "\n".join(lines)


def create_reverse_diff(diff_text: str) -> str:
    """Build the diff that undoes ``diff_text``.

    Removal and addition lines swap markers, and each hunk header swaps its
    old and new ranges. An absent count becomes ``1``. Every other line is
    copied unchanged.
    """
    reversed_lines: list[str] = []

    for line in diff_text.split("\n"):
        match = HUNK_HEADER.match(line)
        if _is_addition(line):
            reversed_lines.append("-" + line[1:])
        elif _is_removal(line):
            reversed_lines.append("+" + line[1:])
        elif match:
            old_start, old_count, new_start, new_count = match.groups()
            header = f"@@ -{new_start},{new_count or '1'} +{old_start},{old_count or '1'} @@"
            reversed_lines.append(header + line[match.end() :])
        else:
            reversed_lines.append(line)

    return "\n".join(reversed_lines)


def create_patch(
    file_path: str,
    old_content: str,
    new_content: str,
    description: str,
    source: PatchSource = PatchSource.MANUAL,
) -> Patch:
    """Build a single-hunk patch covering the whole file.

    Lines are compared by position only: a differing line at the same index
    becomes a removal followed by an addition, and extra lines on either side
    become pure removals or additions. This is not a minimal diff; an
    inserted line near the top of the file turns every following line into a
    change.

    Args:
        file_path: Path recorded in the ``---``/``+++`` headers
        old_content: Original content
        new_content: Desired content
        description: Human-readable summary of the change
        source: Provenance recorded on the patch

    Returns:
        Patch transforming ``old_content`` into ``new_content``
    """
    old_lines = old_content.split("\n")
    new_lines = new_content.split("\n")

    diff_lines = [
        f"--- a/{file_path}",
        f"+++ b/{file_path}",
        f"@@ -1,{len(old_lines)} +1,{len(new_lines)} @@",
    ]

    for i in range(max(len(old_lines), len(new_lines))):
        if i < len(old_lines) and i < len(new_lines):
            if old_lines[i] != new_lines[i]:
                diff_lines.append(f"-{old_lines[i]}")
                diff_lines.append(f"+{new_lines[i]}")
            else:
                diff_lines.append(f" {old_lines[i]}")
        elif i < len(old_lines):
            diff_lines.append(f"-{old_lines[i]}")
        else:
            diff_lines.append(f"+{new_lines[i]}")

    return Patch(
        diff="\n".join(diff_lines) + "\n",
        description=description,
        file_path=file_path,
        source=source,
    )


class PatchEngine:
    """Applies, reverts and batch-applies patches to files on disk.

    Every failure mode of a single application (missing file, stale context,
    unparseable diff, invalid splice, I/O error) leaves the file untouched and
    is reported as ``False``. A file is only written once its new content has
    been computed in full.

    Example:
        engine = PatchEngine()
        result = engine.apply_patch_batch([BatchItem(path, patch) for ...])
        if not result.success:
            print(result.failure_reason, result.rollback_failures)
    """

    def __init__(
        self,
        strict: bool = False,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize the PatchEngine.

        Args:
            strict: Verify every context and removed line, not just the
                leading context run of each hunk. Pattern-rule patches are
                always verified this way.
            metrics: Metrics registry (defaults to the process-wide one)
        """
        self._strict = strict
        self._metrics = metrics or get_metrics()

    @property
    def strict(self) -> bool:
        return self._strict

    def apply_patch(self, file_path: str | Path, patch: Patch) -> bool:
        """Apply a patch to a file.

        Args:
            file_path: File to modify
            patch: Patch to apply

        Returns:
            True if the file was rewritten with the patched content
        """
        path = Path(file_path)
        try:
            self._apply_to_file(path, patch)
        except PatchError as e:
            log.error(
                LogEventNames.PATCH_FAILED,
                file_path=str(path),
                reason=str(e),
                error_type=type(e).__name__,
            )
            self._metrics.patches_failed.inc(labels={"source": str(patch.source)})
            return False

        log.info(LogEventNames.PATCH_APPLIED, file_path=str(path), description=patch.description)
        self._metrics.patches_applied.inc(labels={"source": str(patch.source)})
        return True

    def revert_patch(self, file_path: str | Path, patch: Patch) -> bool:
        """Undo a previously applied patch by applying its reverse diff."""
        log.info("reverting_patch", file_path=str(file_path))
        reverse = Patch(
            diff=create_reverse_diff(patch.diff),
            description=patch.description,
            file_path=patch.file_path,
            source=patch.source,
        )
        return self.apply_patch(file_path, reverse)

    def apply_patch_batch(self, items: Iterable[BatchItem]) -> BatchResult:
        """Apply patches in order; on the first failure, undo the rest.

        Successfully applied items are reverted in reverse order of
        application. Rollback is logical (reverse diffs), not a snapshot
        restore, so it can itself fail if a file changed in between; such
        items are reported in ``rollback_failures``.

        Args:
            items: Patches with their target files, in application order

        Returns:
            BatchResult describing what was applied and what was undone
        """
        items = list(items)
        applied: list[BatchItem] = []

        log.info("applying_patch_batch", count=len(items))

        for item in items:
            if not self.apply_patch(item.file_path, item.patch):
                return self._rollback(applied, item)
            applied.append(item)

        log.info("patch_batch_applied", count=len(applied))
        return BatchResult(applied_count=len(applied))

    def _rollback(self, applied: list[BatchItem], failed: BatchItem) -> BatchResult:
        reason = f"Failed to apply patch to {failed.file_path}"
        log.error("patch_batch_failed", reason=reason, rolling_back=len(applied))

        rollback_failures: list[BatchItem] = []
        for item in reversed(applied):
            if not self.revert_patch(item.file_path, item.patch):
                log.error(LogEventNames.ROLLBACK_FAILED, file_path=str(item.file_path))
                rollback_failures.append(item)

        self._metrics.batches_rolled_back.inc()
        if rollback_failures:
            self._metrics.rollback_failures.inc(len(rollback_failures))

        log.warning(
            LogEventNames.BATCH_ROLLED_BACK,
            reverted=len(applied) - len(rollback_failures),
            rollback_failures=len(rollback_failures),
        )

        return BatchResult(
            applied_count=len(rollback_failures),
            rolled_back=True,
            failure_reason=reason,
            failed_item=failed,
            rollback_failures=tuple(rollback_failures),
        )

    def _apply_to_file(self, path: Path, patch: Patch) -> None:
        if not path.is_file():
            raise PatchError(f"File not found: {path}")

        try:
            with path.open(encoding="utf-8", newline="") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise PatchError(f"Failed to read {path}: {e}") from e

        if not validate(content, patch):
            raise ValidationMismatchError("Patch context does not match file; patch is stale")

        # Rule patches carry no context, so their removed lines are the only check.
        strict = self._strict or patch.source == PatchSource.PATTERN
        new_content = apply_diff(content, patch.diff, strict=strict)

        try:
            with path.open("w", encoding="utf-8", newline="") as f:
                f.write(new_content)
        except OSError as e:
            raise PatchError(f"Failed to write {path}: {e}") from e
