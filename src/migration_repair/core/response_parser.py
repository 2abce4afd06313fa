"""Parsing of raw fix-generator responses into patches.

Parsing happens in two explicit stages:

1. Strict: find a JSON payload (a fenced ``json`` block, or a bare object
   containing ``"patches"``) and validate it against ``PatchListResponse``.
2. Fallback: if no valid payload exists, recover fenced ``diff`` blocks,
   taking the target file from their ``+++`` headers where present.

Both stages return a ``GeneratorResponse`` instead of raising, so callers
branch on ``status`` rather than on exceptions.
"""

from __future__ import annotations

import json
import re

import structlog
from pydantic import BaseModel, Field, ValidationError

from migration_repair.models.generation import GeneratorResponse, ParseStatus
from migration_repair.models.patch import Patch, PatchSource

log = structlog.get_logger()

UNKNOWN_FILE = "unknown"
DEFAULT_DESCRIPTION = "Generated patch"

JSON_BLOCK = re.compile(r"```json\s*\n(.*?)\n\s*```", re.DOTALL)
BARE_JSON = re.compile(r"\{.*\"patches\".*\}", re.DOTALL)
DIFF_BLOCK = re.compile(r"```diff\s*\n(.*?)\n```", re.DOTALL)
TARGET_HEADER = re.compile(r"^\+\+\+ (?:b/)?(\S+)", re.MULTILINE)


class PatchResponse(BaseModel):
    """A single patch as described by the generator."""

    diff: str = Field(min_length=1, max_length=20000)
    description: str = Field(default=DEFAULT_DESCRIPTION, max_length=1000)
    file_path: str = Field(default=UNKNOWN_FILE, alias="filePath", max_length=500)

    model_config = {"populate_by_name": True}


class PatchListResponse(BaseModel):
    """Top-level generator payload."""

    patches: list[PatchResponse] = Field(default=[], max_length=20)


def _find_json_payload(text: str) -> str | None:
    block = JSON_BLOCK.search(text)
    if block:
        return block.group(1)
    bare = BARE_JSON.search(text)
    if bare:
        return bare.group(0)
    return None


def parse_strict(text: str) -> GeneratorResponse:
    """Stage one: extract and validate the JSON patch payload."""
    payload = _find_json_payload(text)
    if payload is None:
        return GeneratorResponse(status=ParseStatus.FAILURE, error="No JSON payload found")

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        return GeneratorResponse(status=ParseStatus.FAILURE, error=f"Invalid JSON: {e}")

    try:
        parsed = PatchListResponse.model_validate(data)
    except ValidationError as e:
        return GeneratorResponse(
            status=ParseStatus.FAILURE,
            error=f"Payload failed validation: {e.error_count()} errors",
        )

    patches = tuple(
        Patch(
            diff=item.diff,
            description=item.description or DEFAULT_DESCRIPTION,
            file_path=item.file_path or UNKNOWN_FILE,
            source=PatchSource.GENERATED,
        )
        for item in parsed.patches
    )
    return GeneratorResponse(status=ParseStatus.SUCCESS, patches=patches)


def _target_file(diff: str) -> str:
    """File named by a diff's ``+++`` header, or ``unknown``."""
    match = TARGET_HEADER.search(diff)
    if match is None or match.group(1) == "/dev/null":
        return UNKNOWN_FILE
    return match.group(1)


def parse_diff_blocks(text: str) -> GeneratorResponse:
    """Stage two: recover fenced diff blocks.

    The target file is taken from each block's ``+++`` header when present.
    """
    blocks = DIFF_BLOCK.findall(text)
    if not blocks:
        return GeneratorResponse(status=ParseStatus.FAILURE, error="No diff blocks found")

    patches = tuple(
        Patch(
            diff=block,
            description=f"{DEFAULT_DESCRIPTION} {index}",
            file_path=_target_file(block),
            source=PatchSource.GENERATED,
        )
        for index, block in enumerate(blocks, start=1)
    )
    return GeneratorResponse(status=ParseStatus.PARTIAL, patches=patches)


def parse_generator_response(text: str) -> GeneratorResponse:
    """Parse a raw generator response, falling back to diff extraction.

    Args:
        text: Raw text returned by the generator

    Returns:
        SUCCESS with validated patches, PARTIAL with fenced diff
        blocks, or FAILURE with the strict stage's error
    """
    strict = parse_strict(text)
    if strict.status == ParseStatus.SUCCESS:
        log.debug("generator_response_parsed", patches=len(strict.patches))
        return strict

    fallback = parse_diff_blocks(text)
    if fallback.status == ParseStatus.PARTIAL:
        log.info(
            "generator_response_fallback",
            reason=strict.error,
            diff_blocks=len(fallback.patches),
        )
        return fallback

    log.warning("generator_response_unparseable", reason=strict.error, preview=text[:200])
    return GeneratorResponse(status=ParseStatus.FAILURE, error=strict.error)
