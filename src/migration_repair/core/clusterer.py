"""Grouping of compiler diagnostics into recurring error patterns.

Diagnostics whose messages differ only in volatile tokens (quoted names,
numbers, file paths) share a pattern key and land in the same cluster, so
each pattern is fixed or sent to the generator once instead of once per
occurrence.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

import structlog

from migration_repair.models.diagnostic import Diagnostic, ErrorCluster

log = structlog.get_logger()

# Substitution order matters: quoted strings first so digits and paths inside
# them are absorbed, then digits, then paths.
QUOTED_PATTERN = re.compile(r"['\"][^'\"]*['\"]")
NUMBER_PATTERN = re.compile(r"\d+")
PATH_PATTERN = re.compile(r"(/[\w\-.]+)+")

STRING_TOKEN = "<STRING>"
NUMBER_TOKEN = "<NUM>"
PATH_TOKEN = "<PATH>"


def pattern_key(message: str) -> str:
    """Normalize a diagnostic message into its clustering key.

    Example:
        >>> pattern_key("Cannot find name 'foo123' at line 45")
        'Cannot find name <STRING> at line <NUM>'
    """
    key = QUOTED_PATTERN.sub(STRING_TOKEN, message)
    key = NUMBER_PATTERN.sub(NUMBER_TOKEN, key)
    key = PATH_PATTERN.sub(PATH_TOKEN, key)
    return key.strip()


class ErrorClusterer:
    """Partitions diagnostics into clusters keyed by ``pattern_key``.

    Clusters come back in the order their key was first seen, and each
    cluster keeps its instances in input order. The first diagnostic for a
    key is the cluster's representative.

    Example:
        clusters = ErrorClusterer().cluster_errors(diagnostics)
        for cluster in clusters:
            print(cluster.id, cluster.pattern, cluster.size)
    """

    def cluster_errors(self, diagnostics: Iterable[Diagnostic]) -> list[ErrorCluster]:
        """Group diagnostics sharing a pattern key.

        Args:
            diagnostics: Diagnostics in the order the analyzer reported them

        Returns:
            Clusters in first-seen key order; empty for empty input
        """
        groups: dict[str, list[Diagnostic]] = {}

        for diagnostic in diagnostics:
            key = pattern_key(diagnostic.message)
            groups.setdefault(key, []).append(diagnostic)

        clusters = [
            ErrorCluster(
                id=f"cluster-{index}",
                pattern=key,
                representative=instances[0],
                instances=tuple(instances),
            )
            for index, (key, instances) in enumerate(groups.items(), start=1)
        ]

        log.debug(
            "diagnostics_clustered",
            diagnostics=sum(c.size for c in clusters),
            clusters=len(clusters),
        )
        return clusters
