"""Deterministic fix rules for known migration error patterns (tier 1).

A rule pairs a predicate over a diagnostic's message with a generator that
turns one diagnostic into a patch. Rules live in an ordered registry: when
several rules accept the same diagnostic, the earliest registered wins.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

import structlog

from migration_repair.models.diagnostic import Diagnostic, ErrorCluster
from migration_repair.models.patch import Patch, PatchSource
from migration_repair.utils.logging import LogEventNames

log = structlog.get_logger()

Predicate = Callable[[Diagnostic], bool]
FixGenerator = Callable[[Diagnostic], Patch | None]


@dataclass(frozen=True)
class PatternRule:
    """A known error pattern and how to fix a single occurrence of it."""

    id: str
    name: str
    description: str
    predicate: Predicate
    generate: FixGenerator

    def matches(self, diagnostic: Diagnostic) -> bool:
        return self.predicate(diagnostic)


class PatternRegistry:
    """Ordered collection of pattern rules.

    Registration order is priority order. Rule ids must be unique.
    """

    def __init__(self, rules: Iterable[PatternRule] = ()) -> None:
        self._rules: list[PatternRule] = []
        for rule in rules:
            self.register(rule)

    def register(self, rule: PatternRule) -> None:
        """Append a rule at the lowest priority.

        Raises:
            ValueError: If a rule with the same id is already registered
        """
        if any(existing.id == rule.id for existing in self._rules):
            raise ValueError(f"Duplicate pattern rule id: {rule.id}")
        self._rules.append(rule)

    def get(self, rule_id: str) -> PatternRule | None:
        return next((rule for rule in self._rules if rule.id == rule_id), None)

    @property
    def rule_ids(self) -> list[str]:
        return [rule.id for rule in self._rules]

    def __iter__(self) -> Iterator[PatternRule]:
        return iter(list(self._rules))

    def __len__(self) -> int:
        return len(self._rules)

    @classmethod
    def default(cls) -> PatternRegistry:
        """Registry holding the built-in Angular migration rules."""
        return cls(builtin_rules())


def _line_patch(
    diagnostic: Diagnostic,
    removed: list[str],
    added: list[str],
    description: str,
) -> Patch:
    """Patch replacing ``removed`` lines starting at the diagnostic's line."""
    start = diagnostic.line_number
    body = [f"-{line}" for line in removed] + [f"+{line}" for line in added]
    diff = "\n".join(
        [
            f"--- a/{diagnostic.file_path}",
            f"+++ b/{diagnostic.file_path}",
            f"@@ -{start},{len(removed)} +{start},{len(added)} @@",
            *body,
        ]
    )
    return Patch(
        diff=diff + "\n",
        description=description,
        file_path=diagnostic.file_path,
        source=PatchSource.PATTERN,
    )


# -----------------------------------------------------------------------------
# Built-in rules
# -----------------------------------------------------------------------------

RXJS_OPERATORS = ("map", "switchMap", "tap")
MISSING_MEMBER = re.compile(r"has no exported member '([A-Za-z_$][\w$]*)'")


def _is_http_module_error(diagnostic: Diagnostic) -> bool:
    message = diagnostic.message
    return "HttpModule" in message and (
        "deprecated" in message or "has no exported member" in message
    )


def _fix_http_module(diagnostic: Diagnostic) -> Patch | None:
    return _line_patch(
        diagnostic,
        removed=["import { HttpModule } from '@angular/http';"],
        added=["import { HttpClientModule } from '@angular/common/http';"],
        description="Replace HttpModule with HttpClientModule",
    )


def _is_rxjs_operator_error(diagnostic: Diagnostic) -> bool:
    return "rxjs" in diagnostic.message and "has no exported member" in diagnostic.message


def _fix_rxjs_operator(diagnostic: Diagnostic) -> Patch | None:
    match = MISSING_MEMBER.search(diagnostic.message)
    if match and match.group(1) in RXJS_OPERATORS:
        operator = match.group(1)
    else:
        # Member name not quoted the usual way; look for a known operator.
        operator = next((op for op in RXJS_OPERATORS if op in diagnostic.message), None)
    if operator is None:
        return None

    return _line_patch(
        diagnostic,
        removed=[f"import 'rxjs/add/operator/{operator}';"],
        added=[f"import {{ {operator} }} from 'rxjs/operators';"],
        description=f"Update RxJS {operator} operator import",
    )


def _is_entry_components_error(diagnostic: Diagnostic) -> bool:
    return "entryComponents" in diagnostic.message and "does not exist" in diagnostic.message


def _fix_entry_components(diagnostic: Diagnostic) -> Patch | None:
    return _line_patch(
        diagnostic,
        removed=["  entryComponents: [", "    MyComponent", "  ],"],
        added=[],
        description="Remove deprecated entryComponents",
    )


def builtin_rules() -> list[PatternRule]:
    """Built-in rules in priority order."""
    return [
        PatternRule(
            id="http-module-deprecation",
            name="HttpModule Deprecation",
            description="Replaces deprecated HttpModule with HttpClientModule",
            predicate=_is_http_module_error,
            generate=_fix_http_module,
        ),
        PatternRule(
            id="rxjs-operators",
            name="RxJS Operators",
            description="Fixes old RxJS operator imports",
            predicate=_is_rxjs_operator_error,
            generate=_fix_rxjs_operator,
        ),
        PatternRule(
            id="entry-components",
            name="Remove entryComponents",
            description="Removes deprecated entryComponents property",
            predicate=_is_entry_components_error,
            generate=_fix_entry_components,
        ),
    ]


class PatternMatcher:
    """Matches error clusters against the rule registry.

    Example:
        matcher = PatternMatcher()
        rule = matcher.match_pattern(cluster)
        if rule is not None:
            patches = matcher.generate_fixes(cluster, rule)
    """

    def __init__(self, registry: PatternRegistry | None = None) -> None:
        """Initialize the PatternMatcher.

        Args:
            registry: Rules to match against (defaults to the built-in rules)
        """
        self._registry = registry if registry is not None else PatternRegistry.default()

    @property
    def registry(self) -> PatternRegistry:
        return self._registry

    def match_pattern(self, cluster: ErrorCluster) -> PatternRule | None:
        """Return the first rule accepting the cluster's representative.

        Only the representative is inspected. ``None`` means the cluster
        should go to the generator; it is not an error.
        """
        for rule in self._registry:
            if rule.matches(cluster.representative):
                log.info(LogEventNames.PATTERN_MATCHED, cluster_id=cluster.id, rule_id=rule.id)
                return rule

        log.debug(LogEventNames.PATTERN_NO_MATCH, cluster_id=cluster.id, pattern=cluster.pattern)
        return None

    def generate_fixes(self, cluster: ErrorCluster, rule: PatternRule) -> list[Patch]:
        """Generate one patch per cluster instance, in instance order.

        Instances for which the rule cannot produce a safe fix are skipped,
        so the result may be shorter than ``cluster.instances``.
        """
        patches: list[Patch] = []
        for instance in cluster.instances:
            patch = rule.generate(instance)
            if patch is not None:
                patches.append(patch)

        log.debug(
            "pattern_fixes_generated",
            cluster_id=cluster.id,
            rule_id=rule.id,
            instances=cluster.size,
            patches=len(patches),
        )
        return patches
