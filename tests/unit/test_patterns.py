"""Tests for tier-1 pattern rules."""

import pytest

from migration_repair.core.patch_engine import apply_diff, parse_diff
from migration_repair.core.patterns import (
    PatternMatcher,
    PatternRegistry,
    PatternRule,
    builtin_rules,
)
from migration_repair.models.diagnostic import Diagnostic, ErrorCluster
from migration_repair.models.patch import Patch, PatchSource


def make_cluster(*diagnostics: Diagnostic) -> ErrorCluster:
    return ErrorCluster(
        id="cluster-1",
        pattern="pattern",
        representative=diagnostics[0],
        instances=tuple(diagnostics),
    )


def make_rule(rule_id: str, needle: str = "boom") -> PatternRule:
    return PatternRule(
        id=rule_id,
        name=rule_id,
        description="test rule",
        predicate=lambda d: needle in d.message,
        generate=lambda d: Patch(diff="", description=rule_id, file_path=d.file_path),
    )


class TestPatternRegistry:
    """Test PatternRegistry ordering and uniqueness."""

    def test_default_has_builtin_rules_in_order(self) -> None:
        """Test the default registry priority order."""
        registry = PatternRegistry.default()
        assert registry.rule_ids == ["http-module-deprecation", "rxjs-operators", "entry-components"]
        assert len(registry) == 3

    def test_duplicate_id_rejected(self) -> None:
        """Test registering the same id twice raises."""
        registry = PatternRegistry([make_rule("one")])
        with pytest.raises(ValueError, match="Duplicate pattern rule id"):
            registry.register(make_rule("one"))

    def test_get(self) -> None:
        """Test looking up rules by id."""
        registry = PatternRegistry([make_rule("one"), make_rule("two")])
        assert registry.get("two") is not None
        assert registry.get("two").id == "two"
        assert registry.get("missing") is None

    def test_register_appends_lowest_priority(self) -> None:
        """Test register adds at the end."""
        registry = PatternRegistry([make_rule("one")])
        registry.register(make_rule("two"))
        assert [rule.id for rule in registry] == ["one", "two"]


class TestPatternMatcher:
    """Test PatternMatcher matching and fix generation."""

    def test_first_matching_rule_wins(self) -> None:
        """Test earlier rules take priority."""
        registry = PatternRegistry([make_rule("first"), make_rule("second")])
        matcher = PatternMatcher(registry)
        cluster = make_cluster(Diagnostic("a.ts", 1, "boom happened"))

        rule = matcher.match_pattern(cluster)

        assert rule is not None
        assert rule.id == "first"

    def test_no_match_returns_none(self) -> None:
        """Test an unmatched cluster returns None."""
        matcher = PatternMatcher(PatternRegistry([make_rule("only")]))
        cluster = make_cluster(Diagnostic("a.ts", 1, "something else"))

        assert matcher.match_pattern(cluster) is None

    def test_only_representative_is_inspected(self) -> None:
        """Test matching looks at the representative alone."""
        matcher = PatternMatcher(PatternRegistry([make_rule("only")]))
        cluster = make_cluster(
            Diagnostic("a.ts", 1, "quiet"),
            Diagnostic("b.ts", 1, "boom"),
        )

        assert matcher.match_pattern(cluster) is None

    def test_empty_registry(self) -> None:
        """Test an explicitly empty registry matches nothing."""
        matcher = PatternMatcher(PatternRegistry())
        assert matcher.match_pattern(make_cluster(Diagnostic("a.ts", 1, "boom"))) is None

    def test_generate_fixes_one_per_instance(self) -> None:
        """Test one patch per instance in instance order."""
        rule = make_rule("one")
        cluster = make_cluster(
            Diagnostic("a.ts", 1, "boom"),
            Diagnostic("b.ts", 2, "boom"),
        )

        patches = PatternMatcher(PatternRegistry([rule])).generate_fixes(cluster, rule)

        assert [p.file_path for p in patches] == ["a.ts", "b.ts"]

    def test_generate_fixes_skips_none(self) -> None:
        """Test instances the rule declines are dropped."""
        rule = PatternRule(
            id="picky",
            name="picky",
            description="",
            predicate=lambda d: True,
            generate=lambda d: None if d.line_number == 2 else Patch("", "", d.file_path),
        )
        cluster = make_cluster(
            Diagnostic("a.ts", 1, "x"),
            Diagnostic("b.ts", 2, "x"),
            Diagnostic("c.ts", 3, "x"),
        )

        patches = PatternMatcher(PatternRegistry([rule])).generate_fixes(cluster, rule)

        assert [p.file_path for p in patches] == ["a.ts", "c.ts"]

    def test_predicate_errors_propagate(self) -> None:
        """Test a raising predicate is not swallowed."""

        def explode(diagnostic: Diagnostic) -> bool:
            raise RuntimeError("bad rule")

        rule = PatternRule("bad", "bad", "", explode, lambda d: None)
        matcher = PatternMatcher(PatternRegistry([rule]))

        with pytest.raises(RuntimeError, match="bad rule"):
            matcher.match_pattern(make_cluster(Diagnostic("a.ts", 1, "x")))


class TestBuiltinRules:
    """Test the built-in Angular migration rules."""

    @pytest.fixture
    def rules(self) -> dict[str, PatternRule]:
        return {rule.id: rule for rule in builtin_rules()}

    def test_http_module_matches(self, rules: dict[str, PatternRule], http_module_error: Diagnostic) -> None:
        """Test the HttpModule rule accepts the compiler message."""
        assert rules["http-module-deprecation"].matches(http_module_error)

    def test_http_module_deprecated_matches(self, rules: dict[str, PatternRule]) -> None:
        """Test the deprecation wording is accepted too."""
        diagnostic = Diagnostic("app.module.ts", 12, "'HttpModule' is deprecated.")
        assert rules["http-module-deprecation"].matches(diagnostic)

    def test_http_module_patch(self, rules: dict[str, PatternRule], http_module_error: Diagnostic) -> None:
        """Test the HttpModule patch targets the diagnostic line."""
        patch = rules["http-module-deprecation"].generate(http_module_error)

        assert patch is not None
        assert patch.source == PatchSource.PATTERN
        assert patch.file_path == "src/app/app.module.ts"
        (hunk,) = parse_diff(patch.diff)
        assert hunk.old_start == 2
        assert hunk.removed_lines == ("import { HttpModule } from '@angular/http';",)
        assert hunk.added_lines == ("import { HttpClientModule } from '@angular/common/http';",)

    def test_http_module_patch_applies(self, rules: dict[str, PatternRule], http_module_error: Diagnostic) -> None:
        """Test the generated hunk rewrites the import line."""
        content = "import { NgModule } from '@angular/core';\nimport { HttpModule } from '@angular/http';\n"
        patch = rules["http-module-deprecation"].generate(http_module_error)

        result = apply_diff(content, patch.diff)

        assert result == (
            "import { NgModule } from '@angular/core';\n"
            "import { HttpClientModule } from '@angular/common/http';\n"
        )

    @pytest.mark.parametrize("operator", ["map", "switchMap", "tap"])
    def test_rxjs_known_operators(self, rules: dict[str, PatternRule], operator: str) -> None:
        """Test each known operator gets a pipeable import."""
        diagnostic = Diagnostic("svc.ts", 3, f"Module 'rxjs' has no exported member '{operator}'.")
        rule = rules["rxjs-operators"]

        assert rule.matches(diagnostic)
        patch = rule.generate(diagnostic)
        assert patch is not None
        (hunk,) = parse_diff(patch.diff)
        assert hunk.removed_lines == (f"import 'rxjs/add/operator/{operator}';",)
        assert hunk.added_lines == (f"import {{ {operator} }} from 'rxjs/operators';",)

    def test_rxjs_unknown_operator_produces_nothing(self, rules: dict[str, PatternRule]) -> None:
        """Test operators outside the known set are declined."""
        diagnostic = Diagnostic("svc.ts", 3, "Module 'rxjs' has no exported member 'debounceTime'.")
        rule = rules["rxjs-operators"]

        assert rule.matches(diagnostic)
        assert rule.generate(diagnostic) is None

    def test_entry_components(self, rules: dict[str, PatternRule]) -> None:
        """Test the entryComponents rule removes the block."""
        diagnostic = Diagnostic(
            "app.module.ts",
            8,
            "Object literal may only specify known properties, "
            "and 'entryComponents' does not exist in type 'NgModule'.",
        )
        rule = rules["entry-components"]

        assert rule.matches(diagnostic)
        patch = rule.generate(diagnostic)
        (hunk,) = parse_diff(patch.diff)
        assert hunk.old_start == 8
        assert hunk.old_count == 3
        assert hunk.new_count == 0
        assert hunk.added_lines == ()

    def test_unrelated_message_matches_nothing(self) -> None:
        """Test an ordinary error has no built-in rule."""
        matcher = PatternMatcher()
        cluster = make_cluster(Diagnostic("a.ts", 1, "Cannot find name 'foo'."))
        assert matcher.match_pattern(cluster) is None
