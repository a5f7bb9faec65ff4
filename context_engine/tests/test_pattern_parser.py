"""
Tests for Pattern Parser and Pattern Library

Tests for parsing context-triggers.md into structured patterns and
compiling them into an immutable library.
"""

import pytest


class TestPatternParser:
    """Tests for pattern parsing functionality"""

    def test_parse_weights_and_priorities(self, tmp_path):
        """Explicit weights win; otherwise the priority section decides"""
        from context_engine.scribe.pattern_parser import parse_context_triggers

        md_content = """# Triggers

## Decisions

### High Priority
- `\\bwe decided to ([^.]+)` (0.9)
- `\\bdecision:\\s*([^.]+)`

### Medium Priority
- `\\bgoing forward ([^.]+)`
"""
        md_file = tmp_path / "triggers.md"
        md_file.write_text(md_content)

        patterns = parse_context_triggers(str(md_file))

        assert [p["weight"] for p in patterns] == [0.9, 0.8, 0.6]
        assert [p["priority"] for p in patterns] == ["high", "high", "medium"]
        assert all(p["category"] == "decision" for p in patterns)
        assert patterns[0]["pattern"] == "\\bwe decided to ([^.]+)"

    def test_category_aliases(self, tmp_path):
        """Section names map onto target categories"""
        from context_engine.scribe.pattern_parser import parse_context_triggers

        md_content = """## Known Issues
- `\\bbug: ([^.]+)`

## Objectives
- `\\bmilestone: ([^.]+)`
"""
        md_file = tmp_path / "triggers.md"
        md_file.write_text(md_content)

        patterns = parse_context_triggers(str(md_file))

        assert [p["category"] for p in patterns] == ["issue", "goal"]

    def test_html_comments_skipped(self, tmp_path):
        from context_engine.scribe.pattern_parser import parse_context_triggers

        md_content = """## Preferences
<!--
- `\\bcommented out ([^.]+)`
-->
- `\\balways use ([^.]+)` (0.85)
"""
        md_file = tmp_path / "triggers.md"
        md_file.write_text(md_content)

        patterns = parse_context_triggers(str(md_file))

        assert len(patterns) == 1
        assert "always use" in patterns[0]["pattern"]

    def test_lines_before_first_category_ignored(self, tmp_path):
        from context_engine.scribe.pattern_parser import parse_context_triggers

        md_file = tmp_path / "triggers.md"
        md_file.write_text("- `orphan ([^.]+)`\n\n## Goals\n- `\\bgoal: ([^.]+)`\n")

        patterns = parse_context_triggers(str(md_file))

        assert len(patterns) == 1
        assert patterns[0]["category"] == "goal"

    def test_missing_file_raises(self, tmp_path):
        from context_engine.scribe.pattern_parser import parse_context_triggers

        with pytest.raises(FileNotFoundError):
            parse_context_triggers(str(tmp_path / "nope.md"))

    def test_load_default_falls_back_to_builtin(self, tmp_path):
        from context_engine.scribe.pattern_parser import get_builtin_patterns, load_default_patterns

        patterns = load_default_patterns(str(tmp_path / "missing.md"))

        assert patterns == get_builtin_patterns()

    def test_shipped_file_matches_builtin(self):
        """patterns/context-triggers.md and the built-in set stay in sync"""
        from context_engine.scribe.pattern_parser import (
            DEFAULT_PATTERNS_PATH,
            get_builtin_patterns,
            parse_context_triggers,
        )

        if not DEFAULT_PATTERNS_PATH.exists():
            pytest.skip("patterns file not shipped with this install")

        parsed = parse_context_triggers(str(DEFAULT_PATTERNS_PATH))
        builtin = get_builtin_patterns()

        assert len(parsed) == len(builtin)
        assert [(p["category"], p["weight"]) for p in parsed] == \
               [(p["category"], p["weight"]) for p in builtin]


class TestPatternLibrary:
    """Tests for the compiled, immutable library"""

    @pytest.fixture
    def library(self):
        from context_engine.common.pattern_library import PatternLibrary
        from context_engine.scribe.pattern_parser import get_builtin_patterns

        return PatternLibrary(get_builtin_patterns())

    def test_builtin_library_compiles(self, library):
        from context_engine.common.pattern_library import TargetCategory

        assert library.pattern_count == 18
        assert len(library) == 18
        assert set(library.categories()) == set(TargetCategory)

    def test_base_weight_is_lowest_in_category(self, library):
        from context_engine.common.pattern_library import TargetCategory

        assert library.base_weight(TargetCategory.DECISION) == pytest.approx(0.6)
        assert library.base_weight(TargetCategory.PREFERENCE) == pytest.approx(0.6)
        assert library.base_weight("issue") == pytest.approx(0.6)

    def test_patterns_for_keeps_declaration_order(self, library):
        from context_engine.common.pattern_library import TargetCategory

        weights = [e.weight for e in library.patterns_for(TargetCategory.DECISION)]
        assert weights == [0.8, 0.85, 0.75, 0.75, 0.6]
        assert isinstance(library.patterns_for(TargetCategory.DECISION), tuple)

    def test_empty_category(self):
        from context_engine.common.pattern_library import PatternLibrary, TargetCategory

        library = PatternLibrary([{"pattern": r"\bgoal: (.+)", "category": "goal", "weight": 0.8}])

        assert library.patterns_for(TargetCategory.ISSUE) == ()
        assert library.base_weight(TargetCategory.ISSUE) == 0.0
        assert library.categories() == [TargetCategory.GOAL]

    @pytest.mark.parametrize("raw", [
        {"pattern": r"\bdecided to ([^.]+", "category": "decision", "weight": 0.8},
        {"pattern": r"\bdecided to [^.]+", "category": "decision", "weight": 0.8},
        {"pattern": r"\bdecided to ([^.]+)", "category": "decision", "weight": 1.5},
        {"pattern": r"\bdecided to ([^.]+)", "category": "decision", "weight": -0.1},
        {"pattern": r"\bdecided to ([^.]+)", "category": "decision", "weight": None},
        {"pattern": r"\bdecided to ([^.]+)", "category": "rumour", "weight": 0.5},
        {"pattern": "", "category": "decision", "weight": 0.5},
    ])
    def test_malformed_trigger_fails_fast(self, raw):
        from context_engine.common.errors import PatternError
        from context_engine.common.pattern_library import PatternLibrary

        with pytest.raises(PatternError):
            PatternLibrary([raw])

    def test_from_markdown(self, tmp_path):
        from context_engine.common.pattern_library import PatternLibrary, TargetCategory

        md_file = tmp_path / "triggers.md"
        md_file.write_text("## Goals\n### High Priority\n- `\\bgoal: ([^.]+)`\n")

        library = PatternLibrary.from_markdown(str(md_file))

        assert library.pattern_count == 1
        assert library.base_weight(TargetCategory.GOAL) == pytest.approx(0.8)

    def test_from_markdown_bad_regex(self, tmp_path):
        from context_engine.common.errors import PatternError
        from context_engine.common.pattern_library import PatternLibrary

        md_file = tmp_path / "triggers.md"
        md_file.write_text("## Goals\n- `\\bgoal: ([^.]+`\n")

        with pytest.raises(PatternError):
            PatternLibrary.from_markdown(str(md_file))
