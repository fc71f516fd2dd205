"""Tests for ignore rule matching."""

from pathlib import Path

import pytest

from gitbak.core.errors import ConfigError, IgnorePatternError
from gitbak.core.ignore import IgnoreRules, MatchMode, parse_rule, should_ignore

RULES = ["*.log", "!important.log", "build/"]


def test_plain_glob_matches_at_any_depth() -> None:
    """Test that unanchored rules match in any directory."""
    assert should_ignore("/home/me/app/debug.log", RULES) == (True, "*.log")
    assert should_ignore("/home/me/app/deep/er/x.log", RULES) == (True, "*.log")
    assert should_ignore("/home/me/app/init.lua", RULES) == (False, "")


def test_negation_reincludes_path() -> None:
    """Test that a later negated rule wins over an earlier exclusion."""
    assert should_ignore("/home/me/app/important.log", RULES) == (False, "!important.log")


def test_directory_only_rule() -> None:
    """Test that a trailing slash only matches directories."""
    assert should_ignore("/home/me/app/build", RULES, is_dir=True) == (True, "build/")
    assert should_ignore("/home/me/app/build", RULES, is_dir=False) == (False, "")


def test_first_match_mode_ignores_negations() -> None:
    """Test the historic mode returning on the first excluding rule."""
    ignored, rule = should_ignore(
        "/home/me/app/important.log", RULES, mode=MatchMode.FIRST_MATCH
    )
    assert ignored
    assert rule == "*.log"

    # A negation matching first does not stop a later exclusion.
    rules = ["!important.log", "*.log"]
    assert should_ignore("/x/important.log", rules, mode="first-match") == (True, "*.log")


def test_last_match_later_negation_of_directory() -> None:
    """Test that the last matching rule decides."""
    rules = IgnoreRules(["build/", "!build/"])
    assert rules.match("/x/build", is_dir=True) == (False, "!build/")


def test_anchored_rule() -> None:
    """Test that a leading slash anchors the rule."""
    assert should_ignore("/etc/hosts", ["/etc/hosts"]) == (True, "/etc/hosts")
    assert should_ignore("/srv/etc/hosts", ["/etc/hosts"]) == (False, "")


def test_single_star_stays_within_segment() -> None:
    """Test that ``*`` does not cross directory separators."""
    assert should_ignore("/tmp/a.txt", ["/tmp/*.txt"])[0]
    assert not should_ignore("/tmp/sub/a.txt", ["/tmp/*.txt"])[0]


def test_double_star() -> None:
    """Test that ``**`` spans any number of directories."""
    assert should_ignore("/p/node_modules", ["node_modules/**"])[0]
    assert should_ignore("/p/node_modules/pkg/index.js", ["node_modules/**"])[0]

    assert should_ignore("/p/docs/a/b/c.md", ["docs/**/*.md"])[0]
    assert should_ignore("/p/docs/c.md", ["docs/**/*.md"])[0]
    assert not should_ignore("/p/other/c.md", ["docs/**/*.md"])[0]


@pytest.mark.parametrize(
    "pattern,path,expected",
    [
        ("file?.txt", "/x/file1.txt", True),
        ("file?.txt", "/x/file10.txt", False),
        ("[abc].txt", "/x/b.txt", True),
        ("[abc].txt", "/x/d.txt", False),
        ("[!abc].txt", "/x/d.txt", True),
        ("[!abc].txt", "/x/a.txt", False),
        ("[a-c].txt", "/x/b.txt", True),
        ("*.{yml,yaml}", "/x/config.yaml", True),
        ("*.{yml,yaml}", "/x/config.json", False),
        ("\\#file", "/x/#file", True),
    ],
)
def test_glob_syntax(pattern: str, path: str, expected: bool) -> None:
    """Test wildcard, class, alternation and escape syntax."""
    assert should_ignore(path, [pattern])[0] is expected


@pytest.mark.parametrize("pattern", ["[abc", "{a,b", "foo\\", "[z-a].txt"])
def test_malformed_pattern(pattern: str) -> None:
    """Test that malformed globs are reported."""
    with pytest.raises(IgnorePatternError) as exc_info:
        IgnoreRules([pattern])
    assert isinstance(exc_info.value, ConfigError)
    assert pattern.rstrip("\\") in exc_info.value.pattern


def test_comments_and_blank_lines_are_skipped() -> None:
    """Test that comments and blank lines produce no rules."""
    rules = IgnoreRules(["# comment", "", "   ", "*.log"])
    assert len(rules) == 1
    assert parse_rule("# *.log") is None
    assert parse_rule("   ") is None


def test_escaped_trailing_space() -> None:
    """Test that an escaped trailing space is kept."""
    rules = IgnoreRules(["name\\ "])
    assert rules.match("/x/name ")[0]
    assert not rules.match("/x/name")[0]


def test_unescaped_trailing_whitespace_is_trimmed() -> None:
    """Test that trailing whitespace is trimmed."""
    rule = parse_rule("  *.swp   ")
    assert rule is not None
    assert rule.pattern == "*.swp"
    assert rule.text == "*.swp"


def test_backslash_separators() -> None:
    """Test that backslashes in paths are treated as separators."""
    assert should_ignore("C:\\Users\\me\\app.log", ["*.log"]) == (True, "*.log")


def test_path_objects() -> None:
    """Test matching a Path instead of a string."""
    assert IgnoreRules(RULES).match(Path("/x/y/trace.log")) == (True, "*.log")


def test_empty_rules_ignore_nothing() -> None:
    """Test matching without rules."""
    assert should_ignore("/x/anything", []) == (False, "")
    assert len(IgnoreRules()) == 0
