"""Gitignore-style path exclusion.

Rules follow a subset of ``.gitignore`` syntax:

- blank lines and lines starting with ``#`` are skipped;
- leading whitespace is trimmed, trailing whitespace too unless the last
  space is escaped (``foo\\ ``);
- a leading ``!`` negates the rule;
- a trailing ``/`` restricts the rule to directories;
- a leading ``/`` anchors the rule to the root of the matched path, any other
  rule matches at any depth (it is prefixed with ``**/``).

Globs use doublestar semantics: ``*`` and ``?`` stay within one path
segment, a ``**`` segment spans any number of segments, ``[...]`` is a
character class and ``{a,b}`` an alternation.

Example:
    ```python
    rules = IgnoreRules(["*.log", "!important.log", "build/"])
    rules.match("/home/me/app/a.log")                  # (True, "*.log")
    rules.match("/home/me/app/important.log")          # (False, "!important.log")
    rules.match("/home/me/app/build", is_dir=True)     # (True, "build/")
    rules.match("/home/me/app/build", is_dir=False)    # (False, "")
    ```
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import PurePath
from typing import Iterable, List, Optional, Pattern, Tuple, Union

from .errors import IgnorePatternError


class MatchMode(str, Enum):
    """How a list of rules turns into a decision."""

    # The last matching rule decides; a matching "!rule" re-includes a path.
    LAST_MATCH = "last-match"
    # Historic behavior: the first non-negated match ignores the path at once.
    FIRST_MATCH = "first-match"


@dataclass(frozen=True)
class IgnoreRule:
    """One compiled ignore line."""

    text: str
    pattern: str
    negate: bool
    dir_only: bool
    regex: Pattern[str]

    def matches(self, path: str, is_dir: bool) -> bool:
        """Return True if this rule's glob matches ``path``."""
        if self.dir_only and not is_dir:
            return False
        return self.regex.fullmatch(path) is not None


def parse_rule(line: str) -> Optional[IgnoreRule]:
    """Compile a raw ignore line, or return None for blanks and comments.

    Raises:
        IgnorePatternError: If the glob is malformed.
    """
    text = line.strip()
    if not text or text.startswith("#"):
        return None

    pattern = line.lstrip()
    negate = pattern.startswith("!")
    if negate:
        pattern = pattern[1:]

    stripped = pattern.rstrip()
    if stripped.endswith("\\") and len(stripped) < len(pattern):
        pattern = stripped[:-1] + " "
    else:
        pattern = stripped

    dir_only = pattern.endswith("/")
    if dir_only:
        pattern = pattern.rstrip("/")
    if not pattern:
        return None

    glob = pattern if pattern.startswith("/") else "**/" + pattern
    return IgnoreRule(
        text=text,
        pattern=pattern,
        negate=negate,
        dir_only=dir_only,
        regex=compile_glob(glob),
    )


class IgnoreRules:
    """An ordered, compiled set of ignore rules.

    Compiling happens once, up front, so a malformed pattern is reported as a
    configuration error before anything is copied. Instances are read-only
    after construction and safe to share between threads.

    Attributes:
        rules (List[IgnoreRule]): Compiled rules in configuration order.
        mode (MatchMode): Decision mode.
    """

    def __init__(
        self,
        lines: Optional[Iterable[str]] = None,
        mode: Union[MatchMode, str] = MatchMode.LAST_MATCH,
    ) -> None:
        """Initialize rules.

        Raises:
            IgnorePatternError: If any line is not a valid pattern.
        """
        self.mode = MatchMode(mode)
        self.rules: List[IgnoreRule] = []
        for line in lines or []:
            rule = parse_rule(line)
            if rule is not None:
                self.rules.append(rule)

    def __len__(self) -> int:
        """Return the number of effective rules."""
        return len(self.rules)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"IgnoreRules({[r.text for r in self.rules]!r}, mode={self.mode.value!r})"

    def match(self, path: Union[str, PurePath], is_dir: bool = False) -> Tuple[bool, str]:
        """Decide whether ``path`` is ignored.

        Args:
            path: Path to test, normally absolute. Backslashes are treated as
                separators.
            is_dir: Whether the path names a directory; directory-only rules
                are skipped for anything else.

        Returns:
            Tuple[bool, str]: ``(ignored, rule)`` where ``rule`` is the text of
            the deciding rule, or ``""`` when no rule decided.
        """
        normalized = str(path).replace("\\", "/")

        if self.mode is MatchMode.FIRST_MATCH:
            for rule in self.rules:
                if rule.matches(normalized, is_dir):
                    if not rule.negate:
                        return True, rule.text
            return False, ""

        ignored = False
        deciding = ""
        for rule in self.rules:
            if rule.matches(normalized, is_dir):
                ignored = not rule.negate
                deciding = rule.text
        return ignored, deciding


def should_ignore(
    path: Union[str, PurePath],
    rules: Iterable[str],
    is_dir: bool = False,
    mode: Union[MatchMode, str] = MatchMode.LAST_MATCH,
) -> Tuple[bool, str]:
    """Match ``path`` against raw rule lines.

    Convenience wrapper around :class:`IgnoreRules` for one-off checks.

    Raises:
        IgnorePatternError: If any rule is malformed.
    """
    return IgnoreRules(rules, mode).match(path, is_dir)


@lru_cache(maxsize=512)
def compile_glob(glob: str) -> Pattern[str]:
    """Compile a doublestar glob into an anchored regular expression.

    Raises:
        IgnorePatternError: If the glob is malformed.
    """
    segments = glob.split("/")
    out: List[str] = []
    need_sep = False
    last = len(segments) - 1
    for index, segment in enumerate(segments):
        if segment == "**":
            if index == last:
                out.append("(?:/.*)?" if need_sep else ".*")
            else:
                out.append(("/" if need_sep else "") + "(?:.*/)?")
                need_sep = False
            continue
        if need_sep:
            out.append("/")
        out.append(_translate_segment(segment, glob))
        need_sep = True
    try:
        return re.compile("".join(out), re.DOTALL)
    except re.error as e:
        raise IgnorePatternError(glob, str(e)) from e


def _translate_segment(segment: str, glob: str) -> str:
    out: List[str] = []
    i = 0
    n = len(segment)
    while i < n:
        c = segment[i]
        if c == "*":
            while i + 1 < n and segment[i + 1] == "*":
                i += 1
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "\\":
            if i + 1 >= n:
                raise IgnorePatternError(glob, "dangling escape at end of pattern")
            i += 1
            out.append(re.escape(segment[i]))
        elif c == "[":
            end = _class_end(segment, i)
            if end < 0:
                raise IgnorePatternError(glob, "unterminated character class")
            out.append(_translate_class(segment[i + 1 : end]))
            i = end
        elif c == "{":
            end = _brace_end(segment, i)
            if end < 0:
                raise IgnorePatternError(glob, "unterminated alternation")
            choices = _split_alternatives(segment[i + 1 : end])
            out.append("(?:" + "|".join(_translate_segment(ch, glob) for ch in choices) + ")")
            i = end
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


def _class_end(segment: str, start: int) -> int:
    i = start + 1
    if i < len(segment) and segment[i] in "!^":
        i += 1
    # A "]" right after the opening bracket is a literal member.
    if i < len(segment) and segment[i] == "]":
        i += 1
    while i < len(segment):
        if segment[i] == "\\":
            i += 2
            continue
        if segment[i] == "]":
            return i
        i += 1
    return -1


def _translate_class(body: str) -> str:
    negate = body[:1] in ("!", "^")
    if negate:
        body = body[1:]
    members: List[str] = []
    i = 0
    while i < len(body):
        c = body[i]
        if c == "\\" and i + 1 < len(body):
            i += 1
            members.append(re.escape(body[i]))
        elif c == "-" and members and i + 1 < len(body):
            members.append("-")
        else:
            members.append(re.escape(c) if c in "]^\\[" else c)
        i += 1
    return ("[^/" if negate else "[") + "".join(members) + "]"


def _brace_end(segment: str, start: int) -> int:
    depth = 0
    i = start
    while i < len(segment):
        c = segment[i]
        if c == "\\":
            i += 2
            continue
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _split_alternatives(body: str) -> List[str]:
    choices: List[str] = []
    depth = 0
    current: List[str] = []
    i = 0
    while i < len(body):
        c = body[i]
        if c == "\\" and i + 1 < len(body):
            current.append(body[i : i + 2])
            i += 2
            continue
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
        elif c == "," and depth == 0:
            choices.append("".join(current))
            current = []
            i += 1
            continue
        current.append(c)
        i += 1
    choices.append("".join(current))
    return choices
