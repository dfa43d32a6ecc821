"""
Glob pattern matching for buildwatch ignore rules.

Patterns are translated to regular expressions, in the spirit of
``fnmatch.translate``, with path-aware wildcards:

- ``*`` matches any run of characters except ``/``
- ``**`` as a whole path segment matches any run including ``/``
- ``?`` matches one character except ``/``
- ``[...]`` character classes, negated with ``!`` or ``^``
- ``{a,b}`` brace alternation, which may be nested
- ``\\`` escapes the following character

Anything else that looks like glob syntax we do not support (negation with a
leading ``!``, extglob groups such as ``+(a|b)``, POSIX classes such as
``[[:digit:]]``) is rejected with InvalidPatternError rather than being
matched literally.
"""

import re
from typing import Iterable, List, Optional, Tuple

from buildwatch.errors import InvalidPatternError

SEPARATOR = "/"

_EXTGLOB_CHARS = "?*+@!"
_CLASS_SPECIALS = "\\[]^&~|"
_POSIX_CLASS_MARKERS = ("[:", "[=", "[.")


def normalize_path(path: str) -> str:
    """
    Normalize a relative path for matching.

    Backslashes become forward slashes, repeated separators are collapsed and
    any leading ``./`` or ``/`` is removed.
    """
    path = path.replace("\\", SEPARATOR)
    path = re.sub(r"/{2,}", SEPARATOR, path)
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip(SEPARATOR)


def _strip_pattern_prefix(pattern: str) -> str:
    while pattern.startswith("./"):
        pattern = pattern[2:]
    return pattern.lstrip(SEPARATOR)


def _translate_class(pattern: str, text: str, i: int) -> Tuple[str, int]:
    """Translate a ``[...]`` class starting at text[i]. Returns (regex, next index)."""
    j = i + 1
    negate = False
    if j < len(text) and text[j] in "!^":
        negate = True
        j += 1
    start = j
    # A ']' right after the opening bracket is a literal member.
    if j < len(text) and text[j] == "]":
        j += 1
    end = text.find("]", j)
    if end == -1:
        raise InvalidPatternError(pattern, "unterminated character class")
    content = text[start:end]
    if any(marker in content for marker in _POSIX_CLASS_MARKERS):
        raise InvalidPatternError(pattern, "POSIX character classes are not supported")

    members = []
    for ch in content:
        members.append("\\" + ch if ch in _CLASS_SPECIALS else ch)
    body = "".join(members)

    if negate:
        return f"[^/{body}]", end + 1
    return f"(?!/)[{body}]", end + 1


def _ends_segment(text: str, j: int, in_brace: bool, segment_end: bool) -> bool:
    if j == len(text) or text[j] == SEPARATOR:
        return True
    return in_brace and text[j] in ",}" and segment_end


def _translate_braces(pattern: str, text: str, i: int, segment_start: bool,
                      segment_end: bool) -> Tuple[List[str], int]:
    """
    Translate the alternatives of the brace group opening at text[i].
    Returns (alternatives, index after the closing '}').
    """
    alternatives = []
    i += 1
    while True:
        sub, i = _translate(pattern, text, i, True, segment_start, segment_end)
        if i >= len(text):
            raise InvalidPatternError(pattern, "unbalanced '{'")
        alternatives.append(sub)
        if text[i] == ",":
            i += 1
            continue
        return alternatives, i + 1


def _translate(pattern: str, text: str, i: int, in_brace: bool,
               segment_start: bool = True, segment_end: bool = True) -> Tuple[str, int]:
    """
    Translate text[i:] until the end of the pattern, or, inside a brace
    group, until the next top-level ',' or '}'.

    segment_start and segment_end tell whether the brace group being
    translated begins and ends on a path segment boundary.
    """
    out: List[str] = []
    n = len(text)
    start = i
    while i < n:
        c = text[i]

        if in_brace and c in ",}":
            return "".join(out), i

        if c in _EXTGLOB_CHARS and i + 1 < n and text[i + 1] == "(":
            raise InvalidPatternError(pattern, f"extglob group '{c}(' is not supported")

        if c == "\\":
            if i + 1 >= n:
                raise InvalidPatternError(pattern, "trailing escape character")
            out.append(re.escape(text[i + 1]))
            i += 2
        elif c == "*":
            j = i
            while j < n and text[j] == "*":
                j += 1
            if j < n and text[j] == "(":
                raise InvalidPatternError(pattern, "extglob group '*(' is not supported")
            starts_segment = segment_start if i == start else text[i - 1] == SEPARATOR
            ends_segment = _ends_segment(text, j, in_brace, segment_end)
            if j - i >= 2 and starts_segment and ends_segment:
                if j < n and text[j] == SEPARATOR:
                    # "**/" matches zero or more leading directories.
                    out.append("(?:.*/)?")
                    j += 1
                elif out and out[-1] == SEPARATOR:
                    # "dir/**" matches the directory itself and everything below it.
                    out.pop()
                    out.append("(?:/.*)?")
                else:
                    out.append(".*")
            else:
                out.append("[^/]*")
            i = j
        elif c == "?":
            out.append("[^/]")
            i += 1
        elif c == "[":
            regex, i = _translate_class(pattern, text, i)
            out.append(regex)
        elif c == "{":
            at_start = segment_start if i == start else text[i - 1] == SEPARATOR
            alternatives, end = _translate_braces(pattern, text, i, at_start, True)
            if not _ends_segment(text, end, in_brace, segment_end):
                # Text follows the group inside the same segment; "**" in it is a plain "*".
                alternatives, end = _translate_braces(pattern, text, i, at_start, False)
            i = end
            if len(alternatives) == 1:
                # "{a}" has nothing to alternate between and stays literal.
                out.append(re.escape("{") + alternatives[0] + re.escape("}"))
            else:
                out.append("(?:" + "|".join(alternatives) + ")")
        elif c == "}":
            raise InvalidPatternError(pattern, "unbalanced '}'")
        elif c == SEPARATOR:
            if not out or out[-1] != SEPARATOR:
                out.append(SEPARATOR)
            i += 1
        else:
            out.append(re.escape(c))
            i += 1

    return "".join(out), i


def translate(pattern: str) -> str:
    """
    Translate a single glob pattern into regular expression source.

    Raises:
        InvalidPatternError: If the pattern is empty, malformed or uses
            unsupported syntax.
    """
    if not isinstance(pattern, str) or not pattern:
        raise InvalidPatternError(pattern, "empty pattern")
    if pattern.startswith("!"):
        raise InvalidPatternError(pattern, "negated patterns are not supported")

    text = _strip_pattern_prefix(pattern)
    if not text:
        raise InvalidPatternError(pattern, "pattern does not name any path")

    regex, _ = _translate(pattern, text, 0, False)
    return rf"(?s:{regex})\Z"


class Matcher:
    """
    A compiled, ordered set of ignore patterns.

    A path is ignored when it matches any of the patterns. Matchers are
    immutable and safe to share between threads.
    """

    def __init__(self, rules: List[Tuple[str, "re.Pattern"]], case_sensitive: bool = True):
        self._rules = tuple(rules)
        self.case_sensitive = case_sensitive

    @property
    def patterns(self) -> Tuple[str, ...]:
        return tuple(pattern for pattern, _ in self._rules)

    def match(self, relative_path: str) -> Optional[str]:
        """Return the first pattern matching relative_path, or None."""
        path = normalize_path(relative_path)
        for pattern, regex in self._rules:
            if regex.match(path):
                return pattern
        return None

    def test(self, relative_path: str) -> bool:
        """Return True if relative_path is ignored."""
        return self.match(relative_path) is not None

    def __len__(self):
        return len(self._rules)

    def __repr__(self):
        return f"Matcher({list(self.patterns)!r}, case_sensitive={self.case_sensitive})"


def compile(patterns: Iterable[str], case_sensitive: bool = True) -> Matcher:
    """
    Compile an ordered sequence of glob patterns into a Matcher.

    Args:
        patterns: Glob patterns, in order.
        case_sensitive: Whether matching distinguishes letter case.

    Returns:
        Matcher: The compiled ignore rule set.

    Raises:
        InvalidPatternError: For the first pattern that fails to compile.
    """
    if isinstance(patterns, str):
        patterns = [patterns]

    flags = 0 if case_sensitive else re.IGNORECASE
    rules = []
    for pattern in patterns:
        source = translate(pattern)
        try:
            regex = re.compile(source, flags)
        except re.error as e:
            raise InvalidPatternError(pattern, str(e)) from e
        rules.append((pattern, regex))
    return Matcher(rules, case_sensitive=case_sensitive)
