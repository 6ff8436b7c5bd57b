"""
Glob matching for include/exclude filters.

Patterns are matched against the whole relative path ('/'-separated):
- '*' matches any run of characters, '?' exactly one
- in a pattern without a separator, wildcards also match '/' (so '*.log'
  matches 'a/b/c.log')
- in a pattern with a separator, wildcards stay within one path segment
  and only '**' crosses segments (so 'a/*.log' does not match 'a/b/c.log')
- '\\' and '/' are interchangeable in both patterns and paths
"""

import re
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern


def normalize_path(path: str) -> str:
    """Convert host separators to '/'."""
    return path.replace('\\', '/')


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> Pattern:
    """
    Translate a glob pattern into an anchored regular expression.

    Args:
        pattern: Glob pattern

    Returns:
        Compiled regex to be used with fullmatch()
    """
    normalized = normalize_path(pattern)
    segmented = '/' in normalized
    star = '[^/]*' if segmented else '.*'
    single = '[^/]' if segmented else '.'

    parts = []
    i = 0
    while i < len(normalized):
        char = normalized[i]
        if char == '*':
            if normalized.startswith('**', i):
                parts.append('.*')
                i += 2
                continue
            parts.append(star)
        elif char == '?':
            parts.append(single)
        else:
            parts.append(re.escape(char))
        i += 1

    return re.compile(''.join(parts), re.DOTALL)


def matches(relative_path: str, patterns: Iterable[str]) -> bool:
    """
    Check whether a path matches any of the patterns.

    Args:
        relative_path: Path relative to the backup root
        patterns: Glob patterns

    Returns:
        True if at least one pattern matches the whole path
    """
    path = normalize_path(relative_path)
    return any(compile_pattern(pattern).fullmatch(path) for pattern in patterns)


class PathFilter:
    """
    Include/exclude decision for archive entries.

    Exclusion is checked first and wins. Without include patterns every
    non-excluded path passes.
    """

    def __init__(self, include: Optional[List[str]] = None, exclude: Optional[List[str]] = None):
        self.include = list(include) if include else None
        self.exclude = list(exclude) if exclude else []

    def is_excluded(self, relative_path: str) -> bool:
        return bool(self.exclude) and matches(relative_path, self.exclude)

    def is_included(self, relative_path: str) -> bool:
        if self.include is None:
            return True
        return matches(relative_path, self.include)

    def accepts(self, relative_path: str) -> bool:
        """Decide for a file: not excluded and included."""
        if self.is_excluded(relative_path):
            return False
        return self.is_included(relative_path)
