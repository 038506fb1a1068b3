"""PathMatcher: decides which file names in the watched directory get tailed.

Without a pattern every non-hidden name matches (the same convention as
``ls``). With a pattern the regex is searched anywhere in the file name.
"""

import re
import logging

logger = logging.getLogger(__name__)


class PatternError(ValueError):
    """Raised at startup when the filename pattern does not compile."""


def is_hidden(filename: str) -> bool:
    return filename.startswith(".")


class PathMatcher:
    def __init__(self, pattern: str | None = None):
        self._regex: re.Pattern | None = None
        if pattern is not None:
            try:
                self._regex = re.compile(pattern)
            except re.error as e:
                raise PatternError(f"invalid regex supplied: {pattern!r}: {e}") from e
            logger.debug("Compiled filename pattern %r", pattern)

    def matches(self, filename: str) -> bool:
        if self._regex is None:
            return not is_hidden(filename)
        return self._regex.search(filename) is not None


def matches(filename: str, pattern: str | None) -> bool:
    """One-shot form of ``PathMatcher(pattern).matches(filename)``."""
    return PathMatcher(pattern).matches(filename)
