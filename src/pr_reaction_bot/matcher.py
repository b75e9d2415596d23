"""Regex matching of pull-request references in message text."""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class MatchResult:
    project: str
    repo: str
    number: int


class RegexMatcher:
    """Finds a pull-request URL in free text.

    The pattern must define the named groups ``project``, ``repo`` and
    ``number``. The URL may appear anywhere in the text.
    """

    def __init__(self, pattern: str) -> None:
        self._regex = re.compile(pattern)

    @property
    def pattern(self) -> str:
        return self._regex.pattern

    def match(self, text: str) -> MatchResult | None:
        m = self._regex.search(text or "")
        if m is None:
            return None
        project, repo, number = m.group("project", "repo", "number")
        # Patterns may capture something that is not a PR number.
        if not project or not repo or not (number and number.isascii() and number.isdigit()):
            return None
        return MatchResult(project=project, repo=repo, number=int(number))
