from __future__ import annotations

import re
from collections.abc import Callable

from .models import Reference

ReferenceExtractor = Callable[[str, str, str], list[Reference]]

_REFERENCE_RE = re.compile(
    r"(?P<keyword>\b(?:close[sd]?|fix(?:e[sd])?|resolve[sd]?)\b:?\s+)?"
    r"(?<![\w#/])"
    r"(?:"
    r"https?://github\.com/(?P<url_owner>[\w.-]+)/(?P<url_repo>[\w.-]+)"
    r"/(?:issues|pull)/(?P<url_number>\d+)"
    r"|(?:(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+))?#(?P<number>\d+)\b"
    r")",
    re.IGNORECASE,
)


def extract_references(body: str | None, repo_owner: str, repo_name: str) -> list[Reference]:
    """Find issue references in a card body.

    Bare ``#12`` resolves against the card's own repository. A closing
    keyword directly before a reference (``fixes #12``) marks it as a fix.
    Repeated references to one card collapse into one, keeping ``fixes``
    if any occurrence carried it.
    """
    if not body:
        return []
    found: dict[tuple[str, str, int], bool] = {}
    for match in _REFERENCE_RE.finditer(body):
        if match.group("url_number"):
            owner = match.group("url_owner")
            name = match.group("url_repo")
            number = int(match.group("url_number"))
        else:
            owner = match.group("owner") or repo_owner
            name = match.group("repo") or repo_name
            number = int(match.group("number"))
        if number <= 0:
            continue
        target = (owner, name, number)
        fixes = bool(match.group("keyword"))
        found[target] = found.get(target, False) or fixes
    return [
        Reference(owner, name, number, fixes=fixes) for (owner, name, number), fixes in found.items()
    ]
