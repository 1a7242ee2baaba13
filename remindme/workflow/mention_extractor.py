from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from remindme.models import Introduction, InvalidPhrase, PhraseCapture, ValidDate
from remindme.workflow.date_resolver import DateResolver, Resolved

_WORD_RE = re.compile(r"\S+")
_LINE_INDENT = " \t"


@dataclass(frozen=True)
class MentionLine:
    """A single mention line split into its three tokens.

    ``@bot in 2 hours to check the build`` becomes
    handle=``@bot``, phrase=``in 2 hours``, clause=``to check the build``.
    """

    handle: str
    phrase: str
    clause: str = ""

    @property
    def is_bare(self) -> bool:
        return not self.phrase


def normalize_handle(handle: str) -> str:
    return "@" + handle.strip().lstrip("@").lower()


def mentions_handle(body: str, handle: str) -> bool:
    """Loose screen: does the handle appear anywhere in the body."""
    return normalize_handle(handle) in (body or "").lower()


def _split_clause(rest: str) -> Tuple[str, str]:
    words = list(_WORD_RE.finditer(rest))
    # The phrase needs at least one word before a "to" clause can start.
    for match in words[1:]:
        if match.group(0).lower() == "to":
            return rest[: match.start()].strip(), rest[match.start():].strip()
    return rest.strip(), ""


def tokenize_line(line: str, handle: str) -> Optional[MentionLine]:
    """Return the mention tokens of ``line``, or None if it is not a mention."""
    token = normalize_handle(handle)
    stripped = line.lstrip(_LINE_INDENT)
    if stripped[: len(token)].lower() != token:
        return None

    rest = stripped[len(token):]
    if rest and not rest[0].isspace():
        # "@botx" or "@bot," -- some other word, not our handle
        return None

    phrase, clause = _split_clause(rest)
    return MentionLine(handle=stripped[: len(token)], phrase=phrase, clause=clause)


def tokenize(body: str, handle: str) -> List[MentionLine]:
    lines = []
    for line in (body or "").splitlines():
        mention = tokenize_line(line, handle)
        if mention is not None:
            lines.append(mention)
    return lines


def extract(
    body: str,
    handle: str,
    resolver: DateResolver,
    now: Optional[datetime] = None,
) -> Tuple[PhraseCapture, ...]:
    captures: List[PhraseCapture] = []
    for mention in tokenize(body, handle):
        if mention.is_bare:
            captures.append(Introduction())
            continue
        result = resolver.resolve(mention.phrase, now=now)
        if isinstance(result, Resolved):
            captures.append(ValidDate(result.phrase, result.when))
        else:
            captures.append(InvalidPhrase(result.phrase))
    return tuple(captures)
