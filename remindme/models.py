from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple, Union


@dataclass(frozen=True)
class Notification:
    id: str
    reason: str
    subject_url: str
    url: str  # PATCH target for mark-as-read

    @property
    def is_mention(self) -> bool:
        return self.reason == "mention"


@dataclass(frozen=True)
class Comment:
    id: str
    body: str
    url: str  # reactions live under f"{url}/reactions"
    issue_url: str  # replies are posted to f"{issue_url}/comments"
    author: str


# ---------------------------------------------------------------------------
# Phrase captures (one per mention line, in body order)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidDate:
    phrase: str
    when: datetime


@dataclass(frozen=True)
class InvalidPhrase:
    phrase: str


@dataclass(frozen=True)
class Introduction:
    """A mention line holding only the bare handle."""


PhraseCapture = Union[ValidDate, InvalidPhrase, Introduction]


class ReactionKind(str, Enum):
    THUMBS_UP = "+1"
    THUMBS_DOWN = "-1"
    CONFUSED = "confused"
    HEART = "heart"
    HOORAY = "hooray"


# Order in which reactions are posted.
REACTION_ORDER: Tuple[ReactionKind, ...] = tuple(ReactionKind)


@dataclass(frozen=True)
class Action:
    reactions: FrozenSet[ReactionKind] = frozenset()
    reply: Optional[str] = None

    @property
    def is_noop(self) -> bool:
        return not self.reactions and not self.reply

    def ordered_reactions(self) -> Tuple[ReactionKind, ...]:
        return tuple(r for r in REACTION_ORDER if r in self.reactions)


@dataclass(frozen=True)
class CommentPlan:
    """Everything derived for one comment within a cycle."""

    comment: Comment
    captures: Tuple[PhraseCapture, ...]
    action: Action

    @property
    def valid_dates(self) -> Tuple[ValidDate, ...]:
        return tuple(c for c in self.captures if isinstance(c, ValidDate))


@dataclass(frozen=True)
class RateLimitStatus:
    remaining: int
    limit: int
    reset: datetime
