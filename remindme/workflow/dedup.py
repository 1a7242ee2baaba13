from __future__ import annotations

from typing import Dict, Iterable, List

from remindme.models import Comment


def dedupe(comments: Iterable[Comment]) -> List[Comment]:
    """Collapse comments sharing an id; the first one fetched wins."""
    unique: Dict[str, Comment] = {}
    for comment in comments:
        unique.setdefault(comment.id, comment)
    return list(unique.values())
