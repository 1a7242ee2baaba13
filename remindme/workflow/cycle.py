from __future__ import annotations

import logging
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from remindme.models import Comment, CommentPlan, Notification, PhraseCapture, RateLimitStatus
from remindme.workflow.action_deriver import LeadInSelector, derive
from remindme.workflow.date_resolver import DateResolver
from remindme.workflow.dedup import dedupe
from remindme.workflow.dispatcher import (
    STREAM_MARK_READ,
    STREAM_REACTION,
    STREAM_RECORD,
    STREAM_REPLY,
    DispatchTask,
    RateLimitedDispatcher,
)
from remindme.workflow.mention_extractor import extract, mentions_handle

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class CycleResult:
    stage: str = "start"
    error: Optional[BaseException] = None
    notifications: int = 0
    comments: int = 0
    actions: int = 0
    dispatched: int = 0
    quota: Optional[RateLimitStatus] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CycleOrchestrator:
    """One poll cycle: fetch, classify, dispatch, report quota.

    ``github`` needs the read/write methods of ``GitHubClient``;
    ``reminder_store`` (optional) needs ``append_reminders(rows)``.
    """

    def __init__(
        self,
        github,
        handle: str,
        dispatcher: RateLimitedDispatcher,
        resolver: Optional[DateResolver] = None,
        reminder_store=None,
        fetch_concurrency: int = 4,
        choose_lead_in: LeadInSelector = random.choice,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.github = github
        self.handle = handle.strip().lstrip("@")
        self.dispatcher = dispatcher
        self.resolver = resolver or DateResolver()
        self.reminder_store = reminder_store
        self.fetch_concurrency = max(int(fetch_concurrency), 1)
        self.choose_lead_in = choose_lead_in
        self._now = now

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _parallel_map(self, fn: Callable[[T], R], items: Sequence[T]) -> List[R]:
        if not items:
            return []
        with ThreadPoolExecutor(max_workers=self.fetch_concurrency, thread_name_prefix="fetch") as pool:
            return list(pool.map(fn, items))

    def fetch_notifications(self) -> List[Notification]:
        return self.github.get_notifications()

    @staticmethod
    def filter_mentions(notifications: Sequence[Notification]) -> List[Notification]:
        return [n for n in notifications if n.is_mention]

    def fetch_comments(self, notifications: Sequence[Notification]) -> List[Comment]:
        threads = self._parallel_map(
            lambda n: self.github.get_thread_comments(n.subject_url), notifications
        )
        return [c for thread in threads for c in thread]

    def drop_reacted(self, comments: Sequence[Comment]) -> List[Comment]:
        reacted = self._parallel_map(
            lambda c: self.github.has_reacted(c.url, self.handle), comments
        )
        return [c for c, seen in zip(comments, reacted) if not seen]

    def extract_captures(
        self, comments: Sequence[Comment]
    ) -> List[Tuple[Comment, Tuple[PhraseCapture, ...]]]:
        now = self._now()
        return [(c, extract(c.body, self.handle, self.resolver, now=now)) for c in comments]

    def derive_actions(
        self, extracted: Sequence[Tuple[Comment, Tuple[PhraseCapture, ...]]]
    ) -> List[CommentPlan]:
        plans = []
        for comment, captures in extracted:
            action = derive(
                captures,
                author=comment.author,
                handle=self.handle,
                choose_lead_in=self.choose_lead_in,
            )
            plans.append(CommentPlan(comment=comment, captures=captures, action=action))
        return plans

    def build_tasks(
        self, notifications: Sequence[Notification], plans: Sequence[CommentPlan]
    ) -> List[DispatchTask]:
        tasks: List[DispatchTask] = []
        active = [p for p in plans if not p.action.is_noop]

        for n in notifications:
            tasks.append(DispatchTask(
                STREAM_MARK_READ,
                f"mark read {n.url}",
                lambda n=n: self.github.mark_notification_read(n),
            ))

        for p in active:
            logger.info("respond: %s", p.comment.url)
            if p.action.reply:
                tasks.append(DispatchTask(
                    STREAM_REPLY,
                    f"reply {p.comment.issue_url}",
                    lambda p=p: self.github.post_reply(p.comment, p.action.reply),
                ))
            for kind in p.action.ordered_reactions():
                tasks.append(DispatchTask(
                    STREAM_REACTION,
                    f"react {kind.value} {p.comment.url}",
                    lambda p=p, kind=kind: self.github.post_reaction(p.comment, kind.value),
                ))
            if self.reminder_store is not None and p.valid_dates:
                rows = reminder_rows(p)
                tasks.append(DispatchTask(
                    STREAM_RECORD,
                    f"record {len(rows)} reminder(s) for {p.comment.url}",
                    lambda rows=rows: self.reminder_store.append_reminders(rows),
                ))
        return tasks

    def report_quota(self) -> RateLimitStatus:
        quota = self.github.get_rate_limit()
        logger.info("rate limiting: %d out of %d remaining; resets at %s",
                    quota.remaining, quota.limit, quota.reset.isoformat())
        return quota

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self, keepalive: Optional[Callable[[], None]] = None) -> CycleResult:
        """Run every stage in order; the first failure ends the pass.

        ``keepalive`` is called before each stage and before each write, so a
        lease holder can renew its lease (or stop the pass once it is gone).
        """
        result = CycleResult()
        keepalive = keepalive or (lambda: None)

        def enter(stage: str) -> None:
            result.stage = stage
            keepalive()

        try:
            enter("fetch_notifications")
            notifications = self.fetch_notifications()

            enter("filter_mentions")
            notifications = self.filter_mentions(notifications)
            result.notifications = len(notifications)

            enter("fetch_comments")
            comments = self.fetch_comments(notifications)

            enter("dedupe")
            comments = dedupe(comments)

            enter("screen_mentions")
            comments = [c for c in comments if mentions_handle(c.body, self.handle)]

            enter("drop_reacted")
            comments = self.drop_reacted(comments)
            result.comments = len(comments)

            enter("extract")
            extracted = self.extract_captures(comments)

            enter("derive")
            plans = self.derive_actions(extracted)
            result.actions = sum(1 for p in plans if not p.action.is_noop)

            enter("dispatch")
            report = self.dispatcher.dispatch(
                self.build_tasks(notifications, plans), before_each=keepalive
            )
            result.dispatched = len(report.completed)
            report.raise_for_failures()

            enter("report_quota")
            result.quota = self.report_quota()
            result.stage = "done"
        except Exception as exc:
            result.error = exc
            logger.error("Cycle aborted during %s: %s", result.stage, exc)
        return result


def reminder_rows(plan: CommentPlan) -> List[Dict[str, str]]:
    return [
        {
            "comment_id": plan.comment.id,
            "comment_url": plan.comment.url,
            "issue_url": plan.comment.issue_url,
            "author": plan.comment.author,
            "phrase": d.phrase,
            "remind_at": d.when.astimezone(timezone.utc).isoformat(),
        }
        for d in plan.valid_dates
    ]
