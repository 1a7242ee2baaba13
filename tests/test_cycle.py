import unittest
from datetime import datetime, timezone

from remindme.integrations.cycle_lock import LockError
from remindme.integrations.github_client import GitHubAPIError
from remindme.models import Comment, Notification, RateLimitStatus
from remindme.workflow.action_deriver import CANNED_LEAD_INS
from remindme.workflow.cycle import CycleOrchestrator
from remindme.workflow.date_resolver import DateResolver
from remindme.workflow.dispatcher import DispatchError, RateLimitedDispatcher

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)
API = "https://api.github.com/repos/o/r"


def notification(nid, reason, thread):
    return Notification(
        id=nid,
        reason=reason,
        subject_url=f"{API}/issues/{thread}",
        url=f"https://api.github.com/notifications/threads/{nid}",
    )


def comment(cid, body, thread=1, author="octocat"):
    return Comment(
        id=cid,
        body=body,
        url=f"{API}/issues/comments/{cid}",
        issue_url=f"{API}/issues/{thread}",
        author=author,
    )


class FakeGitHub:
    def __init__(self, notifications, threads, reacted=(), fail_on=None):
        self.notifications = notifications
        self.threads = threads
        self.reacted = set(reacted)
        self.fail_on = fail_on or {}
        self.fetched_threads = []
        self.writes = []
        self.quota_calls = 0

    def _maybe_fail(self, name):
        if name in self.fail_on:
            raise self.fail_on[name]

    def get_notifications(self):
        self._maybe_fail("get_notifications")
        return list(self.notifications)

    def get_thread_comments(self, subject_url):
        self.fetched_threads.append(subject_url)
        return list(self.threads.get(subject_url, []))

    def has_reacted(self, comment_url, login):
        assert login == "bot"
        return comment_url in self.reacted

    def mark_notification_read(self, n):
        self.writes.append(("read", n.id))

    def post_reply(self, c, body):
        self.writes.append(("reply", c.id, body))

    def post_reaction(self, c, content):
        key = ("react", c.id, content)
        self._maybe_fail(key)
        self.writes.append(key)

    def get_rate_limit(self):
        self.quota_calls += 1
        return RateLimitStatus(remaining=4990, limit=5000, reset=NOW)


class BrokenResolver:
    def resolve(self, phrase, now=None):
        raise RuntimeError("resolver exploded")


class UnreadableNotification:
    url = "https://api.github.com/notifications/threads/x"

    @property
    def is_mention(self):
        raise ValueError("notification has no reason")


class FakeStore:
    def __init__(self):
        self.rows = []

    def append_reminders(self, rows):
        self.rows.extend(rows)
        return len(rows)


def build(github, store=None, resolver=None):
    return CycleOrchestrator(
        github=github,
        handle="@bot",
        dispatcher=RateLimitedDispatcher(interval=0),
        resolver=resolver or DateResolver("UTC"),
        reminder_store=store,
        choose_lead_in=lambda options: options[0],
        now=lambda: NOW,
    )


class CycleTests(unittest.TestCase):
    def setUp(self):
        self.notifications = [
            notification("n1", "mention", 1),
            notification("n2", "subscribed", 2),
            notification("n3", "mention", 3),
        ]
        c1 = comment("1", "@bot in 2 hours\n@bot thanks!")
        self.threads = {
            f"{API}/issues/1": [c1, comment("2", "no mention here")],
            f"{API}/issues/2": [comment("9", "@bot yesterday", thread=2)],
            f"{API}/issues/3": [
                comment("1", "@bot xyz", thread=3),
                comment("3", "@bot yesterday", thread=3),
                comment("4", "@bot tomorrow", thread=3),
            ],
        }

    def test_full_cycle(self):
        github = FakeGitHub(self.notifications, self.threads, reacted={f"{API}/issues/comments/4"})
        store = FakeStore()

        result = build(github, store).run_cycle()

        self.assertTrue(result.ok, result.error)
        self.assertEqual(result.stage, "done")
        self.assertEqual(github.fetched_threads, [f"{API}/issues/1", f"{API}/issues/3"])
        self.assertEqual(result.notifications, 2)
        self.assertEqual(result.comments, 2)
        self.assertEqual(result.actions, 2)
        reply = CANNED_LEAD_INS[0] + '\n\nI don\'t quite understand _"yesterday"_. Care to try again?'
        self.assertEqual(github.writes, [
            ("read", "n1"),
            ("read", "n3"),
            ("react", "1", "+1"),
            ("react", "1", "hooray"),
            ("reply", "3", reply),
            ("react", "3", "-1"),
        ])
        self.assertEqual(result.dispatched, 7)
        self.assertEqual(len(store.rows), 1)
        self.assertEqual(store.rows[0]["comment_id"], "1")
        self.assertEqual(store.rows[0]["phrase"], "in 2 hours")
        self.assertEqual(store.rows[0]["remind_at"], "2026-10-18T14:00:00+00:00")
        self.assertEqual(result.quota.remaining, 4990)

    def test_nothing_to_do(self):
        github = FakeGitHub([], {})
        result = build(github).run_cycle()
        self.assertTrue(result.ok)
        self.assertEqual(github.writes, [])
        self.assertEqual(github.quota_calls, 1)

    def test_already_reacted_comments_are_left_alone(self):
        github = FakeGitHub(
            [notification("n1", "mention", 1)],
            {f"{API}/issues/1": [comment("1", "@bot in 2 hours")]},
            reacted={f"{API}/issues/comments/1"},
        )
        result = build(github).run_cycle()
        self.assertTrue(result.ok)
        self.assertEqual(github.writes, [("read", "n1")])

    def test_fetch_failure_aborts_cycle(self):
        github = FakeGitHub(
            self.notifications,
            self.threads,
            fail_on={"get_notifications": GitHubAPIError("boom", status_code=502)},
        )
        result = build(github).run_cycle()
        self.assertFalse(result.ok)
        self.assertEqual(result.stage, "fetch_notifications")
        self.assertIsInstance(result.error, GitHubAPIError)
        self.assertEqual(github.writes, [])
        self.assertEqual(github.quota_calls, 0)

    def test_dispatch_failure_keeps_siblings_and_skips_quota(self):
        github = FakeGitHub(
            self.notifications,
            self.threads,
            fail_on={("react", "1", "+1"): GitHubAPIError("nope", status_code=500)},
        )
        result = build(github).run_cycle()
        self.assertFalse(result.ok)
        self.assertEqual(result.stage, "dispatch")
        self.assertIn(("react", "1", "hooray"), github.writes)
        self.assertIn(("react", "3", "-1"), github.writes)
        self.assertEqual(github.quota_calls, 0)

    def test_unreadable_notification_fails_in_filter_stage(self):
        github = FakeGitHub([UnreadableNotification()], {})
        result = build(github).run_cycle()
        self.assertFalse(result.ok)
        self.assertEqual(result.stage, "filter_mentions")
        self.assertEqual(github.fetched_threads, [])
        self.assertEqual(github.writes, [])

    def test_resolver_failure_is_reported_as_extract_stage(self):
        github = FakeGitHub(self.notifications, self.threads)
        result = build(github, resolver=BrokenResolver()).run_cycle()
        self.assertFalse(result.ok)
        self.assertEqual(result.stage, "extract")
        self.assertIsInstance(result.error, RuntimeError)
        self.assertEqual(github.writes, [])

    def test_keepalive_runs_before_every_stage_and_write(self):
        github = FakeGitHub(self.notifications, self.threads)
        calls = []
        result = build(github).run_cycle(keepalive=lambda: calls.append(1))
        self.assertTrue(result.ok, result.error)
        # ten stages plus one call per write
        self.assertEqual(len(calls), 10 + result.dispatched)

    def test_lost_lease_stops_writes(self):
        github = FakeGitHub(self.notifications, self.threads)
        calls = []

        def keepalive():
            calls.append(1)
            # the ninth call enters the dispatch stage
            if len(calls) > 9:
                raise LockError("lease lost")

        result = build(github).run_cycle(keepalive=keepalive)
        self.assertFalse(result.ok)
        self.assertEqual(result.stage, "dispatch")
        self.assertIsInstance(result.error, DispatchError)
        self.assertEqual(github.writes, [])
        self.assertEqual(result.dispatched, 0)
        self.assertEqual(github.quota_calls, 0)


if __name__ == "__main__":
    unittest.main()
