import unittest
from datetime import datetime, timezone
from unittest import mock

import requests

from remindme.config import BotConfig
from remindme.integrations.github_client import (
    GitHubAPIError,
    GitHubClient,
    MalformedPayloadError,
    parse_comment,
)
from remindme.models import Comment

API = "https://api.github.com"


def response(status=200, data=None, text="", headers=None):
    resp = mock.MagicMock()
    resp.status_code = status
    resp.text = text
    resp.headers = headers or {}
    resp.json.return_value = data
    return resp


def make_client(*responses, dry_run=False):
    session = mock.MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    config = BotConfig(github_username="bot", github_token="tok", dry_run=dry_run)
    return GitHubClient(config, session=session), session


COMMENT_PAYLOAD = {
    "id": 42,
    "body": "@bot in 2 hours",
    "url": f"{API}/repos/o/r/issues/comments/42",
    "issue_url": f"{API}/repos/o/r/issues/7",
    "user": {"login": "octocat"},
}

COMMENT = Comment(
    id="42",
    body="@bot in 2 hours",
    url=f"{API}/repos/o/r/issues/comments/42",
    issue_url=f"{API}/repos/o/r/issues/7",
    author="octocat",
)


class GitHubClientTests(unittest.TestCase):
    def test_session_headers(self):
        _, session = make_client()
        self.assertEqual(session.headers["Authorization"], "token tok")
        self.assertEqual(session.headers["Accept"], "application/vnd.github+json")

    def test_get_notifications(self):
        client, session = make_client(response(data=[
            {
                "id": "1",
                "reason": "mention",
                "url": f"{API}/notifications/threads/1",
                "subject": {"url": f"{API}/repos/o/r/issues/7"},
            },
        ]))
        notifications = client.get_notifications()
        self.assertEqual(len(notifications), 1)
        self.assertTrue(notifications[0].is_mention)
        self.assertEqual(notifications[0].subject_url, f"{API}/repos/o/r/issues/7")
        method, url = session.request.call_args[0]
        self.assertEqual((method, url), ("GET", f"{API}/notifications"))
        self.assertEqual(session.request.call_args[1]["timeout"], 15)

    def test_malformed_payload(self):
        client, _ = make_client(response(data={"message": "not a list"}))
        with self.assertRaises(MalformedPayloadError):
            client.get_notifications()

    def test_parse_comment_requires_user(self):
        payload = dict(COMMENT_PAYLOAD)
        del payload["user"]
        with self.assertRaises(MalformedPayloadError):
            parse_comment(payload)
        self.assertEqual(parse_comment(COMMENT_PAYLOAD), COMMENT)

    @mock.patch("remindme.integrations.github_client.time.sleep")
    def test_reads_retry_on_server_error(self, sleep):
        client, session = make_client(
            response(status=502, text="bad gateway"),
            response(data=[COMMENT_PAYLOAD]),
        )
        self.assertEqual(client.get_thread_comments(f"{API}/repos/o/r/issues/7"), [COMMENT])
        self.assertEqual(session.request.call_count, 2)
        sleep.assert_called_once()

    @mock.patch("remindme.integrations.github_client.time.sleep")
    def test_reads_give_up_after_retries(self, sleep):
        client, session = make_client(*[requests.ConnectionError("reset")] * 3)
        with self.assertRaises(GitHubAPIError):
            client.get_notifications()
        self.assertEqual(session.request.call_count, 3)

    @mock.patch("remindme.integrations.github_client.time.sleep")
    def test_retry_after_in_seconds(self, sleep):
        client, _ = make_client(
            response(status=429, headers={"Retry-After": "7"}),
            response(data=[]),
        )
        self.assertEqual(client.get_notifications(), [])
        sleep.assert_called_once_with(7.0)

    @mock.patch("remindme.integrations.github_client.time.sleep")
    def test_retry_after_as_http_date(self, sleep):
        client, session = make_client(
            response(status=429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
            response(data=[]),
        )
        self.assertEqual(client.get_notifications(), [])
        self.assertEqual(session.request.call_count, 2)
        # a date in the past means "retry now"
        sleep.assert_called_once_with(0.0)

    @mock.patch("remindme.integrations.github_client.time.sleep")
    def test_unreadable_retry_after_falls_back_to_backoff(self, sleep):
        client, _ = make_client(
            response(status=429, headers={"Retry-After": "soon"}),
            response(data=[]),
        )
        self.assertEqual(client.get_notifications(), [])
        sleep.assert_called_once_with(1.0)

    def test_client_error_is_not_retried(self):
        client, session = make_client(response(status=401, text='{"message": "Bad credentials"}'))
        with self.assertRaises(GitHubAPIError) as ctx:
            client.get_notifications()
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertIn("Bad credentials", ctx.exception.body)
        self.assertEqual(session.request.call_count, 1)

    def test_writes_are_attempted_once(self):
        client, session = make_client(response(status=500, text="oops"))
        with self.assertRaises(GitHubAPIError):
            client.post_reply(COMMENT, "hello")
        self.assertEqual(session.request.call_count, 1)
        method, url = session.request.call_args[0]
        self.assertEqual((method, url), ("POST", f"{API}/repos/o/r/issues/7/comments"))
        self.assertEqual(session.request.call_args[1]["json"], {"body": "hello"})

    def test_post_reaction(self):
        client, session = make_client(response(status=201))
        client.post_reaction(COMMENT, "+1")
        method, url = session.request.call_args[0]
        self.assertEqual((method, url), ("POST", f"{COMMENT.url}/reactions"))
        self.assertEqual(session.request.call_args[1]["json"], {"content": "+1"})

    def test_dry_run_skips_writes(self):
        client, session = make_client(dry_run=True)
        with mock.patch("builtins.print"):
            client.post_reaction(COMMENT, "+1")
        session.request.assert_not_called()

    def test_has_reacted_is_case_insensitive(self):
        client, _ = make_client(response(data=[
            {"user": {"login": "someone"}, "content": "heart"},
            {"user": {"login": "Bot"}, "content": "+1"},
        ]))
        self.assertTrue(client.has_reacted(COMMENT.url, "@bot"))

    def test_rate_limit(self):
        client, _ = make_client(response(data={
            "rate": {"remaining": 4999, "limit": 5000, "reset": 1792324800},
        }))
        quota = client.get_rate_limit()
        self.assertEqual((quota.remaining, quota.limit), (4999, 5000))
        self.assertEqual(quota.reset, datetime.fromtimestamp(1792324800, tz=timezone.utc))


if __name__ == "__main__":
    unittest.main()
