import unittest
from datetime import datetime, timezone
from unittest import mock

from remindme.api_checks import check_github, check_sheets
from remindme.config import BotConfig
from remindme.models import RateLimitStatus


class ApiChecksTests(unittest.TestCase):
    def setUp(self):
        self.config = BotConfig(github_username="RemindMe", github_token="t")

    @mock.patch("remindme.api_checks.GitHubClient")
    def test_github_ok(self, client_cls):
        client = client_cls.return_value
        client.get_authenticated_user.return_value = {"login": "remindme"}
        client.get_rate_limit.return_value = RateLimitStatus(4000, 5000, datetime.now(timezone.utc))

        ok, message = check_github(self.config)

        self.assertTrue(ok, message)
        self.assertIn("4000/5000", message)

    @mock.patch("remindme.api_checks.GitHubClient")
    def test_github_wrong_account(self, client_cls):
        client = client_cls.return_value
        client.get_authenticated_user.return_value = {"login": "someone-else"}
        client.get_rate_limit.return_value = RateLimitStatus(1, 1, datetime.now(timezone.utc))

        ok, message = check_github(self.config)

        self.assertFalse(ok)
        self.assertIn("someone-else", message)

    @mock.patch("remindme.api_checks.GitHubClient")
    def test_github_error(self, client_cls):
        client_cls.return_value.get_authenticated_user.side_effect = RuntimeError("401")
        ok, message = check_github(self.config)
        self.assertFalse(ok)
        self.assertIn("401", message)

    def test_sheets_skipped_without_spreadsheet(self):
        ok, message = check_sheets(self.config)
        self.assertTrue(ok)
        self.assertIn("skipped", message)


if __name__ == "__main__":
    unittest.main()
