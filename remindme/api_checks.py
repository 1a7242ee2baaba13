from __future__ import annotations

from typing import List, Tuple

from remindme.config import BotConfig
from remindme.integrations.github_client import GitHubClient
from remindme.integrations.google_sheets_client import GoogleSheetsClient


def check_github(config: BotConfig) -> Tuple[bool, str]:
    try:
        github = GitHubClient(config)
        user = github.get_authenticated_user()
        quota = github.get_rate_limit()
        login = user.get("login", "unknown")
        if str(login).lower() != config.handle.lower():
            return False, (
                f"GitHub FAILED: token belongs to @{login}, but GITHUB_USERNAME is @{config.handle}"
            )
        return True, f"GitHub OK: @{login} ({quota.remaining}/{quota.limit} requests left)"
    except Exception as exc:
        return False, f"GitHub FAILED: {exc}"


def check_sheets(config: BotConfig) -> Tuple[bool, str]:
    if not config.sheets_enabled:
        return True, "Google Sheets skipped: GOOGLE_SHEETS_SPREADSHEET_ID not set"
    try:
        sheets = GoogleSheetsClient(config)
        sheets.ensure_default_schema()
        reminders = sheets.read_rows(config.reminders_tab_name)
        return True, f"Google Sheets OK: reminders={len(reminders)}"
    except Exception as exc:
        return False, f"Google Sheets FAILED: {exc}"


def run_checks(step: str = "all") -> List[str]:
    config = BotConfig.from_env()
    checks = {
        "github": check_github,
        "sheets": check_sheets,
    }
    selected = checks.keys() if step == "all" else [step]

    failures: List[str] = []
    for name in selected:
        ok, message = checks[name](config)
        print(message)
        if not ok:
            failures.append(name)
    return failures
