import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv


load_dotenv()


def _get_tab_name(env_key: str, default: str) -> str:
    """Get tab name from env var, falling back to default if empty."""
    value = os.getenv(env_key, default)
    if not value or not value.strip():
        return default
    return value.strip()


@dataclass
class BotConfig:
    github_username: str
    github_token: str
    github_user_agent: str = "remindme-bot"
    github_api_url: str = "https://api.github.com"
    timezone: str = "UTC"
    poll_interval_seconds: int = 60
    dispatch_interval_seconds: float = 1.0
    dispatch_concurrency: int = 1
    fetch_concurrency: int = 4
    http_timeout_seconds: int = 15
    lock_timeout_seconds: int = 120
    lock_name: str = "process-notifications"
    dry_run: bool = False
    google_spreadsheet_id: Optional[str] = None
    google_service_account_path: Optional[str] = None
    google_service_account_json: Optional[Dict[str, Any]] = None
    reminders_tab_name: str = "Reminders"
    state_tab_name: str = "State"

    @property
    def handle(self) -> str:
        """Bot handle without the leading '@'."""
        return self.github_username.strip().lstrip("@")

    @property
    def sheets_enabled(self) -> bool:
        return bool(self.google_spreadsheet_id)

    @staticmethod
    def _parse_bool(value: Optional[str], default: bool = False) -> bool:
        if value is None:
            return default
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}

    @staticmethod
    def _parse_int(value: Optional[str], default: int) -> int:
        if value is None:
            return default
        raw = str(value).strip()
        if raw == "":
            return default
        try:
            return int(raw)
        except ValueError:
            return default

    @staticmethod
    def _parse_float(value: Optional[str], default: float) -> float:
        if value is None:
            return default
        raw = str(value).strip()
        if raw == "":
            return default
        try:
            return float(raw)
        except ValueError:
            return default

    @classmethod
    def from_env(cls, dry_run_override: Optional[bool] = None) -> "BotConfig":
        github_username = os.getenv("GITHUB_USERNAME", "").strip().lstrip("@")
        github_token = os.getenv("GITHUB_TOKEN", "").strip()

        required = [
            ("GITHUB_USERNAME", github_username),
            ("GITHUB_TOKEN", github_token),
        ]
        missing = [k for k, v in required if not v]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        # The spreadsheet is optional; without it the bot keeps no reminder
        # records and falls back to an in-process lock.
        spreadsheet_id = os.getenv("GOOGLE_SHEETS_SPREADSHEET_ID", "").strip() or None
        service_account_path = os.getenv("GOOGLE_SERVICE_ACCOUNT_PATH", "").strip() or None
        service_account_json_raw = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON", "").strip()
        service_account_json = None
        if service_account_json_raw:
            service_account_json = json.loads(service_account_json_raw)
        elif spreadsheet_id and not service_account_path:
            raise ValueError(
                "Provide GOOGLE_SERVICE_ACCOUNT_PATH or GOOGLE_SERVICE_ACCOUNT_JSON"
            )

        dry_run = (
            dry_run_override
            if dry_run_override is not None
            else cls._parse_bool(os.getenv("BOT_DRY_RUN"), default=False)
        )

        return cls(
            github_username=github_username,
            github_token=github_token,
            github_user_agent=os.getenv("GITHUB_USER_AGENT", "remindme-bot").strip() or "remindme-bot",
            github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com").strip().rstrip("/"),
            timezone=os.getenv("BOT_TIMEZONE", "UTC").strip() or "UTC",
            poll_interval_seconds=cls._parse_int(os.getenv("BOT_POLL_INTERVAL_SECONDS"), 60),
            dispatch_interval_seconds=cls._parse_float(
                os.getenv("BOT_DISPATCH_INTERVAL_SECONDS"), 1.0
            ),
            dispatch_concurrency=max(cls._parse_int(os.getenv("BOT_DISPATCH_CONCURRENCY"), 1), 1),
            fetch_concurrency=max(cls._parse_int(os.getenv("BOT_FETCH_CONCURRENCY"), 4), 1),
            http_timeout_seconds=cls._parse_int(os.getenv("BOT_HTTP_TIMEOUT_SECONDS"), 15),
            lock_timeout_seconds=cls._parse_int(os.getenv("BOT_LOCK_TIMEOUT_SECONDS"), 120),
            lock_name=os.getenv("BOT_LOCK_NAME", "process-notifications").strip()
            or "process-notifications",
            dry_run=dry_run,
            google_spreadsheet_id=spreadsheet_id,
            google_service_account_path=service_account_path,
            google_service_account_json=service_account_json,
            reminders_tab_name=_get_tab_name("BOT_REMINDERS_TAB", "Reminders"),
            state_tab_name=_get_tab_name("BOT_STATE_TAB", "State"),
        )
