from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

import requests

from remindme.config import BotConfig
from remindme.models import Comment, Notification, RateLimitStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class GitHubAPIError(Exception):
    """Non-2xx response, exhausted retries, or a transport failure."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.url = url
        self.body = body
        super().__init__(message)


class MalformedPayloadError(GitHubAPIError):
    """The API answered, but not with the shape we expect."""


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------

def _require(payload: Any, key: str, kind: type, where: str) -> Any:
    if not isinstance(payload, dict):
        raise MalformedPayloadError(f"{where}: expected an object, got {type(payload).__name__}")
    value = payload.get(key)
    if not isinstance(value, kind):
        raise MalformedPayloadError(f"{where}: field {key!r} missing or not {kind.__name__}")
    return value


def parse_notification(payload: Any) -> Notification:
    subject = _require(payload, "subject", dict, "notification")
    return Notification(
        id=_require(payload, "id", str, "notification"),
        reason=_require(payload, "reason", str, "notification"),
        subject_url=_require(subject, "url", str, "notification.subject"),
        url=_require(payload, "url", str, "notification"),
    )


def parse_comment(payload: Any) -> Comment:
    user = _require(payload, "user", dict, "comment")
    body = payload.get("body") if isinstance(payload, dict) else None
    return Comment(
        id=str(_require(payload, "id", int, "comment")),
        body=body if isinstance(body, str) else "",
        url=_require(payload, "url", str, "comment"),
        issue_url=_require(payload, "issue_url", str, "comment"),
        author=_require(user, "login", str, "comment.user"),
    )


def _retry_after_seconds(value: Optional[str], fallback: float, ceiling: float) -> float:
    """Seconds to wait per a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return fallback
    try:
        seconds = float(int(value.strip()))
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return fallback
        if when is None:
            return fallback
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
    return min(max(seconds, 0.0), ceiling)


def _parse_list(payload: Any, where: str) -> List[Any]:
    if not isinstance(payload, list):
        raise MalformedPayloadError(f"{where}: expected a list, got {type(payload).__name__}")
    return payload


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GitHubClient:
    """Thin wrapper over the handful of REST endpoints the bot needs.

    Reads are retried on transient failures (429, 5xx, connection errors).
    Writes are attempted once: a retried reply post could show up twice.
    """

    MAX_RETRIES = 3
    BACKOFF_BASE = 2.0
    MAX_RETRY_AFTER = 60

    def __init__(self, config: BotConfig, session: Optional[requests.Session] = None):
        self.api_url = config.github_api_url.rstrip("/")
        self.timeout = config.http_timeout_seconds
        self.dry_run = config.dry_run
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"token {config.github_token}",
            "User-Agent": config.github_user_agent,
            "Accept": "application/vnd.github+json",
        })

    # ------------------------------------------------------------------
    # Core request (with retry for reads)
    # ------------------------------------------------------------------

    def _request(self, method: str, url: str, max_retries: int = 1, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        last_exc: Optional[Exception] = None

        for attempt in range(max_retries):
            try:
                resp = self.session.request(method, url, **kwargs)
            except (requests.ConnectionError, requests.Timeout) as exc:
                last_exc = GitHubAPIError(f"{method} {url} failed: {exc}", url=url)
                if attempt + 1 < max_retries:
                    wait = self.BACKOFF_BASE ** attempt
                    logger.warning("Network error on %s %s: %s. Retrying in %.1fs (attempt %d/%d)",
                                   method, url, exc, wait, attempt + 1, max_retries)
                    time.sleep(wait)
                continue

            if resp.status_code == 429 or resp.status_code >= 500:
                last_exc = self._error_for(resp, method, url)
                if attempt + 1 < max_retries:
                    if resp.status_code == 429:
                        wait = _retry_after_seconds(
                            resp.headers.get("Retry-After"), self.BACKOFF_BASE ** attempt, self.MAX_RETRY_AFTER
                        )
                    else:
                        wait = self.BACKOFF_BASE ** attempt
                    logger.warning("GitHub returned %d for %s. Retrying in %.1fs (attempt %d/%d)",
                                   resp.status_code, url, wait, attempt + 1, max_retries)
                    time.sleep(wait)
                continue

            if not 200 <= resp.status_code < 300:
                raise self._error_for(resp, method, url)
            return resp

        raise last_exc or GitHubAPIError(f"All {max_retries} attempts failed for {method} {url}", url=url)

    @staticmethod
    def _error_for(resp: requests.Response, method: str, url: str) -> GitHubAPIError:
        return GitHubAPIError(
            f"GitHub returned {resp.status_code} for {method} {url}",
            status_code=resp.status_code,
            url=url,
            body=resp.text,
        )

    def _get_json(self, url: str, **kwargs) -> Any:
        resp = self._request("GET", url, max_retries=self.MAX_RETRIES, **kwargs)
        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedPayloadError(
                f"Invalid JSON from {url}: {exc}", status_code=resp.status_code, url=url, body=resp.text
            ) from exc

    def _write(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> None:
        if self.dry_run:
            print(f"[DRY-RUN] {method} {url} {payload or ''}")
            return
        self._request(method, url, json=payload)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_notifications(self) -> List[Notification]:
        data = self._get_json(f"{self.api_url}/notifications")
        return [parse_notification(n) for n in _parse_list(data, "notifications")]

    def get_thread_comments(self, subject_url: str) -> List[Comment]:
        data = self._get_json(f"{subject_url}/comments", params={"per_page": 100})
        return [parse_comment(c) for c in _parse_list(data, "comments")]

    def get_reaction_logins(self, comment_url: str) -> List[str]:
        """Logins of everyone who reacted to the comment."""
        data = self._get_json(f"{comment_url}/reactions", params={"per_page": 100})
        logins = []
        for reaction in _parse_list(data, "reactions"):
            user = _require(reaction, "user", dict, "reaction")
            logins.append(_require(user, "login", str, "reaction.user"))
        return logins

    def has_reacted(self, comment_url: str, login: str) -> bool:
        target = login.strip().lstrip("@").lower()
        return any(name.lower() == target for name in self.get_reaction_logins(comment_url))

    def get_rate_limit(self) -> RateLimitStatus:
        data = self._get_json(f"{self.api_url}/rate_limit")
        rate = _require(data, "rate", dict, "rate_limit")
        reset = _require(rate, "reset", int, "rate_limit.rate")
        return RateLimitStatus(
            remaining=_require(rate, "remaining", int, "rate_limit.rate"),
            limit=_require(rate, "limit", int, "rate_limit.rate"),
            reset=datetime.fromtimestamp(reset, tz=timezone.utc),
        )

    def get_authenticated_user(self) -> Dict[str, Any]:
        data = self._get_json(f"{self.api_url}/user")
        if not isinstance(data, dict):
            raise MalformedPayloadError("user: expected an object")
        return data

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def mark_notification_read(self, notification: Notification) -> None:
        self._write("PATCH", notification.url)

    def post_reply(self, comment: Comment, body: str) -> None:
        self._write("POST", f"{comment.issue_url}/comments", {"body": body})

    def post_reaction(self, comment: Comment, content: str) -> None:
        self._write("POST", f"{comment.url}/reactions", {"content": content})
