from __future__ import annotations

import argparse
import logging
import time
import traceback
from dataclasses import dataclass
from typing import Optional, Union

from remindme.config import BotConfig
from remindme.integrations.cycle_lock import LeaseKeeper, LocalCycleLock, LockError, SheetsCycleLock
from remindme.integrations.github_client import GitHubAPIError, GitHubClient
from remindme.integrations.google_sheets_client import GoogleSheetsClient
from remindme.workflow.cycle import CycleOrchestrator, CycleResult
from remindme.workflow.date_resolver import DateResolver
from remindme.workflow.dispatcher import RateLimitedDispatcher

logger = logging.getLogger(__name__)

# ── Logging setup (early, so all modules benefit) ────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


# ══════════════════════════════════════════════════════════════════════════
# Runtime context
# ══════════════════════════════════════════════════════════════════════════

@dataclass
class RuntimeContext:
    config: BotConfig
    orchestrator: CycleOrchestrator
    lock: Union[LocalCycleLock, SheetsCycleLock]
    sheets: Optional[GoogleSheetsClient] = None


def build_context(config: BotConfig) -> RuntimeContext:
    github = GitHubClient(config)
    sheets: Optional[GoogleSheetsClient] = None
    if config.sheets_enabled:
        sheets = GoogleSheetsClient(config)
        sheets.ensure_default_schema()
        lock = SheetsCycleLock(sheets, name=config.lock_name, timeout=config.lock_timeout_seconds)
    else:
        logger.info("No spreadsheet configured; using an in-process lock and not recording reminders")
        lock = LocalCycleLock(name=config.lock_name, timeout=config.lock_timeout_seconds)

    orchestrator = CycleOrchestrator(
        github=github,
        handle=config.handle,
        dispatcher=RateLimitedDispatcher(
            interval=config.dispatch_interval_seconds,
            concurrency=config.dispatch_concurrency,
        ),
        resolver=DateResolver(config.timezone),
        reminder_store=sheets if sheets is not None and not config.dry_run else None,
        fetch_concurrency=config.fetch_concurrency,
    )
    return RuntimeContext(config=config, orchestrator=orchestrator, lock=lock, sheets=sheets)


# ══════════════════════════════════════════════════════════════════════════
# Cycle
# ══════════════════════════════════════════════════════════════════════════

def _log_cycle_error(error: BaseException) -> None:
    logger.error("".join(traceback.format_exception(type(error), error, error.__traceback__)).rstrip())
    if isinstance(error, GitHubAPIError) and error.url:
        logger.error("URL: %s", error.url)
        if error.body:
            logger.error("Response body: %s", error.body)


def run_locked_cycle(ctx: RuntimeContext) -> Optional[CycleResult]:
    """Acquire the lock, run one cycle, release the lock.

    Returns None when the lock could not be acquired.
    """
    try:
        code = ctx.lock.acquire()
    except LockError as exc:
        logger.error("Could not acquire lock: %s", exc)
        return None
    except Exception as exc:
        logger.error("Lock acquisition failed: %s", exc)
        return None
    logger.info("acquired lock")

    try:
        result = ctx.orchestrator.run_cycle(keepalive=LeaseKeeper(ctx.lock, code))
    finally:
        try:
            if ctx.lock.release(code):
                logger.info("released lock")
            else:
                logger.warning("could not release lock!")
        except Exception as exc:
            logger.warning("could not release lock: %s", exc)

    if result.error is not None:
        _log_cycle_error(result.error)
    else:
        print(f"Cycle done: {result.notifications} mention notification(s), "
              f"{result.comments} new comment(s), {result.actions} action(s), "
              f"{result.dispatched} write(s) dispatched.")
    return result


def run_daemon(ctx: RuntimeContext, sleep=time.sleep, max_cycles: Optional[int] = None) -> int:
    """Run cycles forever (or ``max_cycles`` times), sleeping between them."""
    interval = max(ctx.config.poll_interval_seconds, 1)
    print(f"Daemon mode: poll every {interval} second(s)")
    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        cycles += 1
        try:
            run_locked_cycle(ctx)
        except Exception as exc:
            logger.error("Bot loop error (cycle %d): %s", cycles, exc)
            traceback.print_exc()
        sleep(interval)
    return cycles


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the GitHub RemindMe bot")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--mode", choices=["once", "daemon"], default="daemon")
    args = parser.parse_args()

    config = BotConfig.from_env(dry_run_override=args.dry_run if args.dry_run else None)
    ctx = build_context(config)

    if args.mode == "once":
        result = run_locked_cycle(ctx)
        if result is None or not result.ok:
            raise SystemExit(1)
        return

    run_daemon(ctx)


if __name__ == "__main__":
    main()
