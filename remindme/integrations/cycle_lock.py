from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple, Union

from remindme.integrations.google_sheets_client import GoogleSheetsClient

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 120


class LockError(Exception):
    """Raised when the cycle lock is held by someone else."""


class LocalCycleLock:
    """In-process lock for single-instance deployments."""

    def __init__(self, name: str = "process-notifications",
                 timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.timeout = timeout
        self._clock = clock
        self._mutex = threading.Lock()
        self._holder: Optional[Tuple[str, float]] = None

    def acquire(self) -> str:
        with self._mutex:
            now = self._clock()
            if self._holder is not None and self._holder[1] > now:
                raise LockError(f"Lock {self.name!r} is already held")
            code = uuid.uuid4().hex
            self._holder = (code, now + self.timeout)
            return code

    def release(self, code: str) -> bool:
        with self._mutex:
            if self._holder is None or self._holder[0] != code:
                return False
            self._holder = None
            return True

    def renew(self, code: str) -> bool:
        with self._mutex:
            if self._holder is None or self._holder[0] != code:
                return False
            self._holder = (code, self._clock() + self.timeout)
            return True


class SheetsCycleLock:
    """Lease kept in the State tab as ``lock:<name> = <code>|<expires_at>``.

    A lease older than ``timeout`` is taken over, so a crashed holder cannot
    starve the other instances.
    """

    def __init__(self, sheets: GoogleSheetsClient, name: str = "process-notifications",
                 timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
                 now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.sheets = sheets
        self.name = name
        self.timeout = timeout
        self._now = now

    @property
    def state_key(self) -> str:
        return f"lock:{self.name}"

    def _read_lease(self) -> Tuple[str, Optional[datetime]]:
        raw = self.sheets.get_state().get(self.state_key, "")
        if not raw or "|" not in raw:
            return "", None
        code, _, expires = raw.partition("|")
        try:
            return code, datetime.fromisoformat(expires)
        except ValueError:
            logger.warning("Ignoring unreadable lease %r for lock %s", raw, self.name)
            return "", None

    def acquire(self) -> str:
        now = self._now()
        code, expires = self._read_lease()
        if code and expires is not None and expires > now:
            raise LockError(f"Lock {self.name!r} is held until {expires.isoformat()}")
        if code:
            logger.warning("Taking over expired lease on lock %s", self.name)

        new_code = uuid.uuid4().hex
        lease_end = now + timedelta(seconds=self.timeout)
        self.sheets.set_state(self.state_key, f"{new_code}|{lease_end.isoformat()}")

        # Sheets has no compare-and-set; read back to catch a racing writer.
        stored, _ = self._read_lease()
        if stored != new_code:
            raise LockError(f"Lost the race for lock {self.name!r}")
        return new_code

    def release(self, code: str) -> bool:
        stored, _ = self._read_lease()
        if stored != code:
            return False
        self.sheets.set_state(self.state_key, "")
        return True

    def renew(self, code: str) -> bool:
        """Push our lease end out by another ``timeout``; False if it is no longer ours."""
        stored, _ = self._read_lease()
        if stored != code:
            return False
        lease_end = self._now() + timedelta(seconds=self.timeout)
        self.sheets.set_state(self.state_key, f"{code}|{lease_end.isoformat()}")
        stored, _ = self._read_lease()
        return stored == code


class LeaseKeeper:
    """Keeps a held lease alive while a cycle runs.

    Call it between units of work. Once a third of the lease timeout has
    passed it renews the lease; if the lease turns out to be gone it raises
    ``LockError`` (and keeps raising) so no further writes go out.
    """

    def __init__(self, lock: Union[LocalCycleLock, SheetsCycleLock], code: str,
                 timeout: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.lock = lock
        self.code = code
        self.timeout = float(timeout if timeout is not None else lock.timeout)
        self._clock = clock
        self._mutex = threading.Lock()
        self._renewed_at = clock()
        self._lost = False
        self.renewals = 0

    def __call__(self) -> None:
        with self._mutex:
            if self._lost:
                raise LockError(f"Lease on lock {self.lock.name!r} was lost")
            now = self._clock()
            if now - self._renewed_at < self.timeout / 3:
                return
            if not self.lock.renew(self.code):
                self._lost = True
                raise LockError(f"Lease on lock {self.lock.name!r} was lost")
            self._renewed_at = now
            self.renewals += 1
            logger.info("renewed lock")
