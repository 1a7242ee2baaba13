from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import List, Optional, Union
from zoneinfo import ZoneInfo

import parsedatetime

logger = logging.getLogger(__name__)

# "at 6pm", "on July 4th" -- filler words the grammar does not need.
_FILLER_RE = re.compile(r"^\s*(?:at|on)\s+", re.IGNORECASE)

_YEAR_RE = re.compile(r"^(?:in\s+)?(\d{4})$", re.IGNORECASE)
_DIGITS_RE = re.compile(r"^\d+$")
_DAY_OF_MONTH_RE = re.compile(r"^(?:the\s+)?(\d{1,2})(?:st|nd|rd|th)$", re.IGNORECASE)

_NUMERIC_TOKEN_RE = re.compile(
    r"^(?:"
    r"\d+(?:st|nd|rd|th)?"                      # 3, 4th
    r"|\d{1,2}(?::\d{2}){1,2}(?:am|pm|a|p)?"    # 6:00, 6:00pm
    r"|\d{1,2}(?:am|pm|a|p)"                    # 5pm
    r"|\d{1,4}(?:[/-]\d{1,2}){1,2}"             # 7/4, 2027-07-04
    r")$"
)
_TOKEN_PUNCTUATION = ",.!?;"

_NUMBER_WORDS = {
    "zero", "one", "two", "three", "four", "five", "six", "seven", "eight", "nine",
    "ten", "eleven", "twelve", "thirteen", "fourteen", "fifteen", "sixteen",
    "seventeen", "eighteen", "nineteen", "twenty", "thirty", "forty", "fifty",
    "sixty", "seventy", "eighty", "ninety", "hundred", "thousand",
}
_SUB_DAY_UNITS = {
    "second", "seconds", "sec", "secs", "minute", "minutes", "min", "mins",
    "hour", "hours", "hr", "hrs",
}
_CALENDAR_UNITS = {"day", "days", "week", "weeks", "month", "months", "year", "years"}
_RELATIVE_WORDS = {"in", "from", "now", "and", "a", "an", "half"}
_WEEKDAYS = {
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "mon", "tue", "tues", "wed", "thu", "thur", "thurs", "fri", "sat", "sun",
}
_MONTHS = {
    "january", "february", "march", "april", "may", "june", "july", "august",
    "september", "october", "november", "december",
    "jan", "feb", "mar", "apr", "jun", "jul", "aug", "sep", "sept", "oct", "nov", "dec",
}
_OTHER_WORDS = {
    "at", "on", "the", "of", "this", "next", "by", "after", "before", "ago", "last",
    "prior", "previous", "end", "eod", "eom", "eoy", "am", "pm",
    "today", "tomorrow", "tonight", "yesterday", "noon", "midnight", "morning",
    "afternoon", "evening", "night", "lunch", "breakfast", "dinner",
}
_VOCABULARY = (
    _NUMBER_WORDS | _SUB_DAY_UNITS | _CALENDAR_UNITS | _RELATIVE_WORDS
    | _WEEKDAYS | _MONTHS | _OTHER_WORDS
)

# Hour the grammar picks for a bare date ("tomorrow", "the 5th").
_START_HOUR = 9


@dataclass(frozen=True)
class Resolved:
    phrase: str
    when: datetime


@dataclass(frozen=True)
class Rejected:
    phrase: str


Resolution = Union[Resolved, Rejected]


def _tokens(text: str) -> List[str]:
    words = (w.strip(_TOKEN_PUNCTUATION).lower() for w in text.split())
    return [w for w in words if w]


def _is_grammar_token(token: str) -> bool:
    return token in _VOCABULARY or bool(_NUMERIC_TOKEN_RE.match(token))


def _is_elapsed_time(tokens: List[str]) -> bool:
    """True for phrases like "in 2 hours" that measure elapsed time, not wall-clock time."""
    if not any(t in _SUB_DAY_UNITS for t in tokens):
        return False
    return all(
        t in _SUB_DAY_UNITS or t in _RELATIVE_WORDS or t in _NUMBER_WORDS or t.isdigit()
        for t in tokens
    )


class DateResolver:
    """Turns a free-text time phrase into a future instant.

    Parsing is delegated to parsedatetime, which understands relative
    ("in 2 hours", "3 weeks from now"), absolute ("July 4th") and weekday
    forms and prefers the next occurrence when a phrase is ambiguous.
    Every word of the phrase has to belong to that grammar; parsedatetime
    alone would happily pick "tomorrow" out of "banana tomorrow".
    Anything that lands at or before ``now`` is rejected rather than shifted.
    """

    def __init__(self, tz: Union[str, tzinfo, None] = None):
        if tz is None:
            self.tz: tzinfo = timezone.utc
        elif isinstance(tz, str):
            self.tz = timezone.utc if tz.upper() == "UTC" else ZoneInfo(tz)
        else:
            self.tz = tz
        self._calendar = parsedatetime.Calendar(version=parsedatetime.VERSION_CONTEXT_STYLE)

    def resolve(self, phrase: str, now: Optional[datetime] = None) -> Resolution:
        original = (phrase or "").strip()
        if not original:
            return Rejected(original)

        text = _FILLER_RE.sub("", original, count=1).strip()
        if not text:
            return Rejected(original)

        current = self._localize(now)
        when = self._parse(text, current)
        if when is None:
            logger.debug("Could not parse %r", original)
            return Rejected(original)

        if when <= current:
            logger.debug("Rejected %r: %s is not in the future", original, when.isoformat())
            return Rejected(original)

        return Resolved(original, when)

    def _parse(self, text: str, current: datetime) -> Optional[datetime]:
        year = _YEAR_RE.match(text)
        if year:
            return datetime(int(year.group(1)), 1, 1, tzinfo=self.tz)
        if _DIGITS_RE.match(text):
            return None

        day = _DAY_OF_MONTH_RE.match(text)
        if day:
            return self._next_day_of_month(int(day.group(1)), current)

        tokens = _tokens(text)
        if not tokens or not all(_is_grammar_token(t) for t in tokens):
            return None

        wall_now = current.replace(tzinfo=None, microsecond=0)
        parsed, context = self._calendar.parseDT(text, sourceTime=wall_now)
        if not context.hasDateOrTime:
            return None

        if _is_elapsed_time(tokens):
            # Add the offset to the real instant so a DST switch in between
            # does not stretch or shrink it.
            elapsed = parsed - wall_now
            base = current.replace(microsecond=0).astimezone(timezone.utc)
            return (base + elapsed).astimezone(self.tz)
        return parsed.replace(tzinfo=self.tz)

    def _next_day_of_month(self, day: int, current: datetime) -> Optional[datetime]:
        if not 1 <= day <= 31:
            return None
        year, month = current.year, current.month
        for _ in range(13):
            if day <= calendar.monthrange(year, month)[1]:
                candidate = datetime(year, month, day, _START_HOUR, tzinfo=self.tz)
                if candidate > current:
                    return candidate
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)
        return None

    def _localize(self, now: Optional[datetime]) -> datetime:
        if now is None:
            return datetime.now(self.tz).replace(microsecond=0)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.tz)
