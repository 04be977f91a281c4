# ==============================
# Log Normalizer
# ==============================
"""
Turn a raw log batch into timestamped entries.

The remote side always sends the full cumulative log, so every call replaces the
whole log view; callers must not treat the output as an increment.

Accepted line shapes:
- "HH:MM:SS message"        -> today's date at that time of day
- "[HH:MM:SS] message"      -> same
- "<ISO-8601> message"      -> that instant, converted to the clock's timezone
- anything else             -> now + index milliseconds (keeps batch order stable)
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from core.contracts.operation_schema import LogEntry

Clock = Callable[[], datetime]

_TIME_OF_DAY = re.compile(r"^(?:\[(\d{2}):(\d{2}):(\d{2})\]|(\d{2}):(\d{2}):(\d{2}))\s+(.+)$")
_ISO_PREFIX = re.compile(
    r"^(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?)\s+(.+)$"
)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class LogNormalizer:
    def __init__(self, *, clock: Optional[Clock] = None) -> None:
        self.clock = clock or _local_now

    def normalize(self, raw_lines: Iterable[str]) -> List[LogEntry]:
        now = self.clock()
        entries: List[LogEntry] = []
        for idx, raw in enumerate(raw_lines):
            text = "" if raw is None else str(raw)
            parsed = self._parse(text, now)
            if parsed is None:
                entries.append(LogEntry(timestamp=now + timedelta(milliseconds=idx), line=text))
            else:
                ts, message = parsed
                entries.append(LogEntry(timestamp=ts, line=message))
        return entries

    def _parse(self, text: str, now: datetime) -> Optional[Tuple[datetime, str]]:
        m = _TIME_OF_DAY.match(text)
        if m:
            groups = m.group(1, 2, 3) if m.group(1) is not None else m.group(4, 5, 6)
            h, mi, s = (int(g) for g in groups)
            try:
                ts = now.replace(hour=h, minute=mi, second=s, microsecond=0)
            except ValueError:
                return None
            return ts, m.group(7)

        m = _ISO_PREFIX.match(text)
        if m:
            stamp = m.group(1).replace("Z", "+00:00")
            try:
                ts = datetime.fromisoformat(stamp)
            except ValueError:
                return None
            if ts.tzinfo is None:
                ts = ts.replace(tzinfo=now.tzinfo)
            elif now.tzinfo is not None:
                ts = ts.astimezone(now.tzinfo)
            else:
                ts = ts.astimezone().replace(tzinfo=None)
            return ts, m.group(2)
        return None
