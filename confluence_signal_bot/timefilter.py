from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Sequence, Tuple


def _hour_in(h: int, start: int, end: int) -> bool:
    # Inclusive hour buckets; start > end wraps midnight.
    if start <= end:
        return start <= h <= end
    return h >= start or h <= end


@dataclass
class SessionWindows:
    windows: List[Tuple[int, int]]

    @classmethod
    def from_config(cls, raw: Sequence[Sequence[int]]) -> "SessionWindows":
        return cls(windows=[(int(w[0]), int(w[1])) for w in raw or ()])

    def within(self, ts_s: int) -> bool:
        """True when the UTC hour of the epoch-seconds timestamp falls in any window."""
        if not self.windows:
            return True
        h = datetime.fromtimestamp(ts_s, tz=timezone.utc).hour
        return any(_hour_in(h, s, e) for s, e in self.windows)
