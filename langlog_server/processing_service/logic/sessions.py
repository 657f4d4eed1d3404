# langlog_server/processing_service/logic/sessions.py
"""
Folds the ticks of one (user, content key) into sessions.

A session is a maximal run of ticks no more than GAP apart. `start` and
`heartbeat` open or extend a session, `pause` and `end` close it. A gap
longer than GAP closes the open session at the last tick seen. `pause` or
`end` with no open session belongs to no session.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from langlog_server.processing_service.db_models import ActivityType

GAP = timedelta(minutes=2)
MIN_SESSION = timedelta(minutes=1)


@dataclass
class Tick:
    event_id: uuid.UUID
    activity_type: ActivityType
    occurred_at: datetime


@dataclass
class Session:
    start: datetime
    end: datetime
    event_ids: List[uuid.UUID] = field(default_factory=list)

    @property
    def duration(self) -> timedelta:
        return max(timedelta(0), self.end - self.start)

    @property
    def duration_ms(self) -> int:
        return int(self.duration.total_seconds() * 1000)

    @property
    def is_long_enough(self) -> bool:
        return self.duration >= MIN_SESSION


@dataclass
class FoldResult:
    closed: List[Session] = field(default_factory=list)
    trailing: Optional[Session] = None
    orphan_event_ids: List[uuid.UUID] = field(default_factory=list)
    last_seen_at: Optional[datetime] = None


def fold_sessions(ticks: Iterable[Tick], gap: timedelta = GAP) -> FoldResult:
    result = FoldResult()
    current: Optional[Session] = None
    last_seen: Optional[datetime] = None

    for tick in sorted(ticks, key=lambda t: t.occurred_at):
        if current is not None and last_seen is not None and tick.occurred_at - last_seen > gap:
            current.end = last_seen
            result.closed.append(current)
            current = None

        if current is None:
            if tick.activity_type.opens_session:
                current = Session(start=tick.occurred_at, end=tick.occurred_at, event_ids=[tick.event_id])
            else:
                result.orphan_event_ids.append(tick.event_id)
        else:
            current.end = tick.occurred_at
            current.event_ids.append(tick.event_id)
            if tick.activity_type.closes_session:
                result.closed.append(current)
                current = None
        last_seen = tick.occurred_at

    result.trailing = current
    result.last_seen_at = last_seen
    return result
