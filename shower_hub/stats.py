from __future__ import annotations

import collections
import copy
import logging
import threading
from typing import Any, Dict, List, Optional

from .activities import ACTIVITY_TYPES
from .store import SUBMISSIONS_TABLE

logger = logging.getLogger(__name__)

# key -> (metric, threshold); "votes" counts individual name votes.
MILESTONES: Dict[str, tuple] = {
    "GUESTBOOK_5": ("guestbook", 5),
    "GUESTBOOK_10": ("guestbook", 10),
    "GUESTBOOK_20": ("guestbook", 20),
    "POOL_10": ("pool", 10),
    "POOL_20": ("pool", 20),
    "QUIZ_25": ("quiz", 25),
    "QUIZ_50": ("quiz", 50),
    "ADVICE_10": ("advice", 10),
    "ADVICE_20": ("advice", 20),
    "VOTES_50": ("votes", 50),
}

POOL_MILESTONE = 50

ACTIVITY_LABELS = {
    "guestbook": "New wish!",
    "pool": "New prediction!",
    "quiz": "Quiz completed!",
    "advice": "New advice!",
    "voting": "New vote!",
}

RECENT_LIMIT = 20


def tally_votes(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    tally: Dict[str, int] = collections.Counter()
    for row in rows:
        names = (row.get("activity_data") or {}).get("selected_names") or []
        if isinstance(names, str):
            names = [part.strip() for part in names.split(",")]
        for name in names:
            if name:
                tally[name] += 1
    return dict(sorted(tally.items(), key=lambda item: (-item[1], item[0])))


def crossed_milestones(metric: str, before: int, after: int) -> List[str]:
    return [
        key
        for key, (milestone_metric, threshold) in MILESTONES.items()
        if milestone_metric == metric and before < threshold <= after
    ]


class LiveStats:
    """Counters fed by realtime INSERT events; safe to share across request threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.counts: Dict[str, int] = {kind: 0 for kind in ACTIVITY_TYPES}
        self.votes: Dict[str, int] = collections.Counter()
        self.unlocked: List[str] = []
        self.recent: collections.deque = collections.deque(maxlen=RECENT_LIMIT)

    def seed(self, store: Any, table: str = SUBMISSIONS_TABLE) -> None:
        counts = {kind: store.count(table, {"activity_type": kind}) for kind in ACTIVITY_TYPES}
        vote_rows = store.select(table, {"activity_type": "voting"}, columns="activity_data")
        with self._lock:
            self.counts.update(counts)
            self.votes = collections.Counter(tally_votes(vote_rows))
            self.unlocked = [
                key
                for key, (metric, threshold) in MILESTONES.items()
                if self._metric_locked(metric) >= threshold
            ]
        logger.info("Seeded live stats: %s", counts)

    def _metric_locked(self, metric: str) -> int:
        if metric == "votes":
            return sum(self.votes.values())
        return self.counts.get(metric, 0)

    def record(self, row: Dict[str, Any]) -> List[str]:
        kind = row.get("activity_type")
        if kind not in self.counts:
            return []
        newly: List[str] = []
        with self._lock:
            before = self.counts[kind]
            self.counts[kind] = before + 1
            newly.extend(crossed_milestones(kind, before, before + 1))
            if kind == "voting":
                votes_before = sum(self.votes.values())
                for name in tally_votes([row]):
                    self.votes[name] += 1
                newly.extend(crossed_milestones("votes", votes_before, sum(self.votes.values())))
            newly = [key for key in newly if key not in self.unlocked]
            self.unlocked.extend(newly)
            self.recent.appendleft(
                {
                    "activity_type": kind,
                    "label": ACTIVITY_LABELS.get(kind, "New activity!"),
                    "name": row.get("name", ""),
                    "created_at": row.get("created_at"),
                }
            )
        for key in newly:
            logger.info("Milestone unlocked: %s", key)
        return newly

    def snapshot(self, channels: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        with self._lock:
            votes = dict(sorted(self.votes.items(), key=lambda item: (-item[1], item[0])))
            return {
                "counts": dict(self.counts),
                "votes": votes,
                "total_votes": sum(votes.values()),
                "milestones": list(self.unlocked),
                "recent": copy.deepcopy(list(self.recent)),
                "channels": channels or {},
            }
