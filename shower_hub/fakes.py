"""In-memory stand-ins for the backend, timers and AI calls, used by the tests."""

from __future__ import annotations

import copy
import datetime
import itertools
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import UpstreamWriteError
from .store import Filters


def _matches(row: Dict[str, Any], filters: Optional[Filters]) -> bool:
    for column, spec in (filters or {}).items():
        op, value = spec if isinstance(spec, tuple) else ("eq", spec)
        actual = row.get(column)
        if value is None:
            if actual is not None:
                return False
        elif op == "eq" and actual != value:
            return False
        elif op == "neq" and actual == value:
            return False
        elif op == "in" and actual not in value:
            return False
        elif op in ("gt", "gte", "lt", "lte"):
            if actual is None:
                return False
            if op == "gt" and not actual > value:
                return False
            if op == "gte" and not actual >= value:
                return False
            if op == "lt" and not actual < value:
                return False
            if op == "lte" and not actual <= value:
                return False
    return True


class FakeStore:
    """Same surface as PersistenceClient, backed by dicts.

    Set ``fail_on`` to a set of method names to make those calls raise
    ``UpstreamWriteError``. With ``uuid_ids`` rows get string UUID ids, as the
    hosted game tables do.
    """

    def __init__(self, uuid_ids: bool = False) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.fail_on: set = set()
        self.calls: List[Tuple[str, str]] = []
        self._ids = itertools.count(1)
        self.uuid_ids = uuid_ids

    def _check(self, method: str, table: str) -> None:
        self.calls.append((method, table))
        if method in self.fail_on:
            raise UpstreamWriteError(f"Backend error (500): {method} on {table} failed", backend_status=500)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        self._check("insert", table)
        row = copy.deepcopy(record)
        row.setdefault("id", str(uuid.uuid4()) if self.uuid_ids else next(self._ids))
        row.setdefault("created_at", datetime.datetime.now(datetime.timezone.utc).isoformat())
        self.rows(table).append(row)
        return copy.deepcopy(row)

    def upsert(self, table: str, record: Dict[str, Any], on_conflict: str) -> Dict[str, Any]:
        self._check("upsert", table)
        keys = {column: record.get(column) for column in on_conflict.split(",")}
        for row in self.rows(table):
            if _matches(row, keys):
                row.update(copy.deepcopy(record))
                return copy.deepcopy(row)
        self.calls.pop()
        return self.insert(table, record)

    def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        *,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        self._check("select", table)
        rows = [row for row in self.rows(table) if _matches(row, filters)]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=direction == "desc")
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    def select_one(self, table: str, filters: Optional[Filters] = None, **kwargs: Any) -> Optional[Dict[str, Any]]:
        rows = self.select(table, filters, limit=1, **kwargs)
        return rows[0] if rows else None

    def count(self, table: str, filters: Optional[Filters] = None) -> int:
        self._check("count", table)
        return sum(1 for row in self.rows(table) if _matches(row, filters))

    def update(self, table: str, filters: Filters, changes: Dict[str, Any]) -> List[Dict[str, Any]]:
        self._check("update", table)
        updated = []
        for row in self.rows(table):
            if _matches(row, filters):
                row.update(copy.deepcopy(changes))
                updated.append(copy.deepcopy(row))
        return updated

    def close(self) -> None:
        pass


class ManualTimer:
    def __init__(self, delay: float, fn: Callable[[], None]) -> None:
        self.delay = delay
        self.fn = fn
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Records scheduled calls; tests fire them explicitly."""

    def __init__(self) -> None:
        self.timers: List[ManualTimer] = []

    def call_later(self, delay: float, fn: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay, fn)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def fire_next(self) -> ManualTimer:
        timer = self.pending[0]
        timer.cancelled = True
        timer.fn()
        return timer


class FakeTransport:
    def __init__(self, name: str) -> None:
        self.name = name
        self.on_status: Optional[Callable[[str], None]] = None
        self.on_insert: Optional[Callable[[Dict[str, Any]], None]] = None
        self.closed = False

    def open(self, on_status: Callable[[str], None], on_insert: Callable[[Dict[str, Any]], None]) -> None:
        self.on_status = on_status
        self.on_insert = on_insert

    def close(self) -> None:
        self.closed = True

    def emit(self, status: str) -> None:
        assert self.on_status is not None
        self.on_status(status)

    def push(self, row: Dict[str, Any]) -> None:
        assert self.on_insert is not None
        self.on_insert(row)


class FakeCompleter:
    """Returns canned replies in order; an error string stands in for a failed call."""

    def __init__(self, *replies: Any) -> None:
        self.replies = list(replies)
        self.prompts: List[str] = []

    def complete(self, prompt: str, *, max_tokens: int = 200) -> Tuple[Optional[str], Optional[str]]:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else None
        if isinstance(reply, Exception):
            return None, str(reply)
        if reply is None:
            return None, "no reply"
        return reply, None
