"""Fan a submission out to the backend and the spreadsheet webhook.

The two writes are independent. A submission counts as accepted when at least
one backend took it; the two stores may diverge and nothing reconciles them.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from .activities import SubmissionPlan, plan_submission
from .errors import UpstreamBestEffortError, UpstreamWriteError
from .store import SUBMISSIONS_TABLE, PersistenceClient

logger = logging.getLogger(__name__)

SHEETS_LABEL = "Google Sheets"
SUPABASE_LABEL = "Supabase"


class SheetsWebhook:
    def __init__(self, url: str, *, timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.configured:
            raise UpstreamBestEffortError("Spreadsheet webhook not configured")
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise UpstreamBestEffortError(f"Webhook call failed: {exc}") from exc
        try:
            body = resp.json()
        except ValueError:
            body = {"status": resp.status_code}
        return body if isinstance(body, dict) else {"response": body}


@dataclass
class BranchResult:
    backend: str
    ok: bool = False
    skipped: bool = False
    data: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.skipped:
            return {"success": False, "skipped": True}
        if self.ok:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error}


@dataclass
class WriteOutcome:
    primary: BranchResult
    secondary: BranchResult
    plan: Optional[SubmissionPlan] = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.primary.ok or self.secondary.ok

    @property
    def errors(self) -> List[Dict[str, str]]:
        return [
            {"backend": branch.backend, "error": branch.error or "unknown error"}
            for branch in (self.secondary, self.primary)
            if not branch.ok and not branch.skipped
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "result": "success" if self.succeeded else "error",
            "results": {
                "googleSheets": self.secondary.to_dict(),
                "supabase": self.primary.to_dict(),
                "errors": self.errors,
            },
        }


class DualWriteCoordinator:
    def __init__(
        self,
        store: Optional[PersistenceClient],
        webhook: SheetsWebhook,
        *,
        table: str = SUBMISSIONS_TABLE,
        max_selections: int = 3,
        on_primary_write: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> None:
        self.store = store
        self.webhook = webhook
        self.table = table
        self.max_selections = max_selections
        self.on_primary_write = on_primary_write

    def write_primary(self, plan: SubmissionPlan) -> Dict[str, Any]:
        if self.store is None:
            raise UpstreamWriteError("Backend not configured")
        row = self.store.insert(self.table, plan.record())
        logger.info("Stored %s submission from %s (id=%s)", plan.activity_type, plan.name, row.get("id"))
        if self.on_primary_write is not None:
            self.on_primary_write(row)
        return row

    def mirror(self, plan: SubmissionPlan) -> BranchResult:
        branch = BranchResult(backend=SHEETS_LABEL)
        if not self.webhook.configured:
            branch.skipped = True
            return branch
        try:
            branch.data = self.webhook.post(plan.webhook_payload())
            branch.ok = True
        except UpstreamBestEffortError as exc:
            logger.warning("Spreadsheet webhook failed for %s: %s", plan.activity_type, exc)
            branch.error = str(exc)
        return branch

    def _primary_branch(self, plan: SubmissionPlan) -> BranchResult:
        branch = BranchResult(backend=SUPABASE_LABEL)
        try:
            branch.data = self.write_primary(plan)
            branch.ok = True
        except UpstreamWriteError as exc:
            logger.error("Backend write failed for %s: %s", plan.activity_type, exc)
            branch.error = str(exc)
        return branch

    def submit(self, plan: SubmissionPlan) -> WriteOutcome:
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="dual-write") as pool:
            sheets_future = pool.submit(self.mirror, plan)
            primary_future = pool.submit(self._primary_branch, plan)
            outcome = WriteOutcome(
                primary=primary_future.result(),
                secondary=sheets_future.result(),
                plan=plan,
            )
        if not outcome.succeeded:
            logger.error("Both backends rejected %s submission", plan.activity_type)
        return outcome

    def submit_to_both_backends(self, activity_type: str, data: Any) -> WriteOutcome:
        plan = plan_submission(activity_type, data, max_selections=self.max_selections)
        return self.submit(plan)
