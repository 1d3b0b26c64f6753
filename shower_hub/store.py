"""Thin client for the hosted backend's PostgREST surface.

Each call is one autocommitting statement. There is no retry here; callers
decide whether an ``UpstreamWriteError`` is fatal.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

import requests

from .errors import UpstreamWriteError

logger = logging.getLogger(__name__)

SUBMISSIONS_TABLE = "submissions"

# A filter value is either a plain value (equality) or an (operator, value) pair,
# e.g. {"activity_type": "pool", "id": ("gt", 41)}.
FilterValue = Union[Any, Tuple[str, Any]]
Filters = Dict[str, FilterValue]


def _format_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_filter_params(filters: Optional[Filters]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for column, spec in (filters or {}).items():
        if isinstance(spec, tuple):
            op, value = spec
        else:
            op, value = "eq", spec
        if value is None:
            params[column] = "is.null"
        elif op == "in":
            params[column] = "in.(" + ",".join(_format_scalar(item) for item in value) + ")"
        else:
            params[column] = f"{op}.{_format_scalar(value)}"
    return params


def parse_content_range(header: Optional[str]) -> int:
    # "0-24/3573" or "*/0"
    if not header or "/" not in header:
        return 0
    total = header.rsplit("/", 1)[1]
    try:
        return int(total)
    except ValueError:
        return 0


class PersistenceClient:
    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        schema: str = "baby_shower",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.schema = schema
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        profile_header = "Accept-Profile" if method in ("GET", "HEAD") else "Content-Profile"
        merged = {profile_header: self.schema}
        merged.update(headers or {})
        try:
            resp = self.session.request(
                method,
                self._url(table),
                params=params,
                json=json_body,
                headers=merged,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamWriteError(f"Failed to reach backend: {exc}") from exc
        if resp.status_code >= 400:
            raise UpstreamWriteError(self._error_message(resp), backend_status=resp.status_code)
        return resp

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("error") or body.get("hint")
            if message:
                return f"Backend error ({resp.status_code}): {message}"
        text = (resp.text or "").strip()
        return f"Backend error ({resp.status_code}): {text or resp.reason}"

    @staticmethod
    def _rows(resp: requests.Response) -> List[Dict[str, Any]]:
        if not resp.content:
            return []
        try:
            body = resp.json()
        except ValueError as exc:
            raise UpstreamWriteError("Backend returned a non-JSON response") from exc
        if isinstance(body, dict):
            return [body]
        return list(body or [])

    def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._request(
            "POST", table, json_body=record, headers={"Prefer": "return=representation"}
        )
        rows = self._rows(resp)
        if not rows:
            raise UpstreamWriteError(f"Insert into {table} returned no row")
        logger.debug("Inserted row into %s", table)
        return rows[0]

    def upsert(self, table: str, record: Dict[str, Any], on_conflict: str) -> Dict[str, Any]:
        resp = self._request(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            json_body=record,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        rows = self._rows(resp)
        if not rows:
            raise UpstreamWriteError(f"Upsert into {table} returned no row")
        return rows[0]

    def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        *,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params = build_filter_params(filters)
        params["select"] = columns
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        return self._rows(self._request("GET", table, params=params))

    def select_one(self, table: str, filters: Optional[Filters] = None, **kwargs: Any) -> Optional[Dict[str, Any]]:
        rows = self.select(table, filters, limit=1, **kwargs)
        return rows[0] if rows else None

    def count(self, table: str, filters: Optional[Filters] = None) -> int:
        params = build_filter_params(filters)
        params["select"] = "id"
        resp = self._request("HEAD", table, params=params, headers={"Prefer": "count=exact"})
        return parse_content_range(resp.headers.get("Content-Range"))

    def update(self, table: str, filters: Filters, changes: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("update requires at least one filter")
        resp = self._request(
            "PATCH",
            table,
            params=build_filter_params(filters),
            json_body=changes,
            headers={"Prefer": "return=representation"},
        )
        return self._rows(resp)

    def close(self) -> None:
        self.session.close()
