"""
Rule storage backed by the OneClick REST API.

Requests are blocking ``requests`` calls pushed onto a worker thread so
the event loop keeps serving form events while a fetch is in flight.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from pydantic import ValidationError

from ..core.errors import StorageError
from ..schemas.rule import RuleGroupRecord, RuleRecord
from .base import RuleStorage


def _items(payload: Any) -> List[dict]:
    if isinstance(payload, dict):
        payload = payload.get("items", payload.get("value"))
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    return []


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class RestRuleStorage(RuleStorage):
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_sec: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.logger = logging.getLogger("storage.remote")
        self._session = session or requests.Session()
        self._headers: Dict[str, str] = {"Accept": "application/json"}
        token = (token or "").strip()
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        body: Any = None,
        allow_missing: bool = False,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.request(
                method,
                url,
                params=params,
                json=body,
                headers=self._headers,
                timeout=self.timeout_sec,
            )
            if allow_missing and resp.status_code == 404:
                return None
            resp.raise_for_status()
            if resp.status_code == 204 or not resp.content:
                return None
            return resp.json()
        except requests.RequestException as exc:
            self.logger.warning("%s %s failed: %s", method, url, exc)
            raise StorageError(f"{method} {url} failed: {exc}") from exc
        except ValueError as exc:
            raise StorageError(f"{method} {url} returned invalid JSON: {exc}") from exc

    async def _call(self, method: str, path: str, **kwargs) -> Any:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    async def load_rule_groups(self, work_item_type: str, project_id: str) -> List[RuleGroupRecord]:
        payload = await self._call(
            "GET",
            "/ruleGroups",
            params={"workItemType": work_item_type, "projectId": project_id},
        )
        try:
            return [RuleGroupRecord.model_validate(item) for item in _items(payload)]
        except ValidationError as exc:
            raise StorageError(f"Malformed rule group payload: {exc}") from exc

    async def load_rules(self, rule_group_id: str, project_id: str) -> List[RuleRecord]:
        payload = await self._call(
            "GET",
            f"/ruleGroups/{_segment(rule_group_id)}/rules",
            params={"projectId": project_id},
            allow_missing=True,
        )
        rules: List[RuleRecord] = []
        for item in _items(payload):
            try:
                rules.append(RuleRecord.model_validate(item))
            except ValidationError as exc:
                self.logger.warning("Skipping malformed rule %s in group %s: %s", item.get("id"), rule_group_id, exc)
        return rules

    async def read_cache_stamp(self, work_item_type: str, project_id: str) -> int:
        payload = await self._call(
            "GET",
            f"/cacheStamps/{_segment(project_id)}/{_segment(work_item_type)}",
            allow_missing=True,
        )
        if isinstance(payload, dict):
            payload = payload.get("cacheStamp", payload.get("value"))
        if payload is None:
            return 0
        try:
            return int(payload)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Malformed cache stamp {payload!r}") from exc

    async def write_cache_stamp(self, work_item_type: str, project_id: str, stamp: int) -> None:
        await self._call(
            "PUT",
            f"/cacheStamps/{_segment(project_id)}/{_segment(work_item_type)}",
            body={"cacheStamp": int(stamp)},
        )

    async def load_setting(self, key: str, default: Any, work_item_type: str, project_id: str) -> Any:
        payload = await self._call(
            "GET",
            f"/settings/{_segment(key)}",
            params={"workItemType": work_item_type, "projectId": project_id},
            allow_missing=True,
        )
        if isinstance(payload, dict):
            payload = payload.get("value")
        return default if payload is None else payload

    async def save_rule(self, record: RuleRecord) -> RuleRecord:
        if not record.rule_group_id:
            raise StorageError("Rule has no rule group")
        base = f"/ruleGroups/{_segment(record.rule_group_id)}/rules"
        if record.id:
            payload = await self._call("PUT", f"{base}/{_segment(record.id)}", body=record.to_document())
        else:
            payload = await self._call("POST", base, body=record.to_document())
        try:
            return RuleRecord.model_validate(payload)
        except ValidationError as exc:
            raise StorageError(f"Malformed saved rule payload: {exc}") from exc

    async def delete_rule(self, rule_group_id: str, rule_id: str, project_id: str) -> None:
        await self._call(
            "DELETE",
            f"/ruleGroups/{_segment(rule_group_id)}/rules/{_segment(rule_id)}",
            params={"projectId": project_id},
        )


__all__ = ["RestRuleStorage"]
