"""Task Service adapter for the quest tracker REST API."""

from __future__ import annotations

from typing import Any, Callable, Optional

import httpx
from loguru import logger

from .models import QuestId, QuestStatus
from .service import (
    CampaignFilter,
    Failure,
    Ok,
    ServiceResult,
    quest_list_result,
    quest_result,
)
from .store import UNCATEGORIZED

TASKS_PATH = "/api/tasks"


class UnauthorizedError(RuntimeError):
    pass


class HttpTaskService:
    """Talks to ``/api/tasks`` over an :class:`httpx.AsyncClient`.

    Non-2xx responses become :class:`Failure` carrying the server's ``error``
    text when it sends one.  A 401 additionally fires ``on_unauthorized``.
    """

    def __init__(
        self,
        base_url: str = "",
        token: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        on_unauthorized: Optional[Callable[[], Any]] = None,
        timeout: float = 10.0,
    ) -> None:
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.token = token
        self.on_unauthorized = on_unauthorized

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, *, json: Any = None, params: Any = None) -> ServiceResult[Any]:
        try:
            resp = await self.client.request(method, path, json=json, params=params, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.debug("{} {} failed: {}", method, path, exc)
            return Failure(reason=str(exc) or type(exc).__name__, error=exc)

        if resp.status_code == 401:
            if self.on_unauthorized is not None:
                self.on_unauthorized()
            return Failure(reason="Authentication expired", error=UnauthorizedError(path))
        if resp.is_error:
            return Failure(reason=self._error_message(resp))
        if resp.status_code == 204 or not resp.content:
            return Ok(None)
        try:
            return Ok(resp.json())
        except ValueError as exc:
            return Failure(reason="invalid JSON response", error=exc)

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return f"Request failed with status {resp.status_code}"

    async def _quest_call(self, method: str, path: str, *, json: Any = None) -> ServiceResult:
        result = await self._request(method, path, json=json)
        if isinstance(result, Failure):
            return result
        return quest_result(result.value)

    # -- quests ---------------------------------------------------------------

    async def list_quests(self, campaign_filter: CampaignFilter = None) -> ServiceResult:
        params = None
        if campaign_filter == UNCATEGORIZED:
            params = {"campaign_id": "null"}
        elif campaign_filter is not None:
            params = {"campaign_id": str(campaign_filter)}
        result = await self._request("GET", TASKS_PATH, params=params)
        if isinstance(result, Failure):
            return result
        return quest_list_result(result.value)

    async def create_quest(self, fields: dict[str, Any]) -> ServiceResult:
        return await self._quest_call("POST", TASKS_PATH, json=fields)

    async def delete_quest(self, quest_id: QuestId) -> ServiceResult:
        result = await self._request("DELETE", f"{TASKS_PATH}/{quest_id}")
        if isinstance(result, Failure):
            return result
        return Ok(True)

    async def update_quest(self, quest_id: QuestId, fields: dict[str, Any]) -> ServiceResult:
        return await self._quest_call("PATCH", f"{TASKS_PATH}/{quest_id}", json=fields)

    async def set_quest_status(
        self, quest_id: QuestId, status: QuestStatus, note: Optional[str] = None
    ) -> ServiceResult:
        return await self._quest_call(
            "PATCH",
            f"{TASKS_PATH}/{quest_id}/status",
            json={"status": QuestStatus(status).value, "note": note},
        )

    # -- side quests ------------------------------------------------------------

    async def create_side_quest(self, quest_id: QuestId, description: str) -> ServiceResult:
        return await self._quest_call(
            "POST", f"{TASKS_PATH}/{quest_id}/subtasks", json={"description": description}
        )

    async def update_side_quest(
        self, quest_id: QuestId, side_quest_id: QuestId, fields: dict[str, Any]
    ) -> ServiceResult:
        return await self._quest_call(
            "PATCH", f"{TASKS_PATH}/{quest_id}/subtasks/{side_quest_id}", json=fields
        )

    async def delete_side_quest(self, quest_id: QuestId, side_quest_id: QuestId) -> ServiceResult:
        result = await self._request("DELETE", f"{TASKS_PATH}/{quest_id}/subtasks/{side_quest_id}")
        if isinstance(result, Failure) or result.value is None:
            return result
        return quest_result(result.value)

    async def set_side_quest_status(
        self,
        quest_id: QuestId,
        side_quest_id: QuestId,
        status: QuestStatus,
        note: Optional[str] = None,
    ) -> ServiceResult:
        return await self._quest_call(
            "PATCH",
            f"{TASKS_PATH}/{quest_id}/subtasks/{side_quest_id}/status",
            json={"status": QuestStatus(status).value, "note": note},
        )
