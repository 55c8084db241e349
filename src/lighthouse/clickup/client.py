"""
Async client for the ClickUp v2 REST API.

Thin wrapper over httpx.AsyncClient. Every method returns raw JSON dicts;
normalization lives in lighthouse.clickup.normalizer and merging in the
reconciler, so this module never touches the store.

Errors:
  - ClickUpNetworkError: connectivity/transport failures (transient; the
    next scheduled sync is the retry).
  - ClickUpAPIError: the API answered with a non-2xx status.

ClickUp allows ~100 requests/minute per token. The client counts requests
per sync (reset_request_count / request_count) so callers can report load;
pacing between pages is the fetcher's job.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

TASK_PAGE_SIZE = 100  # ClickUp returns at most 100 tasks per page


class ClickUpError(RuntimeError):
    """Base class for ClickUp client failures."""


class ClickUpNetworkError(ClickUpError):
    """Raised when the API could not be reached (DNS, refused, timeout...)."""


class ClickUpAPIError(ClickUpError):
    """Raised when the API responds with an error status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"ClickUp API error: {status_code} - {message}")
        self.status_code = status_code


class ClickUpClient:
    """
    Async ClickUp client bound to one team (the single sync target).

    Usage:
        async with ClickUpClient(api_key, team_id) as client:
            members = await client.list_entities()
    """

    def __init__(
        self,
        api_key: str,
        team_id: str,
        base_url: str = "https://api.clickup.com/api/v2",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key: Personal API token (sent as the Authorization header).
            team_id: ClickUp team (workspace) ID.
            base_url: API root; overridable for tests.
            timeout: Transport timeout in seconds.
            transport: Optional httpx transport (httpx.MockTransport in tests).
        """
        self.team_id = team_id
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": api_key, "Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._request_count = 0

    async def __aenter__(self) -> "ClickUpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def request_count(self) -> int:
        """Requests issued since the last reset_request_count()."""
        return self._request_count

    def reset_request_count(self) -> None:
        self._request_count = 0

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        self._request_count += 1
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise ClickUpNetworkError(f"{method} {path}: {exc}") from exc

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = None
            detail = (body.get("err") if isinstance(body, dict) else None) or response.reason_phrase
            raise ClickUpAPIError(response.status_code, detail)

        if not response.content:
            return {}
        return response.json()

    # ─── Read calls ───────────────────────────────────────────────────────────

    async def list_entities(self, entity_filter: Iterable[str] = ()) -> List[Dict[str, Any]]:
        """
        Fetch team members (GET /team/{team_id}).

        Args:
            entity_filter: ClickUp user IDs to keep; empty keeps everyone.
        """
        data = await self._request("GET", f"/team/{self.team_id}")
        members = (data.get("team") or {}).get("members") or []
        wanted = {str(i) for i in entity_filter}
        if not wanted:
            return members
        return [
            m for m in members
            if str((m.get("user") or m).get("id")) in wanted
        ]

    async def list_time_entries(
        self,
        start_ms: int,
        end_ms: int,
        entity_ids: Iterable[str] = (),
    ) -> List[Dict[str, Any]]:
        """
        Fetch time entries in [start_ms, end_ms] for the given users.

        ClickUp caps a single request at ~30 days; callers chunk longer windows.
        """
        params: Dict[str, Any] = {
            "start_date": start_ms,
            "end_date": end_ms,
            "include_task_tags": "true",
            "include_location_names": "true",
        }
        ids = [str(i) for i in entity_ids]
        if ids:
            params["assignee"] = ",".join(ids)
        data = await self._request(
            "GET", f"/team/{self.team_id}/time_entries", params=params
        )
        entries = data.get("data") or []
        logger.debug("Received %d time entries", len(entries))
        return entries

    async def list_tasks_page(
        self,
        task_filter: Dict[str, Any],
        page: int,
    ) -> Tuple[List[Dict[str, Any]], bool]:
        """
        Fetch one page of team tasks (GET /team/{team_id}/task).

        Args:
            task_filter: {"assignees": [...], "date_updated_gt": ms or None,
                          "include_closed": bool, "subtasks": bool}
            page: 0-based page number.

        Returns:
            (tasks, has_more). ClickUp has no explicit cursor: a full page of
            100 means there may be more.
        """
        params: List[Tuple[str, Any]] = [
            ("assignees[]", str(a)) for a in task_filter.get("assignees") or []
        ]
        if task_filter.get("date_updated_gt"):
            params.append(("date_updated_gt", task_filter["date_updated_gt"]))
        params.append(("include_closed", str(task_filter.get("include_closed", True)).lower()))
        params.append(("subtasks", str(task_filter.get("subtasks", True)).lower()))
        params.append(("page", page))

        data = await self._request("GET", f"/team/{self.team_id}/task", params=params)
        tasks = data.get("tasks") or []
        return tasks, len(tasks) == TASK_PAGE_SIZE

    async def list_list_tasks_page(self, list_id: str, page: int) -> Tuple[List[Dict[str, Any]], bool]:
        """One page of tasks from a single list (GET /list/{list_id}/task), closed included."""
        data = await self._request(
            "GET",
            f"/list/{list_id}/task",
            params={"include_closed": "true", "page": page},
        )
        tasks = data.get("tasks") or []
        return tasks, len(tasks) == TASK_PAGE_SIZE

    async def get_running_timer(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch the running timer for one user, or None.

        CRITICAL: an active timer is reported with a NEGATIVE duration.
        """
        data = await self._request(
            "GET",
            f"/team/{self.team_id}/time_entries/current",
            params={"assignee": user_id},
        )
        return data.get("data") or None

    # ─── Write calls (replayed from the offline queue) ────────────────────────

    async def start_timer(self, task_id: str) -> Dict[str, Any]:
        return await self._request(
            "POST", f"/team/{self.team_id}/time_entries/start", json={"tid": task_id}
        )

    async def stop_timer(self) -> Dict[str, Any]:
        return await self._request("POST", f"/team/{self.team_id}/time_entries/stop")

    async def update_task(self, task_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/task/{task_id}", json=updates)
