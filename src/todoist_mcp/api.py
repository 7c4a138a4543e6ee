import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import AuthenticationError, TodoistAPIError

DEFAULT_BASE_URL = "https://api.todoist.com/api/v1"
DEFAULT_TIMEOUT = 30.0

JSON = Any


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)


class TodoistClient:
    """
    Thin async wrapper over the Todoist REST API.

    Methods return decoded JSON untouched; list endpoints may answer with a
    bare list or an envelope, see helpers.extract_array_from_response.
    Failures are raised as TodoistAPIError / AuthenticationError.
    """

    dry_run = False

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_token:
            raise AuthenticationError()
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_token}"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> JSON:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            response = await self._http.request(method, path, params=params or None, json=json_data)
        except httpx.RequestError as e:
            logging.error(f"Request to Todoist failed: {method} {path}: {e}")
            raise TodoistAPIError(f"{method} {path} failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationError(f"Todoist rejected the API token ({response.status_code})")
        if response.is_error:
            detail = _error_detail(response)
            logging.warning(f"Todoist returned {response.status_code} for {method} {path}: {detail}")
            raise TodoistAPIError(f"{response.status_code} {detail}", status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return True
        return response.json()

    async def _get_all_pages(self, path: str, params: Optional[Dict[str, Any]] = None) -> JSON:
        """Follows next_cursor pagination and returns one {"results": [...]} envelope."""
        params = dict(params or {})
        first = await self._request("GET", path, params=params)
        if not isinstance(first, dict) or "results" not in first:
            return first

        results: List[Any] = list(first.get("results") or [])
        cursor = first.get("next_cursor")
        while cursor:
            page = await self._request("GET", path, params={**params, "cursor": cursor})
            results.extend(page.get("results") or [])
            cursor = page.get("next_cursor")
        return {"results": results}

    # --- Tasks --- #
    async def get_tasks(self, **params: Any) -> JSON:
        return await self._get_all_pages("/tasks", params)

    async def get_tasks_by_filter(self, query: str, lang: Optional[str] = None, limit: Optional[int] = None) -> JSON:
        return await self._request("GET", "/tasks/filter", params={"query": query, "lang": lang, "limit": limit})

    async def get_task(self, task_id: str) -> JSON:
        return await self._request("GET", f"/tasks/{task_id}")

    async def add_task(self, data: Dict[str, Any]) -> JSON:
        return await self._request("POST", "/tasks", json_data=data)

    async def update_task(self, task_id: str, data: Dict[str, Any]) -> JSON:
        return await self._request("POST", f"/tasks/{task_id}", json_data=data)

    async def delete_task(self, task_id: str) -> JSON:
        return await self._request("DELETE", f"/tasks/{task_id}")

    async def close_task(self, task_id: str) -> JSON:
        return await self._request("POST", f"/tasks/{task_id}/close")

    async def move_task(
        self,
        task_id: str,
        project_id: Optional[str] = None,
        section_id: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> JSON:
        body = {k: v for k, v in {"project_id": project_id, "section_id": section_id, "parent_id": parent_id}.items() if v}
        return await self._request("POST", f"/tasks/{task_id}/move", json_data=body)

    async def get_completed_tasks(
        self,
        since: str,
        until: str,
        project_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> JSON:
        params = {"since": since, "until": until, "project_id": project_id, "limit": limit}
        return await self._request("GET", "/tasks/completed/by_completion_date", params=params)

    # --- Projects and Sections --- #
    async def get_projects(self) -> JSON:
        return await self._get_all_pages("/projects")

    async def get_project(self, project_id: str) -> JSON:
        return await self._request("GET", f"/projects/{project_id}")

    async def add_project(self, data: Dict[str, Any]) -> JSON:
        return await self._request("POST", "/projects", json_data=data)

    async def get_sections(self, project_id: Optional[str] = None) -> JSON:
        return await self._get_all_pages("/sections", {"project_id": project_id})

    async def get_section(self, section_id: str) -> JSON:
        return await self._request("GET", f"/sections/{section_id}")

    async def add_section(self, data: Dict[str, Any]) -> JSON:
        return await self._request("POST", "/sections", json_data=data)

    # --- Labels --- #
    async def get_labels(self) -> JSON:
        return await self._get_all_pages("/labels")

    async def get_label(self, label_id: str) -> JSON:
        return await self._request("GET", f"/labels/{label_id}")

    async def add_label(self, data: Dict[str, Any]) -> JSON:
        return await self._request("POST", "/labels", json_data=data)

    async def update_label(self, label_id: str, data: Dict[str, Any]) -> JSON:
        return await self._request("POST", f"/labels/{label_id}", json_data=data)

    async def delete_label(self, label_id: str) -> JSON:
        return await self._request("DELETE", f"/labels/{label_id}")

    # --- Comments --- #
    async def get_comments(self, task_id: Optional[str] = None, project_id: Optional[str] = None) -> JSON:
        return await self._get_all_pages("/comments", {"task_id": task_id, "project_id": project_id})

    async def add_comment(self, data: Dict[str, Any]) -> JSON:
        return await self._request("POST", "/comments", json_data=data)
