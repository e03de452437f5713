"""HTTP client for the remote project-management API (Asana)."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Protocol

import httpx

from importhub.core.config import settings
from importhub.imports.errors import ExternalApiError

logger = logging.getLogger(__name__)

PAGE_LIMIT = 100

PROJECT_FIELDS = "gid,name,notes,color,archived,created_at,modified_at,due_date,start_on,current_status,team,team.name,custom_fields,custom_fields.name,custom_fields.display_value,custom_fields.text_value"
TASK_FIELDS = "gid,name,notes,completed,completed_at,created_at,modified_at,due_on,start_on,assignee,assignee.name,assignee.email,memberships.project,memberships.section,parent,parent.name,num_subtasks,custom_fields,custom_fields.name,custom_fields.display_value,custom_fields.text_value"
SUBTASK_FIELDS = "gid,name,notes,completed,completed_at,created_at,modified_at,due_on,start_on,assignee,assignee.name,assignee.email,parent,parent.name"
USER_FIELDS = "gid,name,email"


class RemoteClient(Protocol):
    """What the connector pipeline needs from a remote provider."""

    def test_connection(self) -> dict[str, Any]: ...

    def get_workspaces(self) -> list[dict[str, Any]]: ...

    def get_projects(self, workspace_id: str, include_archived: bool = False) -> list[dict[str, Any]]: ...

    def get_sections(self, project_id: str) -> list[dict[str, Any]]: ...

    def get_tasks_for_project(self, project_id: str) -> list[dict[str, Any]]: ...

    def get_subtasks(self, task_id: str) -> list[dict[str, Any]]: ...

    def get_workspace_users(self, workspace_id: str) -> list[dict[str, Any]]: ...


class AsanaClient:
    """
    Asana REST client.

    Requests are spaced at least ``connector_request_interval_ms`` apart.
    429 responses are retried after ``Retry-After`` seconds (or an
    exponential backoff), 5xx responses and transport errors with
    exponential backoff, up to ``connector_max_retries`` times. 401 and 403
    raise a fatal ExternalApiError; anything else that fails raises a
    non-fatal one.
    """

    def __init__(
        self,
        access_token: str,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or settings.connector_api_base).rstrip("/")
        self.http = http_client or httpx.Client(timeout=settings.connector_timeout_seconds)
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        self.interval = settings.connector_request_interval_ms / 1000
        self.max_retries = settings.connector_max_retries
        self.retry_base = settings.connector_retry_base_seconds
        self._sleep = sleep
        self._last_request: Optional[float] = None

    def close(self) -> None:
        self.http.close()

    def _throttle(self) -> None:
        if self._last_request is not None:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.interval:
                self._sleep(self.interval - elapsed)
        self._last_request = time.monotonic()

    def _backoff(self, attempt: int) -> float:
        return self.retry_base * (2 ** attempt)

    def _request(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"

        for attempt in range(self.max_retries + 1):
            self._throttle()
            try:
                response = self.http.get(url, params=params, headers=self.headers)
            except httpx.HTTPError as e:
                if attempt < self.max_retries:
                    delay = self._backoff(attempt)
                    logger.warning(
                        "Remote API transport error, retrying",
                        extra={"path": path, "delay_seconds": delay, "error": str(e)},
                    )
                    self._sleep(delay)
                    continue
                raise ExternalApiError(f"Remote API request failed: {e}") from e

            if response.is_success:
                return response.json()

            if response.status_code in (401, 403):
                raise ExternalApiError(
                    f"Remote API rejected credentials ({response.status_code})",
                    status_code=response.status_code,
                    fatal=True,
                )

            if response.status_code == 429 and attempt < self.max_retries:
                retry_after = response.headers.get("Retry-After")
                try:
                    delay = float(retry_after) if retry_after else self._backoff(attempt)
                except ValueError:
                    delay = self._backoff(attempt)
                logger.warning(
                    "Remote API rate limited, retrying",
                    extra={"path": path, "delay_seconds": delay, "attempt": attempt + 1},
                )
                self._sleep(delay)
                continue

            if response.status_code >= 500 and attempt < self.max_retries:
                delay = self._backoff(attempt)
                logger.warning(
                    "Remote API server error, retrying",
                    extra={"path": path, "status_code": response.status_code, "delay_seconds": delay},
                )
                self._sleep(delay)
                continue

            raise ExternalApiError(
                f"Remote API error {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        raise ExternalApiError("Remote API: max retries exceeded")

    def _paginate(self, path: str, params: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        query = dict(params or {}, limit=PAGE_LIMIT)

        while True:
            payload = self._request(path, query)
            results.extend(payload.get("data") or [])
            next_page = payload.get("next_page") or {}
            offset = next_page.get("offset")
            if not offset:
                break
            query["offset"] = offset

        return results

    def test_connection(self) -> dict[str, Any]:
        """Return the token's user; raises ExternalApiError on failure."""
        payload = self._request("/users/me", {"opt_fields": USER_FIELDS})
        return payload.get("data") or {}

    def get_workspaces(self) -> list[dict[str, Any]]:
        return self._paginate("/workspaces", {"opt_fields": "gid,name"})

    def get_projects(self, workspace_id: str, include_archived: bool = False) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"workspace": workspace_id, "opt_fields": PROJECT_FIELDS}
        if not include_archived:
            params["archived"] = "false"
        return self._paginate("/projects", params)

    def get_sections(self, project_id: str) -> list[dict[str, Any]]:
        return self._paginate(
            f"/projects/{project_id}/sections", {"opt_fields": "gid,name,created_at"}
        )

    def get_tasks_for_project(self, project_id: str) -> list[dict[str, Any]]:
        return self._paginate(f"/projects/{project_id}/tasks", {"opt_fields": TASK_FIELDS})

    def get_subtasks(self, task_id: str) -> list[dict[str, Any]]:
        return self._paginate(f"/tasks/{task_id}/subtasks", {"opt_fields": SUBTASK_FIELDS})

    def get_workspace_users(self, workspace_id: str) -> list[dict[str, Any]]:
        return self._paginate(
            f"/workspaces/{workspace_id}/users", {"opt_fields": USER_FIELDS}
        )
