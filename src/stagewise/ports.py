"""Storage port interfaces for stagewise.

Defines Protocol classes that any persistence backend must implement.
The composite ``StagewiseStore`` is what application code depends on.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from stagewise.models import ClientResponseStat, Event, RateWindow, Role, UrgencyTask


# ---------------------------------------------------------------------------
# Individual ports
# ---------------------------------------------------------------------------

@runtime_checkable
class EventStorePort(Protocol):
    def append(self, event: Event) -> Event: ...
    def query(
        self,
        *,
        workspace_id: str | None = None,
        event_types: list[str] | tuple[str, ...] | None = None,
        role_id: str | None = None,
        user_id: str | None = None,
        company: str | None = None,
        since: str | None = None,
        until: str | None = None,
        ascending: bool = False,
        limit: int = 200,
        offset: int = 0,
    ) -> list[dict[str, Any]]: ...
    def count(
        self,
        *,
        workspace_id: str | None = None,
        event_types: list[str] | tuple[str, ...] | None = None,
        since: str | None = None,
        until: str | None = None,
    ) -> int: ...
    def list_workspaces(self) -> list[str]: ...


@runtime_checkable
class RoleStorePort(Protocol):
    def upsert_role(self, role: Role) -> None: ...
    def get_role(self, role_id: str) -> Role | None: ...
    def list_roles(
        self,
        *,
        workspace_id: str | None = None,
        active_only: bool = False,
        limit: int = 10_000,
    ) -> list[Role]: ...


@runtime_checkable
class TaskStorePort(Protocol):
    def create_task_if_absent(self, task: UrgencyTask) -> bool: ...
    def get_task(self, task_id: str) -> UrgencyTask | None: ...
    def list_tasks(
        self,
        *,
        workspace_id: str | None = None,
        role_id: str | None = None,
        done: bool | None = None,
        origin: str | None = None,
        limit: int = 200,
    ) -> list[UrgencyTask]: ...
    def mark_task_done(self, task_id: str, completed_at: str) -> bool: ...


@runtime_checkable
class ClientStatStorePort(Protocol):
    def get_client_stat(self, workspace_id: str, client_key: str) -> ClientResponseStat | None: ...
    def save_client_stat(self, stat: ClientResponseStat) -> None: ...
    def list_client_stats(self, workspace_id: str | None = None) -> list[ClientResponseStat]: ...


@runtime_checkable
class SettingsStorePort(Protocol):
    def get_workspace_settings(self, workspace_id: str) -> dict[str, Any] | None: ...
    def save_workspace_settings(self, workspace_id: str, data: dict[str, Any]) -> None: ...


@runtime_checkable
class RateWindowStorePort(Protocol):
    def get_rate_window(self, key: str) -> RateWindow | None: ...
    def hit_rate_window(self, key: str, now_ms: int, window_ms: int) -> RateWindow: ...


# ---------------------------------------------------------------------------
# Composite store
# ---------------------------------------------------------------------------

@runtime_checkable
class StagewiseStore(
    EventStorePort,
    RoleStorePort,
    TaskStorePort,
    ClientStatStorePort,
    SettingsStorePort,
    RateWindowStorePort,
    Protocol,
):
    def close(self) -> None: ...
