"""Supabase-backed staging store."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar
from uuid import UUID

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from dataset_stager.domain.errors import StorageError
from dataset_stager.services.staging import StagingStore

T = TypeVar("T")


@dataclass
class SupabaseStagingStore(StagingStore):
    """One row per ``(session_id, key)`` with a JSON ``value`` column."""

    client: Client
    session_id: UUID
    table: str = "staging_entries"

    def put(self, key: str, value: object) -> None:
        """Upsert a value for this session."""
        self._run(
            f"put {key}",
            lambda: self.client.table(self.table)
            .upsert(
                {"session_id": str(self.session_id), "key": key, "value": value},
                on_conflict="session_id,key",
            )
            .execute(),
        )

    def get(self, key: str) -> object | None:
        """Return a value for this session, if present."""
        response = self._run(
            f"get {key}",
            lambda: self.client.table(self.table)
            .select("value")
            .eq("session_id", str(self.session_id))
            .eq("key", key)
            .limit(1)
            .execute(),
        )
        if not response.data:
            return None
        return response.data[0]["value"]

    def get_all(self) -> dict[str, object]:
        """Return every key and value stored for this session."""
        response = self._run(
            "get_all",
            lambda: self.client.table(self.table)
            .select("key, value")
            .eq("session_id", str(self.session_id))
            .execute(),
        )
        return {row["key"]: row["value"] for row in response.data or []}

    def keys(self) -> list[str]:
        """Return the keys stored for this session without their values."""
        response = self._run(
            "keys",
            lambda: self.client.table(self.table)
            .select("key")
            .eq("session_id", str(self.session_id))
            .execute(),
        )
        return [row["key"] for row in response.data or []]

    def delete(self, key: str) -> None:
        """Delete one key for this session."""
        self._run(
            f"delete {key}",
            lambda: self.client.table(self.table)
            .delete()
            .eq("session_id", str(self.session_id))
            .eq("key", key)
            .execute(),
        )

    def clear(self) -> None:
        """Delete every row for this session."""
        self._run(
            "clear",
            lambda: self.client.table(self.table)
            .delete()
            .eq("session_id", str(self.session_id))
            .execute(),
        )

    def _run(self, action: str, operation: Callable[[], T]) -> T:
        try:
            return operation()
        except (APIError, httpx.HTTPError) as exc:
            raise StorageError(
                f"Staging store {action} failed for session {self.session_id}: {exc}"
            ) from exc
