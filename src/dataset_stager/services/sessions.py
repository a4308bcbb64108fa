"""Explicit open/close lifecycle for staging sessions."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from dataset_stager.domain.captions import CaptionRunStatus
from dataset_stager.domain.errors import (
    CaptionRunInProgressError,
    SessionNotFoundError,
    StorageError,
)
from dataset_stager.services.staging import StagingService, StagingStore

_logger = logging.getLogger(__name__)

StoreFactory = Callable[[UUID], StagingStore]


@dataclass
class DatasetSession:
    """One working session and its staging store.

    The store is created on first access to ``staging``.
    """

    id: UUID
    store_factory: StoreFactory = field(repr=False)
    caption_status: CaptionRunStatus = CaptionRunStatus.IDLE
    last_active_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    closed: bool = False
    _staging: StagingService | None = field(default=None, repr=False)

    @property
    def staging(self) -> StagingService:
        if self._staging is None:
            self._staging = StagingService(self.store_factory(self.id))
        return self._staging

    def touch(self) -> None:
        self.last_active_at = datetime.now(tz=UTC)

    def ensure_no_caption_run(self) -> None:
        """Raise ``CaptionRunInProgressError`` while a caption run owns the store."""
        if self.caption_status == CaptionRunStatus.RUNNING:
            raise CaptionRunInProgressError(
                f"Caption run in progress for session {self.id}"
            )


@dataclass
class SessionManager:
    """Owns every open session; closing a session always clears its store."""

    store_factory: StoreFactory
    idle_timeout_seconds: int = 3600
    _sessions: dict[UUID, DatasetSession] = field(default_factory=dict, repr=False)

    def open(self) -> DatasetSession:
        self.close_stale()
        session = DatasetSession(id=uuid4(), store_factory=self.store_factory)
        self._sessions[session.id] = session
        _logger.info("Session opened: %s", session.id)
        return session

    def get(self, session_id: UUID) -> DatasetSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.touch()
        return session

    def close(self, session_id: UUID, force: bool = False) -> None:
        """Clear the session's store and forget it.

        A session with a running caption run is only closed with ``force``; the
        run then discards its results instead of writing them.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if not force:
            session.ensure_no_caption_run()
        # Clear even if the store was never touched; a durable backend may
        # still hold rows under this id.
        session.staging.clear()
        session.closed = True
        del self._sessions[session_id]
        _logger.info("Session closed: %s", session_id)

    def close_stale(self, now: datetime | None = None) -> list[UUID]:
        """Close sessions idle for longer than the timeout.

        A store that cannot be cleared is logged and retried on a later pass.
        """
        current = now or datetime.now(tz=UTC)
        cutoff = current - timedelta(seconds=self.idle_timeout_seconds)
        stale = [
            session.id
            for session in self._sessions.values()
            if session.last_active_at < cutoff
            and session.caption_status != CaptionRunStatus.RUNNING
        ]
        closed: list[UUID] = []
        for session_id in stale:
            _logger.info("Closing abandoned session %s", session_id)
            try:
                self.close(session_id)
            except StorageError:
                _logger.exception("Failed to clear abandoned session %s", session_id)
                continue
            closed.append(session_id)
        return closed

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            try:
                self.close(session_id, force=True)
            except StorageError:
                _logger.exception("Failed to clear session %s", session_id)

    @property
    def open_session_ids(self) -> list[UUID]:
        return list(self._sessions)
