"""Editing-session accumulation of pending changes.

A collaborator's edits to details, files and comments are recorded here as they
happen and bundled into a single proposal on submit. Nothing is cleared until the
proposal has actually been created, so a failed submit loses nothing.
"""

import logging
import time
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar
from uuid import UUID, uuid4

from folio.api.errors import ErrorCode, NotFoundError, ValidationError
from folio.config import settings
from folio.models.enums import PendingChangeKind
from folio.services.attachments import UploadBlob, check_upload
from folio.services.change_tracker import ChangeSet, merge_change_sets

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PAYLOAD_TYPES: dict[PendingChangeKind, type] = {
    PendingChangeKind.DETAILS: ChangeSet,
    PendingChangeKind.FILES: UploadBlob,
    PendingChangeKind.COMMENTS: str,
}


@dataclass(frozen=True)
class PendingEntry:
    kind: PendingChangeKind
    payload: Any
    recorded_at: datetime


@dataclass
class PendingBundle:
    """Everything an editing session has accumulated, ready to become a proposal."""

    change_set: ChangeSet
    attachments: list[UploadBlob] = field(default_factory=list)
    comments: list[str] = field(default_factory=list)


class PendingChangeAggregator:
    """Accumulates tagged entries for one editing session."""

    def __init__(self) -> None:
        self._entries: list[PendingEntry] = []
        self._pending: set[PendingChangeKind] = set()

    def record(self, kind: PendingChangeKind, payload: Any) -> None:
        self.record_many(kind, [payload])

    def record_many(self, kind: PendingChangeKind, payloads: list[Any]) -> None:
        """Check every payload, then record all of them or none."""
        checked = [self._check(kind, payload) for payload in payloads]
        if kind == PendingChangeKind.FILES:
            queued = sum(1 for _ in self.entries(PendingChangeKind.FILES))
            if queued + len(checked) > settings.max_files_per_proposal:
                raise ValidationError(
                    f"A proposal can carry at most {settings.max_files_per_proposal} files",
                    code=ErrorCode.TOO_MANY_FILES,
                    details={"queued": queued, "received": len(checked)},
                )
        now = datetime.now(UTC)
        for payload in checked:
            self._entries.append(PendingEntry(kind, payload, now))
        if checked:
            self._pending.add(kind)

    def _check(self, kind: PendingChangeKind, payload: Any) -> Any:
        expected = _PAYLOAD_TYPES[kind]
        if not isinstance(payload, expected):
            raise TypeError(f"{kind} entries take a {expected.__name__}")
        if kind == PendingChangeKind.FILES:
            check_upload(payload)
        elif kind == PendingChangeKind.COMMENTS:
            payload = payload.strip()
            if not payload:
                raise ValidationError("Comment cannot be empty")
            if len(payload) > settings.max_comment_length:
                raise ValidationError(
                    f"Comment exceeds {settings.max_comment_length} characters"
                )
        return payload

    @property
    def pending_kinds(self) -> set[PendingChangeKind]:
        return set(self._pending)

    def entries(self, kind: PendingChangeKind | None = None) -> Iterator[PendingEntry]:
        for entry in self._entries:
            if kind is None or entry.kind == kind:
                yield entry

    def __len__(self) -> int:
        return len(self._entries)

    def flush_and_build_change_set(self) -> PendingBundle:
        """Bundle the recorded entries. Does not clear anything."""
        return PendingBundle(
            change_set=merge_change_sets(
                [e.payload for e in self.entries(PendingChangeKind.DETAILS)]
            ),
            attachments=[e.payload for e in self.entries(PendingChangeKind.FILES)],
            comments=[e.payload for e in self.entries(PendingChangeKind.COMMENTS)],
        )

    def clear(self) -> None:
        self._entries.clear()
        self._pending.clear()

    async def submit(self, create: Callable[[PendingBundle], Awaitable[T]]) -> T:
        """Hand the bundle to ``create`` and drop the submitted entries if it returns normally.

        Entries recorded while ``create`` is running were not part of the bundle and
        stay pending.
        """
        submitted = {id(entry) for entry in self._entries}
        result = await create(self.flush_and_build_change_set())
        self._entries = [e for e in self._entries if id(e) not in submitted]
        self._pending = {e.kind for e in self._entries}
        return result


@dataclass
class EditingSession:
    id: UUID
    user_id: UUID
    project_id: UUID
    aggregator: PendingChangeAggregator
    created_at: datetime
    last_active: float

    def summary(self) -> dict[str, Any]:
        bundle = self.aggregator.flush_and_build_change_set()
        return {
            "session_id": self.id,
            "project_id": self.project_id,
            "created_at": self.created_at,
            "pending_kinds": sorted(str(k) for k in self.aggregator.pending_kinds),
            "changed_fields": bundle.change_set.changed_fields,
            "change_set": bundle.change_set.to_dict(),
            "files": [blob.file_name for blob in bundle.attachments],
            "comments": bundle.comments,
        }


class EditingSessionRegistry:
    """In-memory editing sessions, each bound to one user and project.

    Sessions idle for longer than ``ttl_seconds`` are dropped on the next access.
    """

    def __init__(
        self,
        ttl_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[UUID, EditingSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def purge_expired(self) -> int:
        cutoff = self._clock() - self.ttl_seconds
        expired = [sid for sid, s in self._sessions.items() if s.last_active < cutoff]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Dropped %d expired editing session(s)", len(expired))
        return len(expired)

    def create(self, user_id: UUID, project_id: UUID) -> EditingSession:
        self.purge_expired()
        session = EditingSession(
            id=uuid4(),
            user_id=user_id,
            project_id=project_id,
            aggregator=PendingChangeAggregator(),
            created_at=datetime.now(UTC),
            last_active=self._clock(),
        )
        self._sessions[session.id] = session
        return session

    def get(self, session_id: UUID, user_id: UUID, project_id: UUID) -> EditingSession:
        self.purge_expired()
        session = self._sessions.get(session_id)
        # Another user's session is reported as missing.
        if session is None or session.user_id != user_id or session.project_id != project_id:
            raise NotFoundError(ErrorCode.EDIT_SESSION_NOT_FOUND, "Editing session not found")
        session.last_active = self._clock()
        return session

    def discard(self, session_id: UUID, user_id: UUID, project_id: UUID) -> None:
        self.get(session_id, user_id, project_id)
        del self._sessions[session_id]


_registry: EditingSessionRegistry | None = None


def get_editing_sessions() -> EditingSessionRegistry:
    """Get the process-wide editing session registry (FastAPI dependency)."""
    global _registry
    if _registry is None:
        _registry = EditingSessionRegistry(settings.editing_session_ttl_seconds)
    return _registry
