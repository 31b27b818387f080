"""Editing session API endpoints.

A collaborator opens a session, records details, files and comments as they
edit, and submits everything as one proposal. Sessions live in memory only and
expire when idle.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from folio.api.auth import CurrentActor
from folio.api.errors import StorageError, ValidationError
from folio.api.projects import read_uploads
from folio.api.proposals import to_created
from folio.api.rate_limit import limit_read, limit_write
from folio.db import ProjectDB, get_session
from folio.models import (
    EditSession,
    EditSessionComment,
    EditSessionDetails,
    EditSessionSubmit,
    ProposalCreated,
)
from folio.models.enums import PendingChangeKind
from folio.services import ensure_can_propose, projects, proposals
from folio.services.aggregator import (
    EditingSession,
    EditingSessionRegistry,
    PendingBundle,
    get_editing_sessions,
)
from folio.services.attachments import FileAttachmentBinder
from folio.services.change_tracker import draft_change_set, validate_draft
from folio.services.file_store import FileStore, get_file_store

router = APIRouter()


async def _collaborator_project(
    session: AsyncSession, project_id: UUID, user_id: UUID
) -> ProjectDB:
    project = await projects.get_project(session, project_id)
    ensure_can_propose(await projects.role_of(session, user_id, project))
    return project


def _summary(editing: EditingSession) -> EditSession:
    return EditSession.model_validate(editing.summary())


@router.post("/{project_id}/edit-sessions", response_model=EditSession, status_code=201)
@limit_write
async def open_edit_session(
    request: Request,
    project_id: UUID,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
    registry: EditingSessionRegistry = Depends(get_editing_sessions),
) -> EditSession:
    """Start collecting changes for a future proposal. Collaborators only."""
    project = await _collaborator_project(session, project_id, actor.user_id)
    return _summary(registry.create(actor.user_id, project.id))


@router.get("/{project_id}/edit-sessions/{session_id}", response_model=EditSession)
@limit_read
async def get_edit_session(
    request: Request,
    project_id: UUID,
    session_id: UUID,
    actor: CurrentActor,
    registry: EditingSessionRegistry = Depends(get_editing_sessions),
) -> EditSession:
    """Show what the session has accumulated."""
    return _summary(registry.get(session_id, actor.user_id, project_id))


@router.post("/{project_id}/edit-sessions/{session_id}/details", response_model=EditSession)
@limit_write
async def record_details(
    request: Request,
    project_id: UUID,
    session_id: UUID,
    body: EditSessionDetails,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
    registry: EditingSessionRegistry = Depends(get_editing_sessions),
) -> EditSession:
    """Record an edited draft of project fields, diffed against the current project."""
    editing = registry.get(session_id, actor.user_id, project_id)
    if not body.fields:
        raise ValidationError("'fields' must name at least one project field")
    project = await _collaborator_project(session, project_id, actor.user_id)

    draft = validate_draft(body.fields)
    editing.aggregator.record(
        PendingChangeKind.DETAILS, draft_change_set(projects.baseline_of(project), draft)
    )
    return _summary(editing)


@router.post("/{project_id}/edit-sessions/{session_id}/files", response_model=EditSession)
@limit_write
async def record_files(
    request: Request,
    project_id: UUID,
    session_id: UUID,
    actor: CurrentActor,
    files: list[UploadFile] = File(...),
    session: AsyncSession = Depends(get_session),
    registry: EditingSessionRegistry = Depends(get_editing_sessions),
) -> EditSession:
    """Queue files to attach when the session is submitted.

    Names, sizes and the per-proposal file count are checked now; a bad file
    rejects the whole request and nothing from it is queued.
    """
    editing = registry.get(session_id, actor.user_id, project_id)
    await _collaborator_project(session, project_id, actor.user_id)
    editing.aggregator.record_many(PendingChangeKind.FILES, await read_uploads(files))
    return _summary(editing)


@router.post("/{project_id}/edit-sessions/{session_id}/comments", response_model=EditSession)
@limit_write
async def record_comment(
    request: Request,
    project_id: UUID,
    session_id: UUID,
    body: EditSessionComment,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
    registry: EditingSessionRegistry = Depends(get_editing_sessions),
) -> EditSession:
    """Add a note for the owner; notes are appended to the proposal description."""
    editing = registry.get(session_id, actor.user_id, project_id)
    await _collaborator_project(session, project_id, actor.user_id)
    editing.aggregator.record(PendingChangeKind.COMMENTS, body.body)
    return _summary(editing)


@router.post(
    "/{project_id}/edit-sessions/{session_id}/submit",
    response_model=ProposalCreated,
    status_code=201,
)
@limit_write
async def submit_edit_session(
    request: Request,
    project_id: UUID,
    session_id: UUID,
    body: EditSessionSubmit,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
    store: FileStore = Depends(get_file_store),
    registry: EditingSessionRegistry = Depends(get_editing_sessions),
) -> ProposalCreated:
    """Turn everything recorded so far into one proposal.

    The session is cleared only when the proposal is created; on any error its
    contents are kept so the collaborator can fix the problem and resubmit.
    """
    editing = registry.get(session_id, actor.user_id, project_id)
    project = await _collaborator_project(session, project_id, actor.user_id)

    async def create(bundle: PendingBundle) -> proposals.CreatedProposal:
        created = await proposals.create_proposal(
            session,
            store,
            project,
            actor.user_id,
            bundle.change_set,
            title=body.title,
            description=body.description,
            notes=bundle.comments,
            uploads=bundle.attachments,
        )
        # Commit here: the session is only cleared once the proposal is durable.
        try:
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            await FileAttachmentBinder(session, store).release_blobs(
                [a.storage_key for a in created.attachments]
            )
            raise StorageError("Could not save the proposal; nothing was submitted") from e
        return created

    created = await editing.aggregator.submit(create)
    return to_created(created)


@router.delete("/{project_id}/edit-sessions/{session_id}", status_code=204)
@limit_write
async def discard_edit_session(
    request: Request,
    project_id: UUID,
    session_id: UUID,
    actor: CurrentActor,
    registry: EditingSessionRegistry = Depends(get_editing_sessions),
) -> Response:
    """Abandon the session. Nothing recorded in it is kept."""
    registry.discard(session_id, actor.user_id, project_id)
    return Response(status_code=204)
