"""Proposals API endpoints."""

import json
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from folio.api.auth import CurrentActor
from folio.api.errors import ValidationError
from folio.api.projects import read_uploads
from folio.api.rate_limit import limit_read, limit_write
from folio.config import settings
from folio.db import ProposalAttachmentDB, ProposalDB, get_session
from folio.models import (
    AttachedFileRef,
    Proposal,
    ProposalCreated,
    ProposalList,
    ProposalTransition,
    UploadFailure,
)
from folio.models.enums import ProposalStatus
from folio.services import (
    ensure_can_propose,
    ensure_can_view,
    projects,
    proposals,
    validate_change_set,
)
from folio.services.file_store import FileStore, get_file_store
from folio.services.proposals import CreatedProposal

router = APIRouter()


def to_proposal(proposal: ProposalDB, attachments: list[ProposalAttachmentDB]) -> Proposal:
    return Proposal(
        id=proposal.id,
        project_id=proposal.project_id,
        number=proposal.number,
        author_id=proposal.author_id,
        title=proposal.title,
        description=proposal.description,
        status=proposal.status,
        change_set=proposal.change_set,
        changed_fields=list(proposal.change_set),
        attachments=[AttachedFileRef.model_validate(a) for a in attachments],
        baseline_version=proposal.baseline_version,
        reviewed_by=proposal.reviewed_by,
        reviewed_at=proposal.reviewed_at,
        merged_at=proposal.merged_at,
        created_at=proposal.created_at,
        updated_at=proposal.updated_at,
    )


def to_created(created: CreatedProposal) -> ProposalCreated:
    return ProposalCreated(
        **to_proposal(created.proposal, created.attachments).model_dump(),
        upload_failures=[UploadFailure(**e.to_dict()) for e in created.failures],
    )


def _parse_json_field(name: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"'{name}' must be valid JSON", details={"field": name}) from e


@router.post("/{project_id}/proposals", response_model=ProposalCreated, status_code=201)
@limit_write
async def create_proposal(
    request: Request,
    project_id: UUID,
    actor: CurrentActor,
    changes_preview: str = Form(..., alias="changesPreview"),
    changed_fields: str | None = Form(None, alias="changedFields"),
    title: str | None = Form(None, max_length=200),
    description: str | None = Form(None),
    files: list[UploadFile] | None = File(None),
    session: AsyncSession = Depends(get_session),
    store: FileStore = Depends(get_file_store),
) -> ProposalCreated:
    """Open a proposal. Collaborators only.

    ``changesPreview`` is a JSON object mapping each field to ``{"old", "new"}``;
    ``changedFields``, if sent, is a JSON array that must name exactly those
    fields. Files that fail to attach are listed in ``upload_failures`` and do not
    prevent the proposal from being created.
    """
    project = await projects.get_project(session, project_id)
    ensure_can_propose(await projects.role_of(session, actor.user_id, project))

    preview = _parse_json_field("changesPreview", changes_preview)
    if not isinstance(preview, dict):
        raise ValidationError("'changesPreview' must be a JSON object")
    change_set = validate_change_set(preview)

    if changed_fields is not None:
        named = _parse_json_field("changedFields", changed_fields)
        if not isinstance(named, list) or set(named) != set(preview):
            raise ValidationError(
                "'changedFields' must list exactly the fields in 'changesPreview'",
                details={"changed_fields": named, "preview_fields": list(preview)},
            )

    created = await proposals.create_proposal(
        session,
        store,
        project,
        actor.user_id,
        change_set,
        title=title,
        description=description,
        uploads=await read_uploads(files),
    )
    return to_created(created)


@router.get("/{project_id}/proposals", response_model=ProposalList)
@limit_read
async def list_proposals(
    request: Request,
    project_id: UUID,
    actor: CurrentActor,
    status: ProposalStatus | None = Query(None, description="Filter by status"),
    limit: int = Query(
        settings.pagination_limit_default,
        ge=1,
        le=settings.pagination_limit_max,
        description="Results per page",
    ),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    session: AsyncSession = Depends(get_session),
) -> ProposalList:
    """List a project's proposals, newest first."""
    project = await projects.get_project(session, project_id)
    ensure_can_view(await projects.role_of(session, actor.user_id, project))

    rows, total = await proposals.list_proposals(session, project.id, status, limit, offset)
    attachments = await proposals.load_attachments(session, [p.id for p in rows])
    return ProposalList(
        results=[to_proposal(p, attachments[p.id]) for p in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{project_id}/proposals/{proposal_id}", response_model=Proposal)
@limit_read
async def get_proposal(
    request: Request,
    project_id: UUID,
    proposal_id: UUID,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
) -> Proposal:
    """Get a proposal with its attachments."""
    project = await projects.get_project(session, project_id)
    ensure_can_view(await projects.role_of(session, actor.user_id, project))

    proposal = await proposals.get_proposal(session, project.id, proposal_id)
    attachments = await proposals.load_attachments(session, [proposal.id])
    return to_proposal(proposal, attachments[proposal.id])


@router.patch("/{project_id}/proposals/{proposal_id}", response_model=Proposal)
@limit_write
async def review_proposal(
    request: Request,
    project_id: UUID,
    proposal_id: UUID,
    transition: ProposalTransition,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
    store: FileStore = Depends(get_file_store),
) -> Proposal:
    """Approve, reject, or merge a proposal. Owner only.

    Merging applies the change set to the project and promotes attached files;
    it fails with 409 if the project has moved since the proposal was opened.
    """
    project = await projects.get_project(session, project_id)
    proposal = await proposals.get_proposal(session, project.id, proposal_id)
    await proposals.transition_proposal(session, store, proposal, actor.user_id, transition.status)

    attachments = await proposals.load_attachments(session, [proposal.id])
    return to_proposal(proposal, attachments[proposal.id])
