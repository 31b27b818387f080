"""Proposal store and review state machine.

Transitions are driven by ``TRANSITIONS``; any edge not listed there is refused.
A merge applies the proposal's change set to the canonical record with a
compare-and-swap on the version the diff was computed against, promotes the
attachments, and flips the status, all inside one savepoint.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from folio.api.errors import (
    APIError,
    ConflictError,
    ErrorCode,
    InvalidTransitionError,
    NotFoundError,
    UploadError,
    ValidationError,
)
from folio.db import ProjectDB, ProposalAttachmentDB, ProposalDB
from folio.models.enums import ProposalStatus
from folio.services import projects
from folio.services.attachments import FileAttachmentBinder, UploadBlob
from folio.services.audit import (
    log_files_promoted,
    log_project_updated,
    log_proposal_created,
    log_proposal_transition,
)
from folio.services.change_tracker import (
    ChangeSet,
    generate_description,
    generate_title,
    values_equal,
)
from folio.services.file_store import FileStore
from folio.services.notifications import notify_proposal_created, notify_proposal_status_change
from folio.services.permissions import ensure_can_propose, ensure_owner

logger = logging.getLogger(__name__)

TRANSITIONS: dict[ProposalStatus, frozenset[ProposalStatus]] = {
    ProposalStatus.OPEN: frozenset({ProposalStatus.APPROVED, ProposalStatus.REJECTED}),
    ProposalStatus.APPROVED: frozenset({ProposalStatus.MERGED}),
    ProposalStatus.REJECTED: frozenset(),
    ProposalStatus.MERGED: frozenset(),
}


def allowed_targets(status: ProposalStatus) -> list[ProposalStatus]:
    return sorted(TRANSITIONS[status])


def check_transition(current: ProposalStatus, target: ProposalStatus) -> None:
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move a proposal from {current} to {target}",
            details={
                "current_status": str(current),
                "requested_status": str(target),
                "allowed": [str(s) for s in allowed_targets(current)],
            },
        )


@dataclass
class CreatedProposal:
    proposal: ProposalDB
    attachments: list[ProposalAttachmentDB] = field(default_factory=list)
    failures: list[UploadError] = field(default_factory=list)


def _with_notes(description: str, notes: list[str] | None) -> str:
    if not notes:
        return description
    return "\n".join([description, "", "Notes:", *(f"- {note}" for note in notes)])


NUMBER_ATTEMPTS = 3


async def _insert_numbered(session: AsyncSession, proposal: ProposalDB) -> None:
    """Insert the proposal under the next free number in its project."""
    for _ in range(NUMBER_ATTEMPTS):
        latest = await session.execute(
            select(func.max(ProposalDB.number)).where(ProposalDB.project_id == proposal.project_id)
        )
        proposal.number = (latest.scalar() or 0) + 1
        try:
            async with session.begin_nested():
                session.add(proposal)
                await session.flush()
            return
        except IntegrityError:
            logger.warning(
                "Proposal number %d on project %s was taken, retrying",
                proposal.number,
                proposal.project_id,
            )
    raise ConflictError(
        "Too many proposals opened at once; try again",
        details={"project_id": str(proposal.project_id)},
    )


async def create_proposal(
    session: AsyncSession,
    store: FileStore,
    project: ProjectDB,
    author_id: UUID,
    change_set: ChangeSet,
    title: str | None = None,
    description: str | None = None,
    notes: list[str] | None = None,
    uploads: list[UploadBlob] | None = None,
) -> CreatedProposal:
    """Open a proposal against the project's current version.

    Attachments are bound after the proposal exists; a file that fails to attach
    is reported in ``failures`` and does not prevent creation.
    """
    ensure_can_propose(await projects.role_of(session, author_id, project))
    if change_set.is_empty:
        raise ValidationError(
            "A proposal must change at least one field", code=ErrorCode.EMPTY_CHANGE_SET
        )

    baseline = projects.baseline_of(project)
    stale = [
        name
        for name, change in change_set.entries.items()
        if not values_equal(change.old, baseline.get(name))
    ]
    if stale:
        raise ConflictError(
            "Project was modified since these changes were computed",
            details={"stale_fields": stale, "current_version": project.version},
        )

    title = (title or "").strip() or generate_title(change_set)
    description = (description or "").strip()
    if description:
        description = _with_notes(description, notes)
    else:
        description = generate_description(change_set, notes)

    proposal = ProposalDB(
        project_id=project.id,
        author_id=author_id,
        title=title,
        description=description,
        status=ProposalStatus.OPEN,
        change_set=change_set.to_dict(),
        baseline_version=project.version,
    )
    await _insert_numbered(session, proposal)
    await session.refresh(proposal)

    batch = await FileAttachmentBinder(session, store).attach_many(proposal, uploads or [])

    await log_proposal_created(
        session,
        proposal_id=proposal.id,
        project_id=project.id,
        author_id=author_id,
        changed_fields=change_set.changed_fields,
        attachment_count=len(batch.attached),
    )
    await notify_proposal_created(
        project_id=project.id,
        proposal_id=proposal.id,
        project_title=project.title,
        proposal_title=proposal.title,
        changed_fields=change_set.changed_fields,
        attachment_count=len(batch.attached),
    )
    logger.info(
        "Proposal %s opened on project %s by %s (%d field(s), %d file(s), %d failed)",
        proposal.id,
        project.id,
        author_id,
        len(change_set),
        len(batch.attached),
        len(batch.failures),
    )
    return CreatedProposal(proposal, batch.attached, batch.failures)


async def get_proposal(session: AsyncSession, project_id: UUID, proposal_id: UUID) -> ProposalDB:
    result = await session.execute(
        select(ProposalDB)
        .where(ProposalDB.id == proposal_id)
        .where(ProposalDB.project_id == project_id)
    )
    proposal = result.scalar_one_or_none()
    if not proposal:
        raise NotFoundError(ErrorCode.PROPOSAL_NOT_FOUND, "Proposal not found")
    return proposal


async def list_proposals(
    session: AsyncSession,
    project_id: UUID,
    status: ProposalStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[ProposalDB], int]:
    """Proposals for a project, newest first."""
    base_query = select(ProposalDB).where(ProposalDB.project_id == project_id)
    if status:
        base_query = base_query.where(ProposalDB.status == status)

    count_query = select(func.count()).select_from(base_query.subquery())
    total = (await session.execute(count_query)).scalar() or 0

    query = (
        base_query.order_by(ProposalDB.created_at.desc(), ProposalDB.number.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await session.execute(query)
    return list(result.scalars().all()), total


async def _swap_status(
    session: AsyncSession,
    proposal: ProposalDB,
    current: ProposalStatus,
    target: ProposalStatus,
    reviewer_id: UUID,
    **extra: Any,
) -> None:
    now = datetime.now(UTC)
    result = await session.execute(
        update(ProposalDB)
        .where(ProposalDB.id == proposal.id)
        .where(ProposalDB.status == current)
        .values(status=target, reviewed_by=reviewer_id, reviewed_at=now, updated_at=now, **extra)
        .returning(ProposalDB.id)
        .execution_options(synchronize_session=False)
    )
    if result.scalar_one_or_none() is None:
        raise ConflictError(
            "Proposal was reviewed concurrently",
            details={"proposal_id": str(proposal.id), "expected_status": str(current)},
        )
    await session.refresh(proposal)


async def transition_proposal(
    session: AsyncSession,
    store: FileStore,
    proposal: ProposalDB,
    requester_id: UUID,
    target: ProposalStatus,
) -> ProposalDB:
    """Move a proposal along one edge of the review state machine. Owner only."""
    project = await projects.get_project(session, proposal.project_id)
    ensure_owner(await projects.role_of(session, requester_id, project), "review proposals")

    current = proposal.status
    check_transition(current, target)
    binder = FileAttachmentBinder(session, store)

    if target == ProposalStatus.MERGED:
        if proposal.baseline_version != project.version:
            raise ConflictError(
                "Project has changed since this proposal was created",
                details={
                    "baseline_version": proposal.baseline_version,
                    "current_version": project.version,
                },
            )
        change_set = ChangeSet.from_dict(proposal.change_set)
        promoted_keys: list[str] = []
        try:
            async with session.begin_nested():
                version = await projects.write(
                    session, project, change_set.new_values(), proposal.baseline_version
                )
                promoted = await binder.promote(proposal, requester_id)
                promoted_keys = [f.storage_key for f in promoted]
                await _swap_status(
                    session, proposal, current, target, requester_id, merged_at=datetime.now(UTC)
                )
        except APIError:
            # The savepoint is gone; drop the permanent copies and reload the project.
            await binder.release_blobs(promoted_keys)
            await session.refresh(project)
            raise
        await binder.release_staged(proposal.id)
        await log_project_updated(
            session, project.id, requester_id, change_set.changed_fields, version, proposal.id
        )
        if promoted:
            await log_files_promoted(
                session, proposal.id, requester_id, [f.file_name for f in promoted]
            )
    else:
        await _swap_status(session, proposal, current, target, requester_id)
        if target == ProposalStatus.REJECTED:
            await binder.discard(proposal)

    await log_proposal_transition(session, proposal.id, requester_id, str(current), str(target))
    await notify_proposal_status_change(project.id, proposal.id, proposal.title, str(target))
    logger.info("Proposal %s moved %s -> %s by %s", proposal.id, current, target, requester_id)
    return proposal


async def load_attachments(
    session: AsyncSession, proposal_ids: list[UUID]
) -> dict[UUID, list[ProposalAttachmentDB]]:
    """Attachments for several proposals in one query, keyed by proposal id."""
    attachments: dict[UUID, list[ProposalAttachmentDB]] = {pid: [] for pid in proposal_ids}
    if not proposal_ids:
        return attachments
    result = await session.execute(
        select(ProposalAttachmentDB)
        .where(ProposalAttachmentDB.proposal_id.in_(proposal_ids))
        .order_by(ProposalAttachmentDB.uploaded_at, ProposalAttachmentDB.file_name)
    )
    for attachment in result.scalars().all():
        attachments[attachment.proposal_id].append(attachment)
    return attachments
