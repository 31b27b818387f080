"""Audit logging service.

Provides append-only audit trail for project writes and the proposal lifecycle.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from folio.db import AuditEventDB


class AuditAction(StrEnum):
    """Types of auditable actions."""

    # Project actions
    PROJECT_CREATED = "project.created"
    PROJECT_UPDATED = "project.updated"
    MEMBER_ADDED = "project.member_added"

    # File actions
    FILE_UPLOADED = "file.uploaded"
    FILES_PROMOTED = "file.promoted"

    # Proposal actions
    PROPOSAL_CREATED = "proposal.created"
    PROPOSAL_APPROVED = "proposal.approved"
    PROPOSAL_REJECTED = "proposal.rejected"
    PROPOSAL_MERGED = "proposal.merged"


async def log_event(
    session: AsyncSession,
    entity_type: str,
    entity_id: UUID,
    action: AuditAction,
    actor_id: UUID | None = None,
    payload: dict[str, Any] | None = None,
) -> AuditEventDB:
    """Log an audit event.

    Args:
        session: Database session
        entity_type: Type of entity (e.g., "project", "proposal")
        entity_id: ID of the affected entity
        action: The action that was performed
        actor_id: ID of the user that performed the action (optional)
        payload: Additional data about the event (optional)

    Returns:
        The created audit event
    """
    event = AuditEventDB(
        entity_type=entity_type,
        entity_id=entity_id,
        action=str(action),
        actor_id=actor_id,
        payload=payload or {},
        occurred_at=datetime.now(UTC),
    )
    session.add(event)
    await session.flush()
    return event


async def log_project_updated(
    session: AsyncSession,
    project_id: UUID,
    actor_id: UUID,
    changed_fields: list[str],
    version: int,
    proposal_id: UUID | None = None,
) -> AuditEventDB:
    """Log a write to the canonical project record."""
    payload: dict[str, Any] = {"changed_fields": changed_fields, "version": version}
    if proposal_id:
        payload["proposal_id"] = str(proposal_id)
    return await log_event(
        session=session,
        entity_type="project",
        entity_id=project_id,
        action=AuditAction.PROJECT_UPDATED,
        actor_id=actor_id,
        payload=payload,
    )


async def log_file_uploaded(
    session: AsyncSession,
    project_id: UUID,
    actor_id: UUID,
    file_name: str,
) -> AuditEventDB:
    """Log an owner's direct upload into the permanent file set."""
    return await log_event(
        session=session,
        entity_type="project",
        entity_id=project_id,
        action=AuditAction.FILE_UPLOADED,
        actor_id=actor_id,
        payload={"file_name": file_name},
    )


async def log_files_promoted(
    session: AsyncSession,
    proposal_id: UUID,
    actor_id: UUID,
    file_names: list[str],
) -> AuditEventDB:
    """Log attachments promoted into the permanent file set by a merge."""
    return await log_event(
        session=session,
        entity_type="proposal",
        entity_id=proposal_id,
        action=AuditAction.FILES_PROMOTED,
        actor_id=actor_id,
        payload={"file_names": file_names},
    )


async def log_proposal_created(
    session: AsyncSession,
    proposal_id: UUID,
    project_id: UUID,
    author_id: UUID,
    changed_fields: list[str],
    attachment_count: int,
) -> AuditEventDB:
    """Log a proposal creation event."""
    return await log_event(
        session=session,
        entity_type="proposal",
        entity_id=proposal_id,
        action=AuditAction.PROPOSAL_CREATED,
        actor_id=author_id,
        payload={
            "project_id": str(project_id),
            "changed_fields": changed_fields,
            "attachment_count": attachment_count,
        },
    )


_TRANSITION_ACTIONS = {
    "APPROVED": AuditAction.PROPOSAL_APPROVED,
    "REJECTED": AuditAction.PROPOSAL_REJECTED,
    "MERGED": AuditAction.PROPOSAL_MERGED,
}


async def log_proposal_transition(
    session: AsyncSession,
    proposal_id: UUID,
    reviewer_id: UUID,
    from_status: str,
    to_status: str,
) -> AuditEventDB:
    """Log a review decision on a proposal."""
    return await log_event(
        session=session,
        entity_type="proposal",
        entity_id=proposal_id,
        action=_TRANSITION_ACTIONS[to_status],
        actor_id=reviewer_id,
        payload={"from": from_status, "to": to_status},
    )
