"""Canonical project store and membership.

The canonical record is only ever written through ``write``, which is a
compare-and-swap on ``projects.version``: the update applies when the row still
carries the expected version and bumps it by exactly one.
"""

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from folio.api.errors import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    StorageError,
    UploadError,
    ValidationError,
)
from folio.db import ProjectDB, ProjectFileDB, ProjectMemberDB
from folio.models.enums import CollaboratorRole
from folio.services.attachments import UploadBlob, add_permanent_file
from folio.services.audit import (
    AuditAction,
    log_event,
    log_file_uploaded,
    log_project_updated,
)
from folio.services.change_tracker import (
    TRACKED_FIELDS,
    detect_changes,
    get_tracked_field,
    plain_value,
    validate_draft,
)
from folio.services.file_store import FileStore, FileStoreError

logger = logging.getLogger(__name__)


async def get_project(session: AsyncSession, project_id: UUID) -> ProjectDB:
    result = await session.execute(select(ProjectDB).where(ProjectDB.id == project_id))
    project = result.scalar_one_or_none()
    if not project:
        raise NotFoundError(ErrorCode.PROJECT_NOT_FOUND, "Project not found")
    return project


def baseline_of(project: ProjectDB) -> dict[str, Any]:
    """Current value of every tracked field, as plain JSON-friendly values."""
    return {name: plain_value(getattr(project, name)) for name in TRACKED_FIELDS}


async def role_of(session: AsyncSession, user_id: UUID, project: ProjectDB) -> CollaboratorRole:
    if project.owner_id == user_id:
        return CollaboratorRole.OWNER
    result = await session.execute(
        select(ProjectMemberDB.id)
        .where(ProjectMemberDB.project_id == project.id)
        .where(ProjectMemberDB.user_id == user_id)
    )
    if result.scalar_one_or_none() is not None:
        return CollaboratorRole.COLLABORATOR
    return CollaboratorRole.NONE


async def write(
    session: AsyncSession,
    project: ProjectDB,
    fields: dict[str, Any],
    expected_version: int,
) -> int:
    """Apply ``fields`` to the canonical record if it is still at ``expected_version``.

    Returns the new version. Raises ConflictError when another write got there
    first; nothing is modified in that case.
    """
    values = {name: get_tracked_field(name).coerce(value) for name, value in fields.items()}
    result = await session.execute(
        update(ProjectDB)
        .where(ProjectDB.id == project.id)
        .where(ProjectDB.version == expected_version)
        .values(**values, version=ProjectDB.version + 1, updated_at=datetime.now(UTC))
        .returning(ProjectDB.version)
        .execution_options(synchronize_session=False)
    )
    new_version = result.scalar_one_or_none()
    if new_version is None:
        raise ConflictError(
            "Project was modified since these changes were computed",
            details={"project_id": str(project.id), "expected_version": expected_version},
        )
    await session.refresh(project)
    logger.info("Project %s written at version %d", project.id, new_version)
    return int(new_version)


async def create_project(
    session: AsyncSession,
    owner_id: UUID,
    fields: dict[str, Any],
) -> ProjectDB:
    values = {name: get_tracked_field(name).coerce(value) for name, value in fields.items()}
    project = ProjectDB(owner_id=owner_id, **values)
    session.add(project)
    await session.flush()
    await session.refresh(project)
    await log_event(
        session,
        entity_type="project",
        entity_id=project.id,
        action=AuditAction.PROJECT_CREATED,
        actor_id=owner_id,
    )
    return project


async def add_member(session: AsyncSession, project: ProjectDB, user_id: UUID) -> ProjectMemberDB:
    if await role_of(session, user_id, project) != CollaboratorRole.NONE:
        raise ValidationError(
            "User is already a member of this project",
            code=ErrorCode.DUPLICATE_MEMBER,
            details={"user_id": str(user_id)},
        )
    member = ProjectMemberDB(project_id=project.id, user_id=user_id)
    session.add(member)
    await session.flush()
    await session.refresh(member)
    await log_event(
        session,
        entity_type="project",
        entity_id=project.id,
        action=AuditAction.MEMBER_ADDED,
        actor_id=project.owner_id,
        payload={"user_id": str(user_id)},
    )
    return member


async def update_project(
    session: AsyncSession,
    project: ProjectDB,
    actor_id: UUID,
    draft: dict[str, Any],
    expected_version: int | None = None,
) -> ProjectDB:
    """Owner direct write. Unchanged fields are skipped; an empty diff is a no-op."""
    detection = detect_changes(baseline_of(project), validate_draft(draft))
    if detection.change_set.is_empty:
        return project
    version = await write(
        session,
        project,
        detection.change_set.new_values(),
        expected_version if expected_version is not None else project.version,
    )
    await log_project_updated(session, project.id, actor_id, detection.changed_fields, version)
    return project


async def list_files(session: AsyncSession, project_id: UUID) -> list[ProjectFileDB]:
    result = await session.execute(
        select(ProjectFileDB)
        .where(ProjectFileDB.project_id == project_id)
        .order_by(ProjectFileDB.uploaded_at, ProjectFileDB.file_name)
    )
    return list(result.scalars().all())


async def get_file(session: AsyncSession, project_id: UUID, file_id: UUID) -> ProjectFileDB:
    result = await session.execute(
        select(ProjectFileDB)
        .where(ProjectFileDB.id == file_id)
        .where(ProjectFileDB.project_id == project_id)
    )
    project_file = result.scalar_one_or_none()
    if not project_file:
        raise NotFoundError(ErrorCode.FILE_NOT_FOUND, "File not found")
    return project_file


async def read_file(store: FileStore, project_file: ProjectFileDB) -> bytes:
    try:
        return await store.read(project_file.storage_key)
    except FileStoreError as e:
        logger.error("Could not read file %s: %s", project_file.id, e)
        raise StorageError(
            f"Could not read '{project_file.file_name}'",
            details={"file_id": str(project_file.id)},
        ) from e


async def upload_files(
    session: AsyncSession,
    store: FileStore,
    project: ProjectDB,
    actor_id: UUID,
    blobs: list[UploadBlob],
) -> tuple[list[ProjectFileDB], list[UploadError]]:
    """Owner direct upload. Each file succeeds or fails on its own."""
    uploaded: list[ProjectFileDB] = []
    failures: list[UploadError] = []
    for blob in blobs:
        try:
            project_file = await add_permanent_file(session, store, project.id, blob, actor_id)
        except UploadError as e:
            logger.warning(
                "Upload of %s to project %s failed: %s", e.file_name, project.id, e.message
            )
            failures.append(e)
            continue
        await log_file_uploaded(session, project.id, actor_id, project_file.file_name)
        uploaded.append(project_file)
    return uploaded, failures
