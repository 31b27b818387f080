"""Projects API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from folio.api.auth import CurrentActor
from folio.api.rate_limit import limit_read, limit_write
from folio.db import ProjectDB, ProjectFileDB, ProjectMemberDB, get_session
from folio.models import (
    FileUploadResult,
    Member,
    MemberCreate,
    Project,
    ProjectCreate,
    ProjectFile,
    ProjectUpdate,
    UploadFailure,
)
from folio.models.enums import MutationKind
from folio.services import ensure_can_view, ensure_direct_write, ensure_owner, projects
from folio.services.attachments import UploadBlob
from folio.services.file_store import FileStore, get_file_store

router = APIRouter()


async def read_uploads(files: list[UploadFile] | None) -> list[UploadBlob]:
    """Buffer multipart uploads into blobs."""
    blobs = []
    for upload in files or []:
        blobs.append(
            UploadBlob(
                file_name=upload.filename or "",
                data=await upload.read(),
                content_type=upload.content_type or "application/octet-stream",
            )
        )
    return blobs


@router.post("", response_model=Project, status_code=201)
@limit_write
async def create_project(
    request: Request,
    project: ProjectCreate,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
) -> ProjectDB:
    """Create a project. The acting user becomes its owner."""
    return await projects.create_project(session, actor.user_id, project.model_dump())


@router.get("/{project_id}", response_model=Project)
@limit_read
async def get_project(
    request: Request,
    project_id: UUID,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
) -> ProjectDB:
    """Get a project. Owner or collaborators only."""
    project = await projects.get_project(session, project_id)
    ensure_can_view(await projects.role_of(session, actor.user_id, project))
    return project


@router.patch("/{project_id}", response_model=Project)
@limit_write
async def update_project(
    request: Request,
    project_id: UUID,
    update: ProjectUpdate,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
) -> ProjectDB:
    """Edit project fields directly.

    Owners only. Collaborators receive 403 PROPOSAL_REQUIRED and must submit a
    proposal instead. Returns 409 if ``expected_version`` is stale.
    """
    project = await projects.get_project(session, project_id)
    role = await projects.role_of(session, actor.user_id, project)
    ensure_direct_write(role, MutationKind.FIELD_WRITE, project.id)

    draft = update.model_dump(exclude_unset=True, exclude={"expected_version"})
    return await projects.update_project(
        session, project, actor.user_id, draft, update.expected_version
    )


@router.post("/{project_id}/members", response_model=Member, status_code=201)
@limit_write
async def add_member(
    request: Request,
    project_id: UUID,
    member: MemberCreate,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
) -> ProjectMemberDB:
    """Add a collaborator. Owner only."""
    project = await projects.get_project(session, project_id)
    ensure_owner(await projects.role_of(session, actor.user_id, project), "add collaborators")
    return await projects.add_member(session, project, member.user_id)


@router.get("/{project_id}/files", response_model=list[ProjectFile])
@limit_read
async def list_files(
    request: Request,
    project_id: UUID,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
) -> list[ProjectFileDB]:
    """List the project's permanent files."""
    project = await projects.get_project(session, project_id)
    ensure_can_view(await projects.role_of(session, actor.user_id, project))
    return await projects.list_files(session, project.id)


@router.get("/{project_id}/files/{file_id}/content")
@limit_read
async def download_file(
    request: Request,
    project_id: UUID,
    file_id: UUID,
    actor: CurrentActor,
    session: AsyncSession = Depends(get_session),
    store: FileStore = Depends(get_file_store),
) -> Response:
    """Download a permanent file. Owners and collaborators only."""
    project = await projects.get_project(session, project_id)
    ensure_can_view(await projects.role_of(session, actor.user_id, project))
    project_file = await projects.get_file(session, project.id, file_id)
    return Response(
        content=await projects.read_file(store, project_file),
        media_type=project_file.content_type,
        headers={"Content-Disposition": f'attachment; filename="{project_file.file_name}"'},
    )


@router.post("/{project_id}/files", response_model=FileUploadResult, status_code=201)
@limit_write
async def upload_files(
    request: Request,
    project_id: UUID,
    actor: CurrentActor,
    files: list[UploadFile] = File(...),
    session: AsyncSession = Depends(get_session),
    store: FileStore = Depends(get_file_store),
) -> FileUploadResult:
    """Upload files straight into the project. Owners only.

    Collaborators receive 403 PROPOSAL_REQUIRED. Each file is stored
    independently; failures are listed in ``upload_failures``.
    """
    project = await projects.get_project(session, project_id)
    role = await projects.role_of(session, actor.user_id, project)
    ensure_direct_write(role, MutationKind.FILE_UPLOAD, project.id)

    uploaded, failures = await projects.upload_files(
        session, store, project, actor.user_id, await read_uploads(files)
    )
    return FileUploadResult(
        files=[ProjectFile.model_validate(f) for f in uploaded],
        upload_failures=[UploadFailure(**e.to_dict()) for e in failures],
    )
