"""Proposal models."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from folio.models.enums import AttachmentStatus, ProposalStatus
from folio.models.project import ProjectFile


class FieldChange(BaseModel):
    """The value a field had when the diff was taken and the proposed value."""

    old: Any = None
    new: Any = None


class AttachedFileRef(BaseModel):
    """A file travelling with a proposal."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    file_name: str
    content_type: str
    size: int
    status: AttachmentStatus
    promoted_name: str | None = None
    uploaded_at: datetime


class UploadFailure(BaseModel):
    """A file that could not be stored. Reported without failing the request."""

    file_name: str
    code: str
    message: str


class Proposal(BaseModel):
    """Proposal entity."""

    id: UUID
    project_id: UUID
    number: int
    author_id: UUID
    title: str
    description: str
    status: ProposalStatus
    change_set: dict[str, FieldChange]
    changed_fields: list[str]
    attachments: list[AttachedFileRef] = Field(default_factory=list)
    baseline_version: int
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    merged_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ProposalCreated(Proposal):
    """A new proposal plus any files that failed to attach."""

    upload_failures: list[UploadFailure] = Field(default_factory=list)


class ProposalTransition(BaseModel):
    """Owner review decision."""

    status: ProposalStatus


class ProposalList(BaseModel):
    """Paginated proposals, newest first."""

    results: list[Proposal]
    total: int
    limit: int
    offset: int


class FileUploadResult(BaseModel):
    """Outcome of an owner's direct multi-file upload."""

    files: list[ProjectFile]
    upload_failures: list[UploadFailure] = Field(default_factory=list)
