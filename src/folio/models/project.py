"""Project models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from folio.models.enums import ProjectVisibility


class ProjectBase(BaseModel):
    """Base project fields."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=100)
    visibility: ProjectVisibility = ProjectVisibility.INSTITUTION
    tech_stack: list[str] = Field(default_factory=list)
    github_url: str | None = Field(None, max_length=500)
    demo_url: str | None = Field(None, max_length=500)
    repository_url: str | None = Field(None, max_length=500)
    live_demo_url: str | None = Field(None, max_length=500)
    academic_level: str | None = Field(None, max_length=100)
    department: str | None = Field(None, max_length=100)
    course_subject: str | None = Field(None, max_length=150)
    project_methodology: str | None = None
    setup_instructions: str | None = None


class ProjectCreate(ProjectBase):
    """Fields for creating a project. The creator becomes its owner."""

    pass


class ProjectUpdate(BaseModel):
    """Fields for an owner's direct edit. Only fields that are sent are compared."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, min_length=1)
    category: str | None = Field(None, min_length=1, max_length=100)
    visibility: ProjectVisibility | None = None
    tech_stack: list[str] | None = None
    github_url: str | None = Field(None, max_length=500)
    demo_url: str | None = Field(None, max_length=500)
    repository_url: str | None = Field(None, max_length=500)
    live_demo_url: str | None = Field(None, max_length=500)
    academic_level: str | None = Field(None, max_length=100)
    department: str | None = Field(None, max_length=100)
    course_subject: str | None = Field(None, max_length=150)
    project_methodology: str | None = None
    setup_instructions: str | None = None
    expected_version: int | None = Field(
        None, ge=1, description="Version the edit was based on; 409 if the project moved"
    )


class Project(ProjectBase):
    """Project entity."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    version: int
    created_at: datetime
    updated_at: datetime


class MemberCreate(BaseModel):
    """Add a collaborator to a project."""

    user_id: UUID


class Member(BaseModel):
    """Project collaborator."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    user_id: UUID
    added_at: datetime


class ProjectFile(BaseModel):
    """A permanent project file."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    file_name: str
    content_type: str
    size: int
    uploaded_by: UUID
    source_proposal_id: UUID | None = None
    uploaded_at: datetime
