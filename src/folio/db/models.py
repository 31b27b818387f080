"""SQLAlchemy database models."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from folio.models.enums import AttachmentStatus, ProjectVisibility, ProposalStatus


def _utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ProjectDB(Base):
    """Canonical project record.

    Written only by the owner directly or by merging an approved proposal.
    Every successful write bumps ``version`` exactly once.
    """

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    visibility: Mapped[ProjectVisibility] = mapped_column(
        Enum(ProjectVisibility), default=ProjectVisibility.INSTITUTION, nullable=False
    )
    tech_stack: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    github_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    demo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    repository_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    live_demo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    academic_level: Mapped[str | None] = mapped_column(String(100), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    course_subject: Mapped[str | None] = mapped_column(String(150), nullable=True)
    project_methodology: Mapped[str | None] = mapped_column(Text, nullable=True)
    setup_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    members: Mapped[list["ProjectMemberDB"]] = relationship(back_populates="project")
    files: Mapped[list["ProjectFileDB"]] = relationship(back_populates="project")
    proposals: Mapped[list["ProposalDB"]] = relationship(back_populates="project")


class ProjectMemberDB(Base):
    """Collaborator membership on a project. The owner is not listed here."""

    __tablename__ = "project_members"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)

    # Relationships
    project: Mapped["ProjectDB"] = relationship(back_populates="members")


class ProjectFileDB(Base):
    """A permanent project file."""

    __tablename__ = "project_files"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)
    uploaded_by: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    source_proposal_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("proposals.id"), nullable=True
    )  # Set when the file arrived through a merged proposal
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("project_id", "file_name", name="uq_project_file_name"),)

    # Relationships
    project: Mapped["ProjectDB"] = relationship(back_populates="files")


class ProposalDB(Base):
    """Proposal database model."""

    __tablename__ = "proposals"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)  # 1, 2, ... within a project
    author_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ProposalStatus] = mapped_column(
        Enum(ProposalStatus), default=ProposalStatus.OPEN, nullable=False, index=True
    )
    change_set: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    baseline_version: Mapped[int] = mapped_column(Integer, nullable=False)
    reviewed_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("project_id", "number", name="uq_proposal_number"),)

    # Relationships
    project: Mapped["ProjectDB"] = relationship(back_populates="proposals")
    attachments: Mapped[list["ProposalAttachmentDB"]] = relationship(
        back_populates="proposal", lazy="raise"
    )  # Always queried explicitly; the collection goes stale as files are bound


class ProposalAttachmentDB(Base):
    """A file bound to one proposal, kept apart from the project's permanent files."""

    __tablename__ = "proposal_attachments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    proposal_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_key: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[AttachmentStatus] = mapped_column(
        Enum(AttachmentStatus), default=AttachmentStatus.PENDING, nullable=False
    )
    promoted_name: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )  # Final name in the permanent set, after collision renaming
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("proposal_id", "file_name", name="uq_proposal_attachment_name"),
    )

    # Relationships
    proposal: Mapped["ProposalDB"] = relationship(back_populates="attachments")


class AuditEventDB(Base):
    """Audit event database model (append-only)."""

    __tablename__ = "audit_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
