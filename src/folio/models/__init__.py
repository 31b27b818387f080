"""Pydantic models for Folio entities."""

from folio.models.edit_session import (
    EditSession,
    EditSessionComment,
    EditSessionDetails,
    EditSessionSubmit,
)
from folio.models.enums import (
    AttachmentStatus,
    CollaboratorRole,
    PendingChangeKind,
    ProjectVisibility,
    ProposalStatus,
)
from folio.models.project import (
    Member,
    MemberCreate,
    Project,
    ProjectCreate,
    ProjectFile,
    ProjectUpdate,
)
from folio.models.proposal import (
    AttachedFileRef,
    FieldChange,
    FileUploadResult,
    Proposal,
    ProposalCreated,
    ProposalList,
    ProposalTransition,
    UploadFailure,
)

__all__ = [
    # Enums
    "AttachmentStatus",
    "CollaboratorRole",
    "PendingChangeKind",
    "ProjectVisibility",
    "ProposalStatus",
    # Project
    "Member",
    "MemberCreate",
    "Project",
    "ProjectCreate",
    "ProjectFile",
    "ProjectUpdate",
    # Proposal
    "AttachedFileRef",
    "FieldChange",
    "FileUploadResult",
    "Proposal",
    "ProposalCreated",
    "ProposalList",
    "ProposalTransition",
    "UploadFailure",
    # Editing sessions
    "EditSession",
    "EditSessionComment",
    "EditSessionDetails",
    "EditSessionSubmit",
]
