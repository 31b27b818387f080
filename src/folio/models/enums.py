"""Enumerations for Folio entities."""

from enum import StrEnum


class ProposalStatus(StrEnum):
    """Review status of a proposal.

    OPEN and APPROVED are active; REJECTED and MERGED are terminal.
    """

    OPEN = "OPEN"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MERGED = "MERGED"

    @property
    def is_terminal(self) -> bool:
        return self in (ProposalStatus.REJECTED, ProposalStatus.MERGED)


class CollaboratorRole(StrEnum):
    """A user's relation to a project, as reported by the membership layer."""

    OWNER = "OWNER"
    COLLABORATOR = "COLLABORATOR"
    NONE = "NONE"


class WriteDecision(StrEnum):
    """Outcome of classifying a mutation request."""

    DIRECT_WRITE_ALLOWED = "DIRECT_WRITE_ALLOWED"
    PROPOSAL_REQUIRED = "PROPOSAL_REQUIRED"


class MutationKind(StrEnum):
    """Kinds of direct mutation a user can attempt on a project."""

    FIELD_WRITE = "field_write"
    FILE_UPLOAD = "file_upload"


class PendingChangeKind(StrEnum):
    """Kinds of change an editing session accumulates before submission."""

    DETAILS = "details"
    FILES = "files"
    COMMENTS = "comments"


class AttachmentStatus(StrEnum):
    """Lifecycle of a file attached to a proposal."""

    PENDING = "PENDING"  # Bound to the proposal, not yet part of the project
    PROMOTED = "PROMOTED"  # Copied into the project's permanent files on merge
    DISCARDED = "DISCARDED"  # Released after rejection


class ProjectVisibility(StrEnum):
    """Who can discover a project."""

    PRIVATE = "PRIVATE"
    INSTITUTION = "INSTITUTION"
    PUBLIC = "PUBLIC"
