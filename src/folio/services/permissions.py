"""Role-based gate for project mutations.

Owners write directly. Collaborators must route every field edit and file upload
through a proposal, and are told so with a dedicated error rather than a generic
403 so the UI can send them into the proposal flow.
"""

from uuid import UUID

from folio.api.errors import AuthorizationError, ErrorCode, ProposalRequiredError, ValidationError
from folio.models.enums import CollaboratorRole, MutationKind, WriteDecision

_DECISIONS: dict[CollaboratorRole, WriteDecision] = {
    CollaboratorRole.OWNER: WriteDecision.DIRECT_WRITE_ALLOWED,
    CollaboratorRole.COLLABORATOR: WriteDecision.PROPOSAL_REQUIRED,
}


def classify(role: CollaboratorRole) -> WriteDecision:
    """Decide whether a role may write directly or must open a proposal.

    Raises AuthorizationError for users with no role on the project.
    """
    decision = _DECISIONS.get(role)
    if decision is None:
        raise AuthorizationError("You are not a member of this project")
    return decision


def ensure_direct_write(
    role: CollaboratorRole,
    kind: MutationKind,
    project_id: UUID,
) -> None:
    """Raise unless the role may apply ``kind`` to the project without review."""
    if classify(role) == WriteDecision.PROPOSAL_REQUIRED:
        action = "upload files" if kind == MutationKind.FILE_UPLOAD else "edit project details"
        raise ProposalRequiredError(
            f"Collaborators cannot {action} directly. "
            "Please create a proposal with your changes.",
            details={
                "mutation": str(kind),
                "redirect_to": f"/api/v1/projects/{project_id}/proposals",
            },
        )


def ensure_owner(role: CollaboratorRole, action: str = "perform this action") -> None:
    if role != CollaboratorRole.OWNER:
        raise AuthorizationError(f"Only the project owner can {action}")


def ensure_can_propose(role: CollaboratorRole) -> None:
    """Only collaborators open proposals; owners edit the project directly."""
    if role == CollaboratorRole.OWNER:
        raise ValidationError(
            "Project owners cannot create proposals for their own projects",
            code=ErrorCode.OWNER_CANNOT_PROPOSE,
        )
    if role != CollaboratorRole.COLLABORATOR:
        raise AuthorizationError("Only collaborators can create proposals")


def ensure_can_view(role: CollaboratorRole) -> None:
    if role not in (CollaboratorRole.OWNER, CollaboratorRole.COLLABORATOR):
        raise AuthorizationError("Access denied")
