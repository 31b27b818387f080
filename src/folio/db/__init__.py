"""Database module."""

from folio.db.database import get_session, init_db
from folio.db.models import (
    AuditEventDB,
    Base,
    ProjectDB,
    ProjectFileDB,
    ProjectMemberDB,
    ProposalAttachmentDB,
    ProposalDB,
)

__all__ = [
    "Base",
    "get_session",
    "init_db",
    "ProjectDB",
    "ProjectMemberDB",
    "ProjectFileDB",
    "ProposalDB",
    "ProposalAttachmentDB",
    "AuditEventDB",
]
