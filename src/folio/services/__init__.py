"""Business logic services."""

from folio.services.audit import (
    AuditAction,
    log_event,
    log_file_uploaded,
    log_files_promoted,
    log_project_updated,
    log_proposal_created,
    log_proposal_transition,
)
from folio.services.change_tracker import (
    ChangeDetection,
    ChangeSet,
    FieldChange,
    apply_change_set,
    detect_changes,
    generate_description,
    generate_title,
    merge_change_sets,
    validate_change_set,
)
from folio.services.permissions import (
    classify,
    ensure_can_propose,
    ensure_can_view,
    ensure_direct_write,
    ensure_owner,
)

__all__ = [
    # Change tracking
    "ChangeDetection",
    "ChangeSet",
    "FieldChange",
    "apply_change_set",
    "detect_changes",
    "generate_description",
    "generate_title",
    "merge_change_sets",
    "validate_change_set",
    # Permission gate
    "classify",
    "ensure_can_propose",
    "ensure_can_view",
    "ensure_direct_write",
    "ensure_owner",
    # Audit logging
    "AuditAction",
    "log_event",
    "log_file_uploaded",
    "log_files_promoted",
    "log_project_updated",
    "log_proposal_created",
    "log_proposal_transition",
]
