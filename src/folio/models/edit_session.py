"""Editing session models."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from folio.models.proposal import FieldChange


class EditSessionDetails(BaseModel):
    """A draft of project fields; diffed against the current project on receipt."""

    fields: dict[str, Any]


class EditSessionComment(BaseModel):
    body: str = Field(..., min_length=1)


class EditSessionSubmit(BaseModel):
    title: str | None = Field(None, max_length=200)
    description: str | None = None


class EditSession(BaseModel):
    """What an editing session has accumulated so far."""

    session_id: UUID
    project_id: UUID
    created_at: datetime
    pending_kinds: list[str]
    changed_fields: list[str]
    change_set: dict[str, FieldChange]
    files: list[str]
    comments: list[str]
