"""Field-level change tracking for project records.

Computes the diff between an edited draft and the canonical baseline, applies a
diff back onto a baseline, and renders the human summary attached to proposals.
Detection is recomputed from scratch on every call, so a field reverted to its
baseline value simply drops out of the result.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from folio.api.errors import ErrorCode, ValidationError
from folio.models.enums import ProjectVisibility

TRUNCATE_AT = 50
TRUNCATED_LENGTH = 47


@dataclass(frozen=True)
class TrackedField:
    """A canonical project field that collaborators may propose changes to."""

    name: str
    label: str
    adapter: TypeAdapter[Any]

    def coerce(self, value: Any) -> Any:
        """Validate a value against this field's declared type."""
        try:
            return self.adapter.validate_python(value)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid value for '{self.name}': {e.errors()[0]['msg']}",
                code=ErrorCode.INVALID_FIELD_VALUE,
                details={"field": self.name},
            ) from e


_str = TypeAdapter(str)
_optional_str = TypeAdapter(str | None)
_str_list = TypeAdapter(list[str])
_visibility = TypeAdapter(ProjectVisibility)

# Order here is the order of entries in every change set.
TRACKED_FIELDS: dict[str, TrackedField] = {
    f.name: f
    for f in (
        TrackedField("title", "Title", _str),
        TrackedField("description", "Description", _str),
        TrackedField("category", "Category", _str),
        TrackedField("visibility", "Visibility", _visibility),
        TrackedField("tech_stack", "Tech Stack", _str_list),
        TrackedField("github_url", "Github Url", _optional_str),
        TrackedField("demo_url", "Demo Url", _optional_str),
        TrackedField("repository_url", "Repository Url", _optional_str),
        TrackedField("live_demo_url", "Live Demo Url", _optional_str),
        TrackedField("academic_level", "Academic Level", _optional_str),
        TrackedField("department", "Department", _optional_str),
        TrackedField("course_subject", "Course Subject", _optional_str),
        TrackedField("project_methodology", "Project Methodology", _optional_str),
        TrackedField("setup_instructions", "Setup Instructions", _optional_str),
    )
}


def field_label(name: str) -> str:
    """Human label for a tracked field."""
    tracked = TRACKED_FIELDS.get(name)
    if tracked:
        return tracked.label
    return name.replace("_", " ").title()


def get_tracked_field(name: str) -> TrackedField:
    tracked = TRACKED_FIELDS.get(name)
    if tracked is None:
        raise ValidationError(
            f"Unknown project field '{name}'",
            code=ErrorCode.UNKNOWN_FIELD,
            details={"field": name, "allowed": list(TRACKED_FIELDS)},
        )
    return tracked


@dataclass(frozen=True)
class FieldChange:
    """The baseline value observed at diff time and the proposed value."""

    old: Any
    new: Any

    def to_dict(self) -> dict[str, Any]:
        return {"old": plain_value(self.old), "new": plain_value(self.new)}


@dataclass
class ChangeSet:
    """Ordered mapping of tracked field name to FieldChange."""

    entries: dict[str, FieldChange] = field(default_factory=dict)

    @property
    def changed_fields(self) -> list[str]:
        return list(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, name: object) -> bool:
        return name in self.entries

    def __getitem__(self, name: str) -> FieldChange:
        return self.entries[name]

    def new_values(self) -> dict[str, Any]:
        """Proposed value per field, ready to write to the canonical record."""
        return {name: change.new for name, change in self.entries.items()}

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {name: change.to_dict() for name, change in self.entries.items()}

    @classmethod
    def from_entries(cls, entries: Mapping[str, FieldChange]) -> "ChangeSet":
        """Build a change set with entries in tracked-field order."""
        return cls({name: entries[name] for name in TRACKED_FIELDS if name in entries})

    @classmethod
    def from_dict(cls, raw: Mapping[str, Mapping[str, Any]]) -> "ChangeSet":
        """Load a change set that was already validated and persisted."""
        return cls.from_entries(
            {
                name: FieldChange(old=pair.get("old"), new=pair.get("new"))
                for name, pair in raw.items()
            }
        )


@dataclass(frozen=True)
class ChangeDetection:
    """Result of comparing a draft to its baseline."""

    changed_fields: list[str]
    change_set: ChangeSet


def plain_value(value: Any) -> Any:
    """Convert enum members to their JSON-friendly value."""
    if isinstance(value, ProjectVisibility):
        return value.value
    if isinstance(value, list):
        return list(value)
    return value


def _normalize(value: Any) -> Any:
    # Blank optional text counts as "no value" so "" and None never diff.
    if value == "":
        return None
    return plain_value(value)


def values_equal(a: Any, b: Any) -> bool:
    """Deep value equality. Lists compare element-wise and order-sensitively."""
    return bool(_normalize(a) == _normalize(b))


def detect_changes(baseline: Mapping[str, Any], draft: Mapping[str, Any]) -> ChangeDetection:
    """Diff a draft against the baseline.

    Only tracked fields present in the draft are compared; untracked keys in the
    draft are ignored. Pure function with no side effects.
    """
    entries: dict[str, FieldChange] = {}
    for name in TRACKED_FIELDS:
        if name not in draft:
            continue
        old = plain_value(baseline.get(name))
        new = plain_value(draft[name])
        if not values_equal(old, new):
            entries[name] = FieldChange(old=old, new=new)
    change_set = ChangeSet(entries)
    return ChangeDetection(changed_fields=change_set.changed_fields, change_set=change_set)


def draft_change_set(baseline: Mapping[str, Any], draft: Mapping[str, Any]) -> ChangeSet:
    """Every drafted field against its baseline value, unchanged fields included.

    Used for editing-session entries: when merged with earlier entries, a field
    drafted back to its baseline value cancels the earlier edit.
    """
    return ChangeSet.from_entries(
        {
            name: FieldChange(old=plain_value(baseline.get(name)), new=plain_value(value))
            for name, value in draft.items()
            if name in TRACKED_FIELDS
        }
    )


def validate_draft(draft: Mapping[str, Any]) -> dict[str, Any]:
    """Type-check every key of a draft against the tracked fields."""
    return {
        name: plain_value(get_tracked_field(name).coerce(value)) for name, value in draft.items()
    }


def apply_change_set(baseline: Mapping[str, Any], change_set: ChangeSet) -> dict[str, Any]:
    """Return a copy of the baseline with every entry's new value applied."""
    result = dict(baseline)
    for name, change in change_set.entries.items():
        result[name] = change.new
    return result


def validate_change_set(raw: Mapping[str, Any]) -> ChangeSet:
    """Parse a wire-format change set into a typed ChangeSet.

    Each entry must be ``{"old": ..., "new": ...}`` for a tracked field, both
    values must match the field's type, and old and new must differ.
    """
    entries: dict[str, FieldChange] = {}
    for name, pair in raw.items():
        tracked = get_tracked_field(name)
        if not isinstance(pair, Mapping) or "new" not in pair:
            raise ValidationError(
                f"Change for '{name}' must be an object with 'old' and 'new'",
                code=ErrorCode.INVALID_FIELD_VALUE,
                details={"field": name},
            )
        old = tracked.coerce(pair.get("old"))
        new = tracked.coerce(pair["new"])
        if values_equal(old, new):
            raise ValidationError(
                f"Change for '{name}' does not modify the field",
                code=ErrorCode.INVALID_FIELD_VALUE,
                details={"field": name},
            )
        entries[name] = FieldChange(old=plain_value(old), new=plain_value(new))
    return ChangeSet.from_entries(entries)


def merge_change_sets(change_sets: list[ChangeSet]) -> ChangeSet:
    """Fold successive change sets into one.

    The earliest observed ``old`` is kept and the latest ``new`` wins. A field
    whose final value equals its original value drops out.
    """
    merged: dict[str, FieldChange] = {}
    for change_set in change_sets:
        for name, change in change_set.entries.items():
            previous = merged.get(name)
            merged[name] = FieldChange(
                old=previous.old if previous else change.old,
                new=change.new,
            )
    return ChangeSet.from_entries(
        {name: c for name, c in merged.items() if not values_equal(c.old, c.new)}
    )


def format_value(value: Any) -> str:
    """Render a field value for a proposal description."""
    value = plain_value(value)
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) if value else "None"
    if value is None or value == "":
        return "None"
    text = str(value)
    if len(text) > TRUNCATE_AT:
        return text[:TRUNCATED_LENGTH] + "..."
    return text


def generate_title(change_set: ChangeSet) -> str:
    fields = change_set.changed_fields
    if len(fields) == 1:
        return f"Update {field_label(fields[0])}"
    return f"Update {len(fields)} project fields"


def generate_description(change_set: ChangeSet, notes: list[str] | None = None) -> str:
    lines = ["Proposed changes:", ""]
    for name, change in change_set.entries.items():
        old, new = format_value(change.old), format_value(change.new)
        lines.append(f"- {field_label(name)}: {old} → {new}")
    if notes:
        lines.extend(["", "Notes:"])
        lines.extend(f"- {note}" for note in notes)
    lines.extend(["", "Please review and merge if acceptable."])
    return "\n".join(lines)
