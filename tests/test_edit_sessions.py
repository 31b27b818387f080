"""Tests for editing sessions: accumulate changes, then submit one proposal."""

from uuid import UUID, uuid4

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from httpx import AsyncClient

from conftest import as_user
from folio.config import settings
from folio.db import ProjectMemberDB
from folio.services.aggregator import EditingSessionRegistry

pytestmark = pytest.mark.asyncio


def sessions_url(project_id: UUID) -> str:
    return f"/api/v1/projects/{project_id}/edit-sessions"


async def open_session(client: AsyncClient, project_id: UUID, user_id: UUID) -> str:
    response = await client.post(sessions_url(project_id), headers=as_user(user_id))
    assert response.status_code == 201
    return response.json()["session_id"]


async def record_details(client, project_id, session_id, user_id, fields: dict):
    return await client.post(
        f"{sessions_url(project_id)}/{session_id}/details",
        json={"fields": fields},
        headers=as_user(user_id),
    )


async def submit(client, project_id, session_id, user_id, **body):
    return await client.post(
        f"{sessions_url(project_id)}/{session_id}/submit",
        json=body,
        headers=as_user(user_id),
    )


class TestEditingSession:
    async def test_full_flow(
        self, client: AsyncClient, registry: EditingSessionRegistry, project, collaborator_id
    ):
        sid = await open_session(client, project.id, collaborator_id)
        base = f"{sessions_url(project.id)}/{sid}"

        details = await record_details(
            client, project.id, sid, collaborator_id, {"title": "Energy Monitor"}
        )
        assert details.status_code == 200
        assert details.json()["changed_fields"] == ["title"]

        await record_details(
            client,
            project.id,
            sid,
            collaborator_id,
            {"title": "Campus Energy Monitor", "department": "Facilities"},
        )
        await client.post(
            f"{base}/files",
            files=[("files", ("readings.csv", b"kwh\n12\n", "text/csv"))],
            headers=as_user(collaborator_id),
        )
        await client.post(
            f"{base}/comments",
            json={"body": "  Renamed to match the poster.  "},
            headers=as_user(collaborator_id),
        )

        summary = (await client.get(base, headers=as_user(collaborator_id))).json()
        assert summary["pending_kinds"] == ["comments", "details", "files"]
        assert summary["change_set"] == {
            "title": {"old": "Campus Energy Dashboard", "new": "Campus Energy Monitor"},
            "department": {"old": None, "new": "Facilities"},
        }
        assert summary["files"] == ["readings.csv"]
        assert summary["comments"] == ["Renamed to match the poster."]

        response = await submit(client, project.id, sid, collaborator_id)
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "OPEN"
        assert data["title"] == "Update 2 project fields"
        assert data["changed_fields"] == ["title", "department"]
        assert [a["file_name"] for a in data["attachments"]] == ["readings.csv"]
        assert "Notes:\n- Renamed to match the poster." in data["description"]

        cleared = (await client.get(base, headers=as_user(collaborator_id))).json()
        assert cleared["pending_kinds"] == []
        assert cleared["change_set"] == {}
        assert len(registry) == 1

    async def test_revert_cancels_earlier_edit(
        self, client: AsyncClient, project, collaborator_id
    ):
        sid = await open_session(client, project.id, collaborator_id)
        await record_details(client, project.id, sid, collaborator_id, {"category": "Energy"})
        reverted = await record_details(
            client, project.id, sid, collaborator_id, {"category": "Data Science"}
        )
        assert reverted.json()["changed_fields"] == []

        response = await submit(client, project.id, sid, collaborator_id)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "EMPTY_CHANGE_SET"

    async def test_custom_title_and_description(
        self, client: AsyncClient, project, collaborator_id
    ):
        sid = await open_session(client, project.id, collaborator_id)
        await record_details(client, project.id, sid, collaborator_id, {"tech_stack": ["Go"]})
        await client.post(
            f"{sessions_url(project.id)}/{sid}/comments",
            json={"body": "Rewrite done"},
            headers=as_user(collaborator_id),
        )

        response = await submit(
            client, project.id, sid, collaborator_id, title="Port to Go", description="New backend"
        )
        data = response.json()
        assert data["title"] == "Port to Go"
        assert data["description"] == "New backend\n\nNotes:\n- Rewrite done"

    async def test_failed_submit_keeps_contents(
        self, client: AsyncClient, project, owner_id, collaborator_id
    ):
        sid = await open_session(client, project.id, collaborator_id)
        await record_details(client, project.id, sid, collaborator_id, {"title": "Mine"})
        await client.patch(
            f"/api/v1/projects/{project.id}",
            json={"title": "Owner's title"},
            headers=as_user(owner_id),
        )

        response = await submit(client, project.id, sid, collaborator_id)
        assert response.status_code == 409

        kept = await client.get(
            f"{sessions_url(project.id)}/{sid}", headers=as_user(collaborator_id)
        )
        assert kept.json()["change_set"]["title"]["new"] == "Mine"

    async def test_unknown_field_rejected(self, client: AsyncClient, project, collaborator_id):
        sid = await open_session(client, project.id, collaborator_id)
        response = await record_details(client, project.id, sid, collaborator_id, {"stars": 5})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNKNOWN_FIELD"

    async def test_empty_details_rejected(self, client: AsyncClient, project, collaborator_id):
        sid = await open_session(client, project.id, collaborator_id)
        response = await record_details(client, project.id, sid, collaborator_id, {})
        assert response.status_code == 400

    async def test_blank_comment_rejected(self, client: AsyncClient, project, collaborator_id):
        sid = await open_session(client, project.id, collaborator_id)
        response = await client.post(
            f"{sessions_url(project.id)}/{sid}/comments",
            json={"body": "   "},
            headers=as_user(collaborator_id),
        )
        assert response.status_code == 400

    async def test_discard(
        self, client: AsyncClient, registry: EditingSessionRegistry, project, collaborator_id
    ):
        sid = await open_session(client, project.id, collaborator_id)
        response = await client.delete(
            f"{sessions_url(project.id)}/{sid}", headers=as_user(collaborator_id)
        )
        assert response.status_code == 204
        assert len(registry) == 0

        gone = await client.get(
            f"{sessions_url(project.id)}/{sid}", headers=as_user(collaborator_id)
        )
        assert gone.status_code == 404
        assert gone.json()["error"]["code"] == "EDIT_SESSION_NOT_FOUND"

    async def test_owner_cannot_open(self, client: AsyncClient, project, owner_id):
        response = await client.post(sessions_url(project.id), headers=as_user(owner_id))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "OWNER_CANNOT_PROPOSE"

    async def test_outsider_cannot_open(self, client: AsyncClient, project, outsider_id):
        response = await client.post(sessions_url(project.id), headers=as_user(outsider_id))
        assert response.status_code == 403

    async def test_other_users_session_is_hidden(
        self, client: AsyncClient, project, owner_id, collaborator_id
    ):
        sid = await open_session(client, project.id, collaborator_id)
        other = uuid4()
        await client.post(
            f"/api/v1/projects/{project.id}/members",
            json={"user_id": str(other)},
            headers=as_user(owner_id),
        )

        response = await client.get(f"{sessions_url(project.id)}/{sid}", headers=as_user(other))
        assert response.status_code == 404

    async def test_commit_failure_keeps_contents(
        self,
        client: AsyncClient,
        session: AsyncSession,
        monkeypatch,
        project,
        collaborator_id,
    ):
        await session.commit()
        sid = await open_session(client, project.id, collaborator_id)
        await record_details(client, project.id, sid, collaborator_id, {"title": "Mine"})

        async def failing_commit() -> None:
            raise SQLAlchemyError("commit failed")

        monkeypatch.setattr(session, "commit", failing_commit)
        response = await submit(client, project.id, sid, collaborator_id)
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "STORAGE_ERROR"

        kept = await client.get(
            f"{sessions_url(project.id)}/{sid}", headers=as_user(collaborator_id)
        )
        assert kept.json()["change_set"]["title"]["new"] == "Mine"


class TestRecordChecks:
    async def test_oversized_file_rejected(
        self, client: AsyncClient, monkeypatch, project, collaborator_id
    ):
        monkeypatch.setattr(settings, "max_upload_size_bytes", 4)
        sid = await open_session(client, project.id, collaborator_id)
        base = f"{sessions_url(project.id)}/{sid}"

        response = await client.post(
            f"{base}/files",
            files=[("files", ("big.bin", b"too many bytes", "application/octet-stream"))],
            headers=as_user(collaborator_id),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "FILE_TOO_LARGE"

        summary = (await client.get(base, headers=as_user(collaborator_id))).json()
        assert summary["files"] == []

    async def test_file_count_limit(
        self, client: AsyncClient, monkeypatch, project, collaborator_id
    ):
        monkeypatch.setattr(settings, "max_files_per_proposal", 1)
        sid = await open_session(client, project.id, collaborator_id)
        base = f"{sessions_url(project.id)}/{sid}"

        response = await client.post(
            f"{base}/files",
            files=[
                ("files", ("a.txt", b"a", "text/plain")),
                ("files", ("b.txt", b"b", "text/plain")),
            ],
            headers=as_user(collaborator_id),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "TOO_MANY_FILES"

        summary = (await client.get(base, headers=as_user(collaborator_id))).json()
        assert summary["files"] == []

        accepted = await client.post(
            f"{base}/files",
            files=[("files", ("a.txt", b"a", "text/plain"))],
            headers=as_user(collaborator_id),
        )
        assert accepted.status_code == 200
        assert accepted.json()["files"] == ["a.txt"]

    async def test_removed_member_cannot_record(
        self, client: AsyncClient, session: AsyncSession, project, collaborator_id
    ):
        sid = await open_session(client, project.id, collaborator_id)
        base = f"{sessions_url(project.id)}/{sid}"
        await session.execute(
            delete(ProjectMemberDB).where(ProjectMemberDB.user_id == collaborator_id)
        )

        files = await client.post(
            f"{base}/files",
            files=[("files", ("a.txt", b"a", "text/plain"))],
            headers=as_user(collaborator_id),
        )
        assert files.status_code == 403

        comment = await client.post(
            f"{base}/comments", json={"body": "still here"}, headers=as_user(collaborator_id)
        )
        assert comment.status_code == 403
