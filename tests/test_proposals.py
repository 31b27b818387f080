"""Tests for the proposal endpoints and the review state machine."""

import json
from datetime import UTC, datetime
from uuid import UUID, uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import as_user
from folio.api.errors import InvalidTransitionError
from folio.db import AuditEventDB, ProjectDB, ProposalDB
from folio.models.enums import ProposalStatus
from folio.services.proposals import allowed_targets, check_transition


def proposals_url(project_id: UUID) -> str:
    return f"/api/v1/projects/{project_id}/proposals"


async def propose(
    client: AsyncClient,
    project_id: UUID,
    user_id: UUID,
    preview: dict,
    files: list | None = None,
    **form: str,
):
    return await client.post(
        proposals_url(project_id),
        data={"changesPreview": json.dumps(preview), **form},
        files=files,
        headers=as_user(user_id),
    )


async def review(client: AsyncClient, project_id: UUID, proposal_id: str, user_id, status: str):
    return await client.patch(
        f"{proposals_url(project_id)}/{proposal_id}",
        json={"status": status},
        headers=as_user(user_id),
    )


TITLE_CHANGE = {"title": {"old": "Campus Energy Dashboard", "new": "Campus Energy Monitor"}}


class TestStateMachine:
    def test_allowed_targets(self):
        assert allowed_targets(ProposalStatus.OPEN) == [
            ProposalStatus.APPROVED,
            ProposalStatus.REJECTED,
        ]
        assert allowed_targets(ProposalStatus.APPROVED) == [ProposalStatus.MERGED]
        assert allowed_targets(ProposalStatus.MERGED) == []
        assert allowed_targets(ProposalStatus.REJECTED) == []

    @pytest.mark.parametrize(
        "current,target",
        [
            (ProposalStatus.OPEN, ProposalStatus.MERGED),
            (ProposalStatus.APPROVED, ProposalStatus.REJECTED),
            (ProposalStatus.REJECTED, ProposalStatus.APPROVED),
            (ProposalStatus.MERGED, ProposalStatus.OPEN),
            (ProposalStatus.OPEN, ProposalStatus.OPEN),
        ],
    )
    def test_illegal_edges(self, current, target):
        with pytest.raises(InvalidTransitionError) as exc_info:
            check_transition(current, target)
        assert exc_info.value.details["current_status"] == str(current)


class TestCreateProposal:
    async def test_collaborator_opens_proposal(
        self, client: AsyncClient, session: AsyncSession, project, collaborator_id
    ):
        response = await propose(
            client,
            project.id,
            collaborator_id,
            TITLE_CHANGE,
            changedFields=json.dumps(["title"]),
        )
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "OPEN"
        assert data["author_id"] == str(collaborator_id)
        assert data["baseline_version"] == 1
        assert data["changed_fields"] == ["title"]
        assert data["title"] == "Update Title"
        assert "Campus Energy Dashboard → Campus Energy Monitor" in data["description"]
        assert data["upload_failures"] == []

        refreshed = await session.get(ProjectDB, project.id)
        assert refreshed.title == "Campus Energy Dashboard"
        assert refreshed.version == 1

    async def test_custom_title_and_description(
        self, client: AsyncClient, project, collaborator_id
    ):
        response = await propose(
            client,
            project.id,
            collaborator_id,
            {
                "category": {"old": "Data Science", "new": "Sustainability"},
                "tech_stack": {"old": ["Python", "React"], "new": ["Python", "Svelte"]},
            },
            title="Rebrand",
            description="Moving to the sustainability track.",
        )
        assert response.status_code == 201
        data = response.json()
        assert data["title"] == "Rebrand"
        assert data["description"] == "Moving to the sustainability track."
        assert data["changed_fields"] == ["category", "tech_stack"]

    async def test_generated_title_counts_fields(
        self, client: AsyncClient, project, collaborator_id
    ):
        response = await propose(
            client,
            project.id,
            collaborator_id,
            {
                **TITLE_CHANGE,
                "department": {"old": None, "new": "Engineering"},
            },
        )
        assert response.json()["title"] == "Update 2 project fields"

    async def test_with_files(self, client: AsyncClient, project, collaborator_id):
        response = await propose(
            client,
            project.id,
            collaborator_id,
            TITLE_CHANGE,
            files=[
                ("files", ("a.txt", b"alpha", "text/plain")),
                ("files", ("b.txt", b"beta", "text/plain")),
                ("files", ("a.txt", b"again", "text/plain")),
            ],
        )
        assert response.status_code == 201
        data = response.json()
        assert sorted(a["file_name"] for a in data["attachments"]) == ["a.txt", "b.txt"]
        assert all(a["status"] == "PENDING" for a in data["attachments"])
        assert data["upload_failures"] == [
            {
                "file_name": "a.txt",
                "code": "DUPLICATE_FILE_NAME",
                "message": "A file named 'a.txt' is already attached to this proposal",
            }
        ]

    async def test_owner_cannot_propose(self, client: AsyncClient, project, owner_id):
        response = await propose(client, project.id, owner_id, TITLE_CHANGE)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "OWNER_CANNOT_PROPOSE"

    async def test_outsider_cannot_propose(self, client: AsyncClient, project, outsider_id):
        response = await propose(client, project.id, outsider_id, TITLE_CHANGE)
        assert response.status_code == 403

    async def test_empty_change_set(self, client: AsyncClient, project, collaborator_id):
        response = await propose(client, project.id, collaborator_id, {})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "EMPTY_CHANGE_SET"

    async def test_unknown_field(self, client: AsyncClient, project, collaborator_id):
        response = await propose(
            client, project.id, collaborator_id, {"owner_id": {"old": None, "new": "x"}}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNKNOWN_FIELD"

    async def test_no_op_entry(self, client: AsyncClient, project, collaborator_id):
        response = await propose(
            client,
            project.id,
            collaborator_id,
            {"title": {"old": "Campus Energy Dashboard", "new": "Campus Energy Dashboard"}},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_FIELD_VALUE"

    async def test_stale_old_value(self, client: AsyncClient, project, collaborator_id):
        response = await propose(
            client,
            project.id,
            collaborator_id,
            {"title": {"old": "Some Older Title", "new": "Campus Energy Monitor"}},
        )
        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "VERSION_CONFLICT"
        assert error["details"]["stale_fields"] == ["title"]

    async def test_changed_fields_must_match(self, client: AsyncClient, project, collaborator_id):
        response = await propose(
            client,
            project.id,
            collaborator_id,
            TITLE_CHANGE,
            changedFields=json.dumps(["title", "category"]),
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_malformed_preview(self, client: AsyncClient, project, collaborator_id):
        response = await client.post(
            proposals_url(project.id),
            data={"changesPreview": "{not json"},
            headers=as_user(collaborator_id),
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "changesPreview"

    async def test_missing_preview(self, client: AsyncClient, project, collaborator_id):
        response = await client.post(
            proposals_url(project.id), data={"title": "x"}, headers=as_user(collaborator_id)
        )
        assert response.status_code == 422

    async def test_audited(
        self, client: AsyncClient, session: AsyncSession, project, collaborator_id
    ):
        response = await propose(client, project.id, collaborator_id, TITLE_CHANGE)
        proposal_id = UUID(response.json()["id"])

        event = (
            await session.execute(
                select(AuditEventDB).where(AuditEventDB.action == "proposal.created")
            )
        ).scalar_one()
        assert event.entity_id == proposal_id
        assert event.actor_id == collaborator_id
        assert event.payload["changed_fields"] == ["title"]


class TestReadProposals:
    async def test_list_newest_first_and_filter(
        self, client: AsyncClient, project, owner_id, collaborator_id
    ):
        first = await propose(client, project.id, collaborator_id, TITLE_CHANGE)
        second = await propose(
            client,
            project.id,
            collaborator_id,
            {"category": {"old": "Data Science", "new": "Energy"}},
        )
        await review(client, project.id, first.json()["id"], owner_id, "APPROVED")

        listed = await client.get(proposals_url(project.id), headers=as_user(owner_id))
        assert listed.status_code == 200
        data = listed.json()
        assert data["total"] == 2
        assert [p["id"] for p in data["results"]] == [second.json()["id"], first.json()["id"]]

        approved = await client.get(
            proposals_url(project.id),
            params={"status": "APPROVED"},
            headers=as_user(collaborator_id),
        )
        assert [p["id"] for p in approved.json()["results"]] == [first.json()["id"]]

    async def test_numbered_per_project(self, client: AsyncClient, project, collaborator_id):
        first = await propose(client, project.id, collaborator_id, TITLE_CHANGE)
        second = await propose(
            client,
            project.id,
            collaborator_id,
            {"category": {"old": "Data Science", "new": "Energy"}},
        )
        assert first.json()["number"] == 1
        assert second.json()["number"] == 2

    async def test_same_timestamp_lists_later_number_first(
        self, client: AsyncClient, session: AsyncSession, project, owner_id, collaborator_id
    ):
        created = []
        for new_title in ("A", "B", "C"):
            response = await propose(
                client,
                project.id,
                collaborator_id,
                {"title": {"old": "Campus Energy Dashboard", "new": new_title}},
            )
            created.append(response.json()["id"])
        await session.execute(
            update(ProposalDB)
            .where(ProposalDB.project_id == project.id)
            .values(created_at=datetime(2026, 1, 1, tzinfo=UTC))
        )

        listed = await client.get(proposals_url(project.id), headers=as_user(owner_id))
        assert [p["id"] for p in listed.json()["results"]] == created[::-1]
        assert [p["number"] for p in listed.json()["results"]] == [3, 2, 1]

    async def test_pagination(self, client: AsyncClient, project, owner_id, collaborator_id):
        for new_title in ("A", "B", "C"):
            await propose(
                client,
                project.id,
                collaborator_id,
                {"title": {"old": "Campus Energy Dashboard", "new": new_title}},
            )

        page = await client.get(
            proposals_url(project.id),
            params={"limit": 2, "offset": 2},
            headers=as_user(owner_id),
        )
        data = page.json()
        assert data["total"] == 3
        assert len(data["results"]) == 1
        assert data["results"][0]["change_set"]["title"]["new"] == "A"

    async def test_get_one(self, client: AsyncClient, project, owner_id, collaborator_id):
        created = await propose(client, project.id, collaborator_id, TITLE_CHANGE)
        response = await client.get(
            f"{proposals_url(project.id)}/{created.json()['id']}", headers=as_user(owner_id)
        )
        assert response.status_code == 200
        assert response.json()["change_set"] == TITLE_CHANGE

    async def test_get_unknown(self, client: AsyncClient, project, owner_id):
        response = await client.get(
            f"{proposals_url(project.id)}/{uuid4()}", headers=as_user(owner_id)
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "PROPOSAL_NOT_FOUND"

    async def test_outsider_cannot_list(self, client: AsyncClient, project, outsider_id):
        response = await client.get(proposals_url(project.id), headers=as_user(outsider_id))
        assert response.status_code == 403


class TestReview:
    async def test_approve_then_merge(
        self, client: AsyncClient, session: AsyncSession, project, owner_id, collaborator_id
    ):
        created = await propose(client, project.id, collaborator_id, TITLE_CHANGE)
        proposal_id = created.json()["id"]

        approved = await review(client, project.id, proposal_id, owner_id, "APPROVED")
        assert approved.status_code == 200
        assert approved.json()["status"] == "APPROVED"
        assert approved.json()["reviewed_by"] == str(owner_id)

        merged = await review(client, project.id, proposal_id, owner_id, "MERGED")
        assert merged.status_code == 200
        data = merged.json()
        assert data["status"] == "MERGED"
        assert data["merged_at"] is not None

        refreshed = await session.get(ProjectDB, project.id)
        assert refreshed.title == "Campus Energy Monitor"
        assert refreshed.version == 2

        actions = (
            (await session.execute(select(AuditEventDB.action).order_by(AuditEventDB.occurred_at)))
            .scalars()
            .all()
        )
        assert "project.updated" in actions
        assert "proposal.approved" in actions
        assert "proposal.merged" in actions

    async def test_merge_with_files(
        self, client: AsyncClient, project, owner_id, collaborator_id
    ):
        created = await propose(
            client,
            project.id,
            collaborator_id,
            TITLE_CHANGE,
            files=[("files", ("poster.pdf", b"%PDF", "application/pdf"))],
        )
        proposal_id = created.json()["id"]
        await review(client, project.id, proposal_id, owner_id, "APPROVED")
        merged = await review(client, project.id, proposal_id, owner_id, "MERGED")

        (attachment,) = merged.json()["attachments"]
        assert attachment["status"] == "PROMOTED"
        assert attachment["promoted_name"] == "poster.pdf"

        files = await client.get(f"/api/v1/projects/{project.id}/files", headers=as_user(owner_id))
        (project_file,) = files.json()
        assert project_file["file_name"] == "poster.pdf"
        assert project_file["source_proposal_id"] == proposal_id

    async def test_second_merge_conflicts(
        self, client: AsyncClient, session: AsyncSession, project, owner_id, collaborator_id
    ):
        first = await propose(client, project.id, collaborator_id, TITLE_CHANGE)
        second = await propose(
            client,
            project.id,
            collaborator_id,
            {"description": {"old": "Live view of building energy use", "new": "Real-time view"}},
        )
        for created in (first, second):
            await review(client, project.id, created.json()["id"], owner_id, "APPROVED")

        merged = await review(client, project.id, first.json()["id"], owner_id, "MERGED")
        assert merged.status_code == 200

        conflict = await review(client, project.id, second.json()["id"], owner_id, "MERGED")
        assert conflict.status_code == 409
        error = conflict.json()["error"]
        assert error["code"] == "VERSION_CONFLICT"
        assert error["details"] == {"baseline_version": 1, "current_version": 2}

        still = await client.get(
            f"{proposals_url(project.id)}/{second.json()['id']}", headers=as_user(owner_id)
        )
        assert still.json()["status"] == "APPROVED"
        refreshed = await session.get(ProjectDB, project.id)
        assert refreshed.description == "Live view of building energy use"
        assert refreshed.version == 2

    async def test_owner_edit_blocks_merge(
        self, client: AsyncClient, project, owner_id, collaborator_id
    ):
        created = await propose(client, project.id, collaborator_id, TITLE_CHANGE)
        proposal_id = created.json()["id"]
        await review(client, project.id, proposal_id, owner_id, "APPROVED")
        await client.patch(
            f"/api/v1/projects/{project.id}",
            json={"category": "Energy"},
            headers=as_user(owner_id),
        )

        response = await review(client, project.id, proposal_id, owner_id, "MERGED")
        assert response.status_code == 409

    async def test_merge_requires_approval(
        self, client: AsyncClient, project, owner_id, collaborator_id
    ):
        created = await propose(client, project.id, collaborator_id, TITLE_CHANGE)
        response = await review(client, project.id, created.json()["id"], owner_id, "MERGED")
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_TRANSITION"
        assert error["details"]["allowed"] == ["APPROVED", "REJECTED"]

    async def test_rejected_is_terminal(
        self, client: AsyncClient, project, owner_id, collaborator_id
    ):
        created = await propose(client, project.id, collaborator_id, TITLE_CHANGE)
        proposal_id = created.json()["id"]
        rejected = await review(client, project.id, proposal_id, owner_id, "REJECTED")
        assert rejected.json()["status"] == "REJECTED"

        response = await review(client, project.id, proposal_id, owner_id, "APPROVED")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TRANSITION"

    async def test_collaborator_cannot_review(
        self, client: AsyncClient, project, collaborator_id
    ):
        created = await propose(client, project.id, collaborator_id, TITLE_CHANGE)
        response = await review(
            client, project.id, created.json()["id"], collaborator_id, "APPROVED"
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    async def test_unknown_status(self, client: AsyncClient, project, owner_id, collaborator_id):
        created = await propose(client, project.id, collaborator_id, TITLE_CHANGE)
        response = await review(client, project.id, created.json()["id"], owner_id, "DONE")
        assert response.status_code == 422
