"""Files that travel with a proposal.

Attachments are bound to one proposal and kept out of the project's permanent
file set until the proposal merges. Each file in a batch succeeds or fails on its
own; a failure is reported as an UploadError and never aborts its siblings.

Promotion collision policy: when a promoted file's name already exists in the
permanent set, it is renamed with a numeric suffix (``report.pdf`` becomes
``report (1).pdf``, then ``report (2).pdf``). The chosen name is recorded on the
attachment as ``promoted_name``.
"""

import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from folio.api.errors import ErrorCode, StorageError, UploadError
from folio.config import settings
from folio.db.models import ProjectFileDB, ProposalAttachmentDB, ProposalDB
from folio.models.enums import AttachmentStatus
from folio.services.file_store import FileStore, FileStoreError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class UploadBlob:
    """An uploaded file held in memory until it is stored."""

    file_name: str
    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class AttachmentBatch:
    """Outcome of attaching several files to one proposal."""

    attached: list[ProposalAttachmentDB] = field(default_factory=list)
    failures: list[UploadError] = field(default_factory=list)


def sanitize_file_name(file_name: str | None) -> str:
    """Strip directory components from a client-supplied file name."""
    if not file_name:
        return ""
    return PurePath(file_name.replace("\\", "/")).name.strip()


def unique_file_name(existing: set[str], file_name: str) -> str:
    """Return ``file_name``, or the first ``stem (N).suffix`` not in ``existing``."""
    if file_name not in existing:
        return file_name
    path = PurePath(file_name)
    suffix = "".join(path.suffixes)
    stem = file_name[: len(file_name) - len(suffix)] if suffix else file_name
    n = 1
    while f"{stem} ({n}){suffix}" in existing:
        n += 1
    return f"{stem} ({n}){suffix}"


async def permanent_file_names(session: AsyncSession, project_id: UUID) -> set[str]:
    result = await session.execute(
        select(ProjectFileDB.file_name).where(ProjectFileDB.project_id == project_id)
    )
    return set(result.scalars().all())


def check_upload(blob: UploadBlob) -> str:
    """Validate an upload and return its sanitized name. Raises UploadError."""
    name = sanitize_file_name(blob.file_name)
    if not name:
        raise UploadError(
            blob.file_name or "", "File name is required", code=ErrorCode.INVALID_FILE_NAME
        )
    if blob.size > settings.max_upload_size_bytes:
        raise UploadError(
            name,
            f"File exceeds the maximum size of {settings.max_upload_size_bytes} bytes",
            code=ErrorCode.FILE_TOO_LARGE,
        )
    return name


async def add_permanent_file(
    session: AsyncSession,
    store: FileStore,
    project_id: UUID,
    blob: UploadBlob,
    uploaded_by: UUID,
) -> ProjectFileDB:
    """Store an owner upload straight into the project's permanent files."""
    name = check_upload(blob)
    existing = await permanent_file_names(session, project_id)
    final_name = unique_file_name(existing, name)
    try:
        staged = await store.store(blob.data)
        key = await store.promote(staged.key, project_id)
        await store.discard(staged.key)
    except FileStoreError as e:
        raise UploadError(name, str(e)) from e

    project_file = ProjectFileDB(
        project_id=project_id,
        file_name=final_name,
        content_type=blob.content_type or DEFAULT_CONTENT_TYPE,
        size=blob.size,
        storage_key=key,
        uploaded_by=uploaded_by,
    )
    session.add(project_file)
    await session.flush()
    await session.refresh(project_file)
    return project_file


class FileAttachmentBinder:
    """Binds uploads to a proposal and resolves them when the proposal closes."""

    def __init__(self, session: AsyncSession, store: FileStore):
        self.session = session
        self.store = store

    async def list_for_proposal(
        self,
        proposal_id: UUID,
        status: AttachmentStatus | None = None,
    ) -> list[ProposalAttachmentDB]:
        query = select(ProposalAttachmentDB).where(
            ProposalAttachmentDB.proposal_id == proposal_id
        )
        if status is not None:
            query = query.where(ProposalAttachmentDB.status == status)
        query = query.order_by(ProposalAttachmentDB.uploaded_at, ProposalAttachmentDB.file_name)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def attach(self, proposal: ProposalDB, blob: UploadBlob) -> ProposalAttachmentDB:
        """Store one blob scoped to the proposal. Raises UploadError on failure."""
        name = check_upload(blob)
        existing = {a.file_name for a in await self.list_for_proposal(proposal.id)}
        if name in existing:
            raise UploadError(
                name,
                f"A file named '{name}' is already attached to this proposal",
                code=ErrorCode.DUPLICATE_FILE_NAME,
            )

        try:
            stored = await self.store.store(blob.data)
        except FileStoreError as e:
            raise UploadError(name, str(e)) from e

        attachment = ProposalAttachmentDB(
            proposal_id=proposal.id,
            file_name=name,
            content_type=blob.content_type or DEFAULT_CONTENT_TYPE,
            size=stored.size,
            storage_key=stored.key,
            status=AttachmentStatus.PENDING,
        )
        self.session.add(attachment)
        await self.session.flush()
        await self.session.refresh(attachment)
        logger.info("Attached %s to proposal %s", name, proposal.id)
        return attachment

    async def attach_many(self, proposal: ProposalDB, blobs: list[UploadBlob]) -> AttachmentBatch:
        """Attach each blob independently, collecting per-file failures."""
        batch = AttachmentBatch()
        for index, blob in enumerate(blobs):
            if index >= settings.max_files_per_proposal:
                batch.failures.append(
                    UploadError(
                        sanitize_file_name(blob.file_name),
                        f"A proposal can carry at most {settings.max_files_per_proposal} files",
                        code=ErrorCode.TOO_MANY_FILES,
                    )
                )
                continue
            try:
                batch.attached.append(await self.attach(proposal, blob))
            except UploadError as e:
                logger.warning(
                    "Upload of %s to proposal %s failed: %s", e.file_name, proposal.id, e.message
                )
                batch.failures.append(e)
        return batch

    async def promote(self, proposal: ProposalDB, actor_id: UUID) -> list[ProjectFileDB]:
        """Copy every pending attachment into the project's permanent files.

        Staged blobs are left in place; call release_staged() once the merge has
        been recorded.
        """
        pending = await self.list_for_proposal(proposal.id, AttachmentStatus.PENDING)
        if not pending:
            return []

        # All blobs are copied before any row is written.
        existing = await permanent_file_names(self.session, proposal.project_id)
        copied: list[tuple[ProposalAttachmentDB, str, str]] = []
        for attachment in pending:
            final_name = unique_file_name(existing, attachment.file_name)
            existing.add(final_name)
            try:
                key = await self.store.promote(attachment.storage_key, proposal.project_id)
            except FileStoreError as e:
                await self.release_blobs([k for _, _, k in copied])
                raise StorageError(
                    f"Could not promote '{attachment.file_name}'; nothing was merged",
                    details={"proposal_id": str(proposal.id), "file_name": attachment.file_name},
                ) from e
            copied.append((attachment, final_name, key))

        promoted: list[ProjectFileDB] = []
        for attachment, final_name, key in copied:
            project_file = ProjectFileDB(
                project_id=proposal.project_id,
                file_name=final_name,
                content_type=attachment.content_type,
                size=attachment.size,
                storage_key=key,
                uploaded_by=proposal.author_id,
                source_proposal_id=proposal.id,
            )
            self.session.add(project_file)
            attachment.status = AttachmentStatus.PROMOTED
            attachment.promoted_name = final_name
            promoted.append(project_file)
            if final_name != attachment.file_name:
                logger.info(
                    "Renamed %s to %s while promoting proposal %s",
                    attachment.file_name,
                    final_name,
                    proposal.id,
                )

        await self.session.flush()
        logger.info(
            "Promoted %d file(s) from proposal %s into project %s (merged by %s)",
            len(promoted),
            proposal.id,
            proposal.project_id,
            actor_id,
        )
        return promoted

    async def release_blobs(self, keys: list[str]) -> None:
        """Discard blobs by key. Best effort."""
        for key in keys:
            try:
                await self.store.discard(key)
            except FileStoreError as e:
                logger.warning("Could not release blob %s: %s", key, e)

    async def release_staged(self, proposal_id: UUID) -> None:
        """Drop the staged copies of promoted attachments. Best effort."""
        for attachment in await self.list_for_proposal(proposal_id, AttachmentStatus.PROMOTED):
            try:
                await self.store.discard(attachment.storage_key)
            except FileStoreError as e:
                logger.warning("Could not release staged blob %s: %s", attachment.storage_key, e)

    async def discard(self, proposal: ProposalDB) -> int:
        """Release every pending attachment of a rejected proposal."""
        pending = await self.list_for_proposal(proposal.id, AttachmentStatus.PENDING)
        for attachment in pending:
            try:
                await self.store.discard(attachment.storage_key)
            except FileStoreError as e:
                logger.warning("Could not discard blob %s: %s", attachment.storage_key, e)
            attachment.status = AttachmentStatus.DISCARDED
        await self.session.flush()
        if pending:
            logger.info("Discarded %d file(s) from proposal %s", len(pending), proposal.id)
        return len(pending)
