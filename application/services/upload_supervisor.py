"""Upload orchestration: validate, store with timeout and retry, then attach.

Each file gets its own retry loop (tenacity). One attempt is:

    create object -> stream bytes (raced against a size-scaled timeout)
    -> finalize -> verify

Any failure, including cancellation, deletes the attempt's object before the
error moves on, so no open object outlives ``upload_all``.
"""
from __future__ import annotations

import asyncio
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional, Sequence

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_incrementing

from application.ports.chunk_store import (
    ChunkStoreError,
    ChunkStorePort,
    IncompleteWriteError,
    ObjectHandle,
    ObjectMetadata,
    ObjectNotFoundError,
    StoredObject,
)
from application.services.document_binder import (
    RequestDocumentBinder,
    ensure_documents_editable,
    ensure_request_access,
)
from core.config import MIB, UploadSettings, settings
from core.logging_config import get_logger
from domain.benefit_request import BenefitRequest, DocumentReference
from domain.common.exceptions import (
    FileTooLargeException,
    NoFilesProvidedException,
    RequestNotFoundException,
    TooManyFilesException,
    UnsupportedMimeTypeException,
    UploadAttemptError,
    UploadFailedException,
    UploadStreamError,
    UploadTimeoutError,
    UploadVerificationError,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.entity import User

logger = get_logger(__name__)

StreamFactory = Callable[[], AsyncIterator[bytes]]
SleepFn = Callable[[float], Awaitable[None]]

_SOURCE_CHUNK = 64 * 1024


@dataclass(frozen=True)
class UploadPolicy:
    """Limits, timeouts and backoff (durations in seconds)."""

    max_files: int = 5
    max_file_size: int = 10 * MIB
    allowed_content_types: tuple[str, ...] = ("image/jpeg", "image/png", "application/pdf")
    max_attempts: int = 3
    base_timeout: float = 7.5
    per_mb_increment: float = 1.0
    attempt_increment: float = 0.3
    attempt_cap: float = 3.0
    backoff_base: float = 5.0

    @classmethod
    def from_settings(cls, upload: Optional[UploadSettings] = None) -> "UploadPolicy":
        u = upload or settings.upload
        return cls(
            max_files=u.max_files,
            max_file_size=u.max_file_size,
            allowed_content_types=tuple(u.allowed_content_types),
            max_attempts=u.max_attempts,
            base_timeout=u.base_timeout_ms / 1000,
            per_mb_increment=u.per_mb_increment_ms / 1000,
            attempt_increment=u.attempt_increment_ms / 1000,
            attempt_cap=u.attempt_cap_ms / 1000,
            backoff_base=u.backoff_base_ms / 1000,
        )

    def timeout_for(self, size_bytes: int, attempt: int) -> float:
        """base + whole MiB * per-MiB increment + capped per-attempt increment."""
        return (
            self.base_timeout
            + (size_bytes // MIB) * self.per_mb_increment
            + min(attempt * self.attempt_increment, self.attempt_cap)
        )

    def backoff_for(self, attempt: int) -> float:
        """Sleep after failed attempt number ``attempt``."""
        return self.backoff_base * attempt


@dataclass
class IncomingFile:
    """A file to upload. ``open`` returns a fresh byte stream for every attempt."""

    filename: str
    content_type: Optional[str]
    size: int
    open: StreamFactory

    @classmethod
    def from_bytes(cls, filename: str, content_type: Optional[str], data: bytes) -> "IncomingFile":
        async def stream() -> AsyncIterator[bytes]:
            for start in range(0, len(data), _SOURCE_CHUNK):
                yield data[start:start + _SOURCE_CHUNK]

        return cls(filename=filename, content_type=content_type, size=len(data), open=stream)


@dataclass
class UploadAttempt:
    file: IncomingFile
    attempt: int
    timeout: float
    object_id: str
    error: Optional[UploadAttemptError] = None


@dataclass(frozen=True)
class UploadProgress:
    filename: str
    object_id: str
    attempt: int
    bytes_sent: int
    total_bytes: int

    @property
    def percentage(self) -> int:
        if not self.total_bytes:
            return 100
        return int(self.bytes_sent * 100 / self.total_bytes)


@dataclass
class FailedUpload:
    filename: str
    reason: str
    message: str
    attempts: int
    orphan_cleanup_failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "reason": self.reason,
            "message": self.message,
            "attempts": self.attempts,
            "orphan_cleanup_failed": list(self.orphan_cleanup_failed),
        }


@dataclass
class UploadBatchResult:
    request: BenefitRequest
    uploaded: list[DocumentReference]
    failed: list[FailedUpload]


class UploadSupervisor:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        chunk_store: ChunkStorePort,
        binder: RequestDocumentBinder,
        *,
        policy: Optional[UploadPolicy] = None,
        sleep: SleepFn = asyncio.sleep,
        on_progress: Optional[Callable[[UploadProgress], None]] = None,
    ):
        self._uow_factory = uow_factory
        self._store = chunk_store
        self._binder = binder
        self.policy = policy or UploadPolicy.from_settings()
        self._sleep = sleep
        self._on_progress = on_progress

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    async def upload_all(
        self,
        request_id: int,
        caller: User,
        files: Sequence[IncomingFile],
    ) -> UploadBatchResult:
        await self._check_request(request_id, caller)
        self.validate_files(files)

        logger.info(
            "upload_batch_started",
            request_id=request_id,
            caller_id=caller.id,
            files=len(files),
            total_bytes=sum(f.size for f in files),
        )

        uploaded: list[DocumentReference] = []
        failed: list[FailedUpload] = []
        try:
            for incoming in files:
                outcome = await self._upload_one(request_id, caller, incoming)
                if isinstance(outcome, FailedUpload):
                    failed.append(outcome)
                else:
                    uploaded.append(outcome)

            if not uploaded:
                logger.error("upload_batch_failed", request_id=request_id, failed=len(failed))
                raise UploadFailedException([f.to_dict() for f in failed])

            request = await self._binder.attach(request_id, uploaded, caller)
        except (Exception, asyncio.CancelledError):
            await self._discard_unattached(uploaded)
            raise

        logger.info(
            "upload_batch_completed",
            request_id=request_id,
            uploaded=len(uploaded),
            failed=len(failed),
        )
        return UploadBatchResult(request=request, uploaded=uploaded, failed=failed)

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------
    async def _check_request(self, request_id: int, caller: User) -> BenefitRequest:
        async with self._uow_factory(readonly=True) as uow:
            request = await uow.request_repository.get_by_id(request_id)
        if request is None:
            raise RequestNotFoundException(request_id)
        ensure_request_access(request, caller)
        ensure_documents_editable(request, caller)
        return request

    def validate_files(self, files: Sequence[IncomingFile]) -> None:
        """Whole batch is rejected on the first invalid file; nothing is stored."""
        if not files:
            raise NoFilesProvidedException()
        if len(files) > self.policy.max_files:
            raise TooManyFilesException(len(files), self.policy.max_files)
        for f in files:
            if f.content_type not in self.policy.allowed_content_types:
                raise UnsupportedMimeTypeException(f.filename, f.content_type, list(self.policy.allowed_content_types))
            if f.size > self.policy.max_file_size:
                raise FileTooLargeException(f.filename, f.size, self.policy.max_file_size)

    # ------------------------------------------------------------------
    # Per-file retry loop
    # ------------------------------------------------------------------
    async def _upload_one(self, request_id: int, caller: User, incoming: IncomingFile):
        cleanup_failures: list[str] = []
        attempts_made = 0
        stored: Optional[StoredObject] = None

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_incrementing(start=self.policy.backoff_base, increment=self.policy.backoff_base),
            retry=retry_if_exception_type(UploadAttemptError),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts_made = attempt.retry_state.attempt_number
                    stored = await self._run_attempt(
                        request_id, caller, incoming, attempts_made, cleanup_failures
                    )
        except UploadAttemptError as e:
            logger.error(
                "upload_failed_permanently",
                request_id=request_id,
                filename=incoming.filename,
                attempts=attempts_made,
                reason=e.reason,
                error=str(e),
            )
            return FailedUpload(
                filename=incoming.filename,
                reason=e.reason,
                message=f"Upload failed after {attempts_made} attempts: {e}",
                attempts=attempts_made,
                orphan_cleanup_failed=cleanup_failures,
            )

        logger.info(
            "upload_succeeded",
            request_id=request_id,
            filename=incoming.filename,
            object_id=stored.object_id,
            size=stored.length,
            attempts=attempts_made,
        )
        return DocumentReference(
            object_id=stored.object_id,
            filename=stored.filename,
            original_name=incoming.filename,
            content_type=stored.content_type,
            size=stored.length,
            upload_date=stored.finalized_at or datetime.now(timezone.utc),
            metadata={"uploaded_by": caller.id, "attempts": attempts_made},
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "upload_attempt_failed",
            attempt=retry_state.attempt_number,
            max_attempts=self.policy.max_attempts,
            reason=getattr(error, "reason", None),
            error=str(error),
            backoff_seconds=retry_state.upcoming_sleep,
        )

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------
    async def _run_attempt(
        self,
        request_id: int,
        caller: User,
        incoming: IncomingFile,
        number: int,
        cleanup_failures: list[str],
    ) -> StoredObject:
        object_id = uuid.uuid4().hex
        ext = os.path.splitext(incoming.filename)[1].lower()
        current = UploadAttempt(
            file=incoming,
            attempt=number,
            timeout=self.policy.timeout_for(incoming.size, number),
            object_id=object_id,
        )
        logger.info(
            "upload_attempt_started",
            request_id=request_id,
            filename=incoming.filename,
            object_id=object_id,
            attempt=number,
            timeout_seconds=current.timeout,
        )

        handle: Optional[ObjectHandle] = None
        try:
            handle = await self._store.create(
                filename=f"{object_id}{ext}",
                content_type=incoming.content_type,
                metadata=ObjectMetadata(
                    request_id=request_id,
                    uploader_id=caller.id,
                    size_bytes=incoming.size,
                    mime_type=incoming.content_type,
                    original_name=incoming.filename,
                ),
                expected_length=incoming.size,
                object_id=object_id,
            )
            await asyncio.wait_for(self._transfer(handle, current), timeout=current.timeout)
            stored = await self._store.finalize(handle)
            await self._verify(stored, incoming)
            return stored
        except asyncio.CancelledError:
            logger.warning("upload_attempt_cancelled", object_id=object_id, attempt=number)
            if handle is not None:
                await self._cleanup(object_id, cleanup_failures)
            raise
        except (asyncio.TimeoutError, ChunkStoreError, UploadAttemptError, OSError) as e:
            current.error = self._as_attempt_error(e, current)
            if handle is not None:
                await self._cleanup(object_id, cleanup_failures)
            if current.error is e:
                raise
            raise current.error from e
        except BaseException:
            if handle is not None:
                await self._cleanup(object_id, cleanup_failures)
            raise

    @staticmethod
    def _as_attempt_error(exc: Exception, current: UploadAttempt) -> UploadAttemptError:
        if isinstance(exc, UploadAttemptError):
            return exc
        if isinstance(exc, asyncio.TimeoutError):
            return UploadTimeoutError(f"attempt {current.attempt} timed out after {current.timeout:.1f}s")
        if isinstance(exc, IncompleteWriteError):
            return UploadVerificationError(str(exc))
        return UploadStreamError(str(exc))

    async def _transfer(self, handle: ObjectHandle, current: UploadAttempt) -> None:
        writer = await self._store.open_writer(handle)
        try:
            async for data in current.file.open():
                await writer.write(data)
                self._report(current, writer.bytes_written)
            await writer.close()
        except BaseException:
            await writer.abort()
            raise

    def _report(self, current: UploadAttempt, sent: int) -> None:
        progress = UploadProgress(
            filename=current.file.filename,
            object_id=current.object_id,
            attempt=current.attempt,
            bytes_sent=sent,
            total_bytes=current.file.size,
        )
        logger.debug(
            "upload_progress",
            object_id=progress.object_id,
            bytes=progress.bytes_sent,
            percentage=progress.percentage,
        )
        if self._on_progress is not None:
            self._on_progress(progress)

    async def _verify(self, stored: StoredObject, incoming: IncomingFile) -> None:
        if not await self._store.exists(stored.object_id):
            raise UploadVerificationError(f"object {stored.object_id} not resolvable after finalize")
        current = await self._store.stat(stored.object_id)
        if current.length != incoming.size:
            raise UploadVerificationError(
                f"length mismatch for {stored.object_id}: expected {incoming.size}, stored {current.length}"
            )

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------
    async def _cleanup(self, object_id: str, failures: list[str]) -> None:
        try:
            await self._store.delete(object_id)
        except ObjectNotFoundError:
            logger.debug("orphan_already_gone", object_id=object_id)
        except ChunkStoreError as e:
            logger.error("orphan_cleanup_failed", object_id=object_id, error=str(e))
            failures.append(object_id)

    async def _discard_unattached(self, refs: Iterable[DocumentReference]) -> None:
        """Delete finalized objects that no request references.

        ``attach`` may have committed before the error reached us (e.g. a
        cancellation landing after the commit); those objects are kept.
        """
        refs = list(refs)
        if not refs:
            return
        try:
            async with self._uow_factory(readonly=True) as uow:
                attached = {
                    ref.object_id
                    for ref in refs
                    if await uow.request_repository.get_by_document(ref.object_id) is not None
                }
        except Exception as e:
            logger.error(
                "discard_skipped_attach_state_unknown",
                object_ids=[ref.object_id for ref in refs],
                error=str(e),
            )
            return

        failures: list[str] = []
        for ref in refs:
            if ref.object_id in attached:
                logger.warning("discard_skipped_already_attached", object_id=ref.object_id)
                continue
            await self._cleanup(ref.object_id, failures)
