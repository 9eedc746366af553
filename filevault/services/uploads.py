import logging
import uuid
from dataclasses import dataclass, field
from typing import BinaryIO

from fastapi import Request
from pydantic import ValidationError
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.concurrency import run_in_threadpool

from filevault.models.file import File
from filevault.repositories.files import FileRepository
from filevault.schemas.file import FileMetadata
from filevault.storage.local import LocalStorage

log = logging.getLogger(__name__)

FILE_FIELD = "file"
METADATA_FIELD = "metadata"
METADATA_LIMIT = 64 * 1024


class UploadError(Exception):
    pass


class InvalidUpload(UploadError):
    pass


class UploadTooLarge(UploadError):
    pass


@dataclass
class _Part:
    name: str = ""
    header_field: bytes = b""
    header_value: bytes = b""
    headers: dict[bytes, bytes] = field(default_factory=dict)


@dataclass
class _UploadState:
    part: _Part = field(default_factory=_Part)
    file_id: str | None = None
    key: str | None = None
    handle: BinaryIO | None = None
    size: int = 0
    metadata_seen: bool = False
    metadata_buf: bytearray = field(default_factory=bytearray)
    metadata: FileMetadata | None = None


@dataclass(frozen=True)
class ReceivedUpload:
    file_id: str
    storage_path: str
    size_bytes: int
    metadata: FileMetadata


def _boundary(content_type: str | None) -> bytes:
    if not content_type:
        raise InvalidUpload("missing content type")
    media_type, options = parse_options_header(content_type)
    if media_type.lower() != b"multipart/form-data" or not options.get(b"boundary"):
        raise InvalidUpload("expected multipart/form-data")
    return options[b"boundary"]


def _is_encrypted(metadata: FileMetadata) -> bool:
    algo = (metadata.client_encryption_algo or "").strip().lower()
    return algo not in ("", "none")


class UploadPipeline:
    """
    Stream a multipart upload to the blob store and record it.

    The ``file`` part is written to disk chunk by chunk as the request body
    arrives; ``max_bytes`` is enforced on the running total. The row is only
    inserted once the blob has been flushed to disk.
    """

    def __init__(self, storage: LocalStorage, max_bytes: int):
        self.storage = storage
        self.max_bytes = max_bytes

    async def store(self, request: Request, owner_id: str, files: FileRepository) -> File:
        received = await self.receive(request, owner_id)
        metadata = received.metadata

        if metadata.size_bytes is not None and metadata.size_bytes != received.size_bytes:
            log.warning(
                "Declared size %s differs from received %s for file %s",
                metadata.size_bytes, received.size_bytes, received.file_id,
            )

        db_file = File(
            id=received.file_id,
            user_id=owner_id,
            original_name=metadata.original_name,
            mime_type=metadata.mime_type,
            size_bytes=received.size_bytes,
            is_encrypted=_is_encrypted(metadata),
            storage_path=received.storage_path,
        )
        try:
            await files.create(db_file)
        except Exception:
            log.exception("Failed to record upload %s", received.file_id)
            self.storage.discard(received.storage_path)
            raise

        log.info("Stored file %s (%d bytes) for user %s", db_file.id, db_file.size_bytes, owner_id)
        return db_file

    async def receive(self, request: Request, owner_id: str) -> ReceivedUpload:
        boundary = _boundary(request.headers.get("content-type"))
        events: list[tuple[str, bytes]] = []

        def on_part_begin() -> None:
            events.append(("part_begin", b""))

        def on_part_data(data: bytes, start: int, end: int) -> None:
            events.append(("part_data", data[start:end]))

        def on_part_end() -> None:
            events.append(("part_end", b""))

        def on_header_field(data: bytes, start: int, end: int) -> None:
            events.append(("header_field", data[start:end]))

        def on_header_value(data: bytes, start: int, end: int) -> None:
            events.append(("header_value", data[start:end]))

        def on_header_end() -> None:
            events.append(("header_end", b""))

        def on_headers_finished() -> None:
            events.append(("headers_finished", b""))

        callbacks = {
            "on_part_begin": on_part_begin,
            "on_part_data": on_part_data,
            "on_part_end": on_part_end,
            "on_header_field": on_header_field,
            "on_header_value": on_header_value,
            "on_header_end": on_header_end,
            "on_headers_finished": on_headers_finished,
        }
        parser = MultipartParser(boundary, callbacks)
        state = _UploadState()

        try:
            try:
                async for chunk in request.stream():
                    parser.write(chunk)
                    await self._consume(events, state, owner_id)
                    events.clear()
                parser.finalize()
                await self._consume(events, state, owner_id)
            except MultipartParseError as e:
                raise InvalidUpload("malformed multipart body") from e

            if state.handle is not None:
                raise InvalidUpload("file part was not terminated")
            if state.key is None:
                raise InvalidUpload("missing file part")
            if state.metadata is None:
                raise InvalidUpload("missing metadata part")
        except BaseException:
            self._abort(state)
            raise

        return ReceivedUpload(
            file_id=state.file_id,
            storage_path=state.key,
            size_bytes=state.size,
            metadata=state.metadata,
        )

    async def _consume(self, events: list[tuple[str, bytes]], state: _UploadState, owner_id: str) -> None:
        for kind, data in events:
            part = state.part
            if kind == "part_begin":
                state.part = _Part()
            elif kind == "header_field":
                part.header_field += data
            elif kind == "header_value":
                part.header_value += data
            elif kind == "header_end":
                part.headers[part.header_field.lower()] = part.header_value
                part.header_field = b""
                part.header_value = b""
            elif kind == "headers_finished":
                _, options = parse_options_header(part.headers.get(b"content-disposition", b""))
                part.name = options.get(b"name", b"").decode("latin-1")
                if part.name == FILE_FIELD:
                    await self._open_blob(state, owner_id)
                elif part.name == METADATA_FIELD:
                    if state.metadata_seen:
                        raise InvalidUpload("multiple metadata parts")
                    state.metadata_seen = True
            elif kind == "part_data":
                if part.name == FILE_FIELD:
                    await self._write(state, data)
                elif part.name == METADATA_FIELD:
                    state.metadata_buf += data
                    if len(state.metadata_buf) > METADATA_LIMIT:
                        raise InvalidUpload("metadata too large")
            elif kind == "part_end":
                if part.name == FILE_FIELD:
                    handle, state.handle = state.handle, None
                    await run_in_threadpool(self.storage.commit, handle)
                elif part.name == METADATA_FIELD:
                    state.metadata = self._parse_metadata(bytes(state.metadata_buf))

    async def _open_blob(self, state: _UploadState, owner_id: str) -> None:
        if state.key is not None:
            raise InvalidUpload("multiple file parts")
        file_id = str(uuid.uuid4())
        key = self.storage.key_for(owner_id, file_id)
        state.handle = await run_in_threadpool(self.storage.open_for_write, key)
        state.file_id = file_id
        state.key = key

    async def _write(self, state: _UploadState, data: bytes) -> None:
        state.size += len(data)
        if state.size > self.max_bytes:
            raise UploadTooLarge(f"upload exceeds {self.max_bytes} bytes")
        await run_in_threadpool(state.handle.write, data)

    @staticmethod
    def _parse_metadata(raw: bytes) -> FileMetadata:
        try:
            return FileMetadata.model_validate_json(raw)
        except ValidationError as e:
            raise InvalidUpload("invalid metadata") from e

    def _abort(self, state: _UploadState) -> None:
        if state.handle is not None:
            state.handle.close()
            state.handle = None
        if state.key is not None:
            self.storage.discard(state.key)
