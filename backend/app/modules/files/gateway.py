"""
Secure File Gateway - uploads and downloads under a single root directory.

Uploads:
    1. Extension AND declared MIME type must both be allow-listed
    2. Stored as "{user_id}-{unix_millis}-{32 hex}{ext}" so client names never reach disk
    3. Streamed to disk in chunks, aborted past MAX_UPLOAD_SIZE

Downloads walk a fixed sequence of stages, each with its own failure:
    UNRESOLVED -> AUTHORIZED (403) -> PATH_VALIDATED (403) -> EXISTS (404) -> SERVED

Stored paths come from the database and are treated as untrusted every time.
"""

import enum
import mimetypes
import os
import posixpath
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional
from urllib.parse import unquote

import aiofiles
import aiofiles.os
from fastapi import UploadFile
from fastapi.responses import FileResponse

from app.core.exceptions import (
    AuthorizationError,
    FileTooLargeError,
    InvalidFileTypeError,
    PathTraversalError,
    StoredFileNotFoundError,
    ValidationError,
)
from app.core.logging_config import logger
from app.core.types import Result
from app.modules.auth.principal import Principal

UPLOAD_CHUNK_SIZE = 1024 * 1024  # 1MB

# Subdirectories of the upload root that uploads may be written to
UPLOAD_CATEGORIES = frozenset({"materials", "assignments"})

_LEADING_PARENTS = re.compile(r"^(?:\.\.(?:/|$))+")
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9.\- ]")


class DownloadStage(str, enum.Enum):
    UNRESOLVED = "unresolved"
    AUTHORIZED = "authorized"
    PATH_VALIDATED = "path_validated"
    EXISTS = "exists"
    SERVED = "served"


@dataclass(frozen=True)
class StoredFileRef:
    """Pointer to an uploaded file, relative to the upload root"""
    relative_path: str
    owner_id: Optional[str] = None


@dataclass(frozen=True)
class StoredUpload:
    relative_path: str
    extension: str
    size: int


@dataclass
class DownloadTicket:
    path: Path
    download_name: str
    media_type: str
    stage: DownloadStage = DownloadStage.EXISTS


def generate_upload_filename(user_id: str, extension: str, now_ms: Optional[int] = None) -> str:
    """Server-side name for an upload: "{user_id}-{unix_millis}-{32 hex}{ext}" """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{user_id}-{now_ms}-{secrets.token_hex(16)}{extension.lower()}"


def file_extension(filename: Optional[str]) -> str:
    """Last extension, lowercased. 'report.pdf.exe' -> '.exe'"""
    if not filename:
        return ""
    return os.path.splitext(os.path.basename(filename.replace("\\", "/")))[1].lower()


def sanitize_download_name(title: Optional[str], stored_path: str) -> str:
    """
    Client-facing filename: the title reduced to [A-Za-z0-9.- ] plus the
    extension of the file actually stored.
    """
    base = re.sub(r"\s", " ", title or "")
    base = _UNSAFE_NAME_CHARS.sub("", base).strip()
    extension = file_extension(stored_path)
    if extension and base.lower().endswith(extension):
        base = base[: -len(extension)].rstrip()
    return f"{base or 'download'}{extension}"


def _decode_path(relative_path: str) -> str:
    # Undo nested percent-encoding such as %252e%252e%252f
    decoded = relative_path
    for _ in range(3):
        once = unquote(decoded)
        if once == decoded:
            break
        decoded = once
    return decoded


def resolve_stored_path(relative_path: str, root: Path) -> Result[Path]:
    """
    Map a stored relative path to an absolute path strictly inside root.

    Symlinks are resolved before the containment check, so a link pointing
    outside the root is rejected like a '../' path.
    """
    if not relative_path:
        return Result.fail(PathTraversalError())

    decoded = _decode_path(relative_path)
    if "\x00" in decoded:
        return Result.fail(PathTraversalError())

    normalized = posixpath.normpath(decoded.replace("\\", "/"))
    if _LEADING_PARENTS.match(normalized):
        # Still climbing after normalization: this path wants out of the root
        return Result.fail(PathTraversalError())
    normalized = normalized.lstrip("/")

    root_resolved = Path(root).resolve()
    candidate = (root_resolved / normalized).resolve()
    if candidate == root_resolved or not candidate.is_relative_to(root_resolved):
        return Result.fail(PathTraversalError())
    return Result.ok(candidate)


class SecureFileGateway:
    def __init__(
        self,
        root_dir: Path,
        allowed_extensions: Iterable[str],
        allowed_mime_types: Iterable[str],
        max_upload_size: int,
    ):
        self.root_dir = Path(root_dir)
        self.allowed_extensions = frozenset(ext.lower() for ext in allowed_extensions)
        self.allowed_mime_types = frozenset(mime.lower() for mime in allowed_mime_types)
        self.max_upload_size = max_upload_size

    # ==================== UPLOADS ====================

    def check_upload(self, filename: Optional[str], content_type: Optional[str]) -> Result[str]:
        """Both allow-lists must pass. Returns the normalized extension"""
        extension = file_extension(filename)
        mime = (content_type or "").split(";")[0].strip().lower()

        if extension not in self.allowed_extensions:
            return Result.fail(InvalidFileTypeError(extension or "(none)", sorted(self.allowed_extensions)))
        if mime not in self.allowed_mime_types:
            return Result.fail(InvalidFileTypeError(mime or "(none)", sorted(self.allowed_mime_types)))
        return Result.ok(extension)

    async def save_upload(self, upload: UploadFile, owner_id: str, category: str) -> Result[StoredUpload]:
        if category not in UPLOAD_CATEGORIES:
            return Result.fail(ValidationError(f"Unknown upload category '{category}'"))

        checked = self.check_upload(upload.filename, upload.content_type)
        if not checked.is_ok:
            logger.log_security_event(
                "upload_rejected",
                owner_id=owner_id,
                upload_content_type=upload.content_type,
                upload_extension=file_extension(upload.filename),
            )
            return Result.fail(checked.error)
        extension = checked.value

        stored_name = generate_upload_filename(owner_id, extension)
        relative_path = f"{category}/{stored_name}"
        target_dir = self.root_dir.resolve() / category
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / stored_name

        size = 0
        too_large = False
        try:
            async with aiofiles.open(target, "wb") as out:
                while True:
                    chunk = await upload.read(UPLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_upload_size:
                        too_large = True
                        break
                    await out.write(chunk)
        except BaseException:
            # Never leave a partial file behind
            if await aiofiles.os.path.exists(target):
                await aiofiles.os.remove(target)
            logger.warning(f"Upload from {owner_id} interrupted, partial file {relative_path} removed")
            raise

        if too_large:
            await aiofiles.os.remove(target)
            logger.warning(f"Upload from {owner_id} exceeded {self.max_upload_size} bytes, discarded")
            return Result.fail(FileTooLargeError(self.max_upload_size))

        logger.info(f"Stored upload {relative_path} ({size} bytes)")
        return Result.ok(StoredUpload(relative_path=relative_path, extension=extension, size=size))

    async def delete_stored(self, relative_path: str) -> None:
        resolved = resolve_stored_path(relative_path, self.root_dir)
        if resolved.is_ok and resolved.value.is_file():
            await aiofiles.os.remove(resolved.value)

    # ==================== DOWNLOADS ====================

    def prepare_download(
        self,
        ref: StoredFileRef,
        title: Optional[str],
        principal: Principal,
        policy: Callable[[Principal], bool],
    ) -> Result[DownloadTicket]:
        """Run the download stages up to EXISTS"""
        stage = DownloadStage.UNRESOLVED

        if not policy(principal):
            logger.log_security_event(
                "download_denied",
                principal_id=principal.id,
                principal_role=principal.role.value,
                stage=stage.value,
            )
            return Result.fail(AuthorizationError())
        stage = DownloadStage.AUTHORIZED

        resolved = resolve_stored_path(ref.relative_path, self.root_dir)
        if not resolved.is_ok:
            logger.log_security_event(
                "path_traversal_attempt",
                principal_id=principal.id,
                stored_path=repr(ref.relative_path),
                stage=stage.value,
            )
            return Result.fail(resolved.error)
        path = resolved.value
        stage = DownloadStage.PATH_VALIDATED

        if not path.is_file():
            logger.warning(f"Stored file missing on disk: {ref.relative_path!r}")
            return Result.fail(StoredFileNotFoundError())
        stage = DownloadStage.EXISTS

        media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return Result.ok(DownloadTicket(
            path=path,
            download_name=sanitize_download_name(title, path.name),
            media_type=media_type,
            stage=stage,
        ))

    def serve(self, ticket: DownloadTicket, principal: Principal) -> FileResponse:
        """Stream the file as an attachment"""
        ticket.stage = DownloadStage.SERVED
        logger.info(
            f"Serving {ticket.path.name} to user {principal.id}",
            extra={"event_type": "file_download", "download_name": ticket.download_name},
        )
        return FileResponse(
            ticket.path,
            media_type=ticket.media_type,
            headers={"Content-Disposition": f'attachment; filename="{ticket.download_name}"'},
        )
