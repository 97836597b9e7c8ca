"""
Public document upload keyed by a notification's e-mail token.
"""
from dataclasses import dataclass
from typing import List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import UpstreamStoreError, ValidationError
from ..models.models import UploadedDocument
from ..storage.local_provider import canonical_key, get_storage
from ..storage.provider import StorageProvider
from . import admin_summary, notification_registry
from .mailer import EmailSender

log = structlog.get_logger(__name__)

ALLOWED_CONTENT_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/heic",
}


@dataclass
class IncomingFile:
    filename: str
    content_type: Optional[str]
    data: bytes


def _validate(files: List[IncomingFile]) -> None:
    if not files:
        raise ValidationError("At least one file is required")
    for f in files:
        if not f.filename:
            raise ValidationError("File name is required")
        if (f.content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
            raise ValidationError(f"Unsupported file type for {f.filename}: {f.content_type}")
        if not f.data:
            raise ValidationError(f"{f.filename} is empty")
        if len(f.data) > settings.max_upload_bytes:
            raise ValidationError(f"{f.filename} exceeds the {settings.max_upload_bytes} byte limit")


def _discard(storage: StorageProvider, keys: List[str]) -> None:
    for key in keys:
        try:
            storage.delete(key)
        except OSError as e:
            log.warning("recipient_upload_cleanup_failed", key=key, error=str(e))


def upload_for_token(
    db: Session,
    token: str,
    files: List[IncomingFile],
    *,
    uploader_name: Optional[str] = None,
    uploader_email: Optional[str] = None,
    storage: Optional[StorageProvider] = None,
    sender: Optional[EmailSender] = None,
) -> List[UploadedDocument]:
    notification = notification_registry.get_by_token(db, token)
    if notification.status != "pending":
        raise ValidationError("This link is no longer active")
    _validate(files)

    storage = storage or get_storage()
    keys = []
    rows = []
    for f in files:
        key = canonical_key(str(notification.id), f.filename)
        try:
            size = storage.save(f.data, key)
        except OSError as e:
            _discard(storage, keys)
            db.rollback()
            log.error("recipient_upload_store_failed", notification_id=str(notification.id), error=str(e))
            raise UpstreamStoreError(f"Failed to store {f.filename}")
        keys.append(key)
        row = UploadedDocument(
            file_name=f.filename,
            file_path=key,
            file_url=storage.get_download_url(key),
            content_type=f.content_type,
            size_bytes=size,
            notification_id=notification.id,
            uploaded_by_email=uploader_email or notification.recipient_email,
        )
        db.add(row)
        rows.append(row)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        _discard(storage, keys)
        log.error("recipient_upload_failed", notification_id=str(notification.id), error=str(e))
        raise UpstreamStoreError(f"Failed to record uploaded documents: {e}")
    for row in rows:
        db.refresh(row)
    log.info("recipient_documents_uploaded", notification_id=str(notification.id), files=len(rows))

    admin_summary.notify_admins(
        db,
        notification,
        "document_upload",
        recipient_name=uploader_name,
        recipient_email=uploader_email,
        details={
            "filesUploaded": len(rows),
            "fileNames": [r.file_name for r in rows],
            "uploadedFileUrls": [r.file_url for r in rows if r.file_url],
        },
        sender=sender,
    )
    return rows
