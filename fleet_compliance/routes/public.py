"""
Unauthenticated endpoints reached from the links in compliance e-mails.
The e-mail token is the only credential.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..ratelimit import limiter
from ..schemas.documents import UploadedDocumentResponse
from ..schemas.notifications import PublicNotificationResponse
from ..services import notification_registry, uploads
from ..services.mailer import EmailSender, get_email_sender
from ..storage.local_provider import get_storage
from ..storage.provider import StorageProvider

router = APIRouter(prefix="/public", tags=["public"])


@router.get("/notifications/{token}", response_model=PublicNotificationResponse)
@limiter.limit(settings.public_rate_limit)
def get_by_token(request: Request, token: str, db: Session = Depends(get_db)):
    n = notification_registry.get_by_token(db, token)
    return {
        "notification_type": n.notification_type,
        "entity_type": n.entity_type,
        "entity_name": notification_registry.entity_display_name(db, n.entity_type, n.entity_id),
        "certificate_name": n.certificate_name,
        "expiry_date": n.expiry_date,
        "days_until_expiry": n.days_until_expiry,
        "status": n.status,
        "active": n.status == "pending",
    }


@router.post("/notifications/{token}/documents", response_model=List[UploadedDocumentResponse])
@limiter.limit(settings.public_rate_limit)
def upload_documents(
    request: Request,
    token: str,
    files: List[UploadFile] = File(...),
    name: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    sender: EmailSender = Depends(get_email_sender),
):
    incoming = [
        uploads.IncomingFile(filename=f.filename or "", content_type=f.content_type, data=f.file.read())
        for f in files
    ]
    return uploads.upload_for_token(
        db,
        token,
        incoming,
        uploader_name=name,
        uploader_email=email,
        storage=storage,
        sender=sender,
    )
