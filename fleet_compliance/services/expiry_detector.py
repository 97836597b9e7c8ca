"""
On-demand trigger for the database procedure that creates certificate expiry
notifications. The procedure itself ships with the notifications migration.
"""
import re

import structlog
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConfigurationError, UpstreamStoreError

log = structlog.get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

MIGRATION_HINT = (
    "Notification function not found. Please apply the notifications migration "
    "that creates {name}()."
)


def _function_name() -> str:
    name = settings.expiry_function_name
    if not _IDENTIFIER.match(name or ""):
        raise ConfigurationError(f"Invalid expiry function name: {name!r}")
    return name


def _is_missing_function(exc: DBAPIError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return "no such function" in message or ("function" in message and "does not exist" in message)


def _call(db: Session, name: str) -> None:
    db.execute(text(f"SELECT {name}()"))
    db.commit()


def refresh(db: Session) -> dict:
    name = _function_name()
    try:
        _call(db, name)
    except DBAPIError as e:
        db.rollback()
        if _is_missing_function(e):
            log.error("expiry_function_missing", function=name)
            raise ConfigurationError(MIGRATION_HINT.format(name=name), details={"function": name})
        log.error("expiry_refresh_failed", function=name, error=str(e.orig))
        raise UpstreamStoreError(f"Failed to refresh notifications: {e.orig}")
    log.info("expiry_refresh_completed", function=name)
    return {"success": True, "message": "Notifications refreshed successfully"}


def check(db: Session) -> dict:
    """Report whether the procedure exists and runs; a missing one is not an error here."""
    name = _function_name()
    try:
        _call(db, name)
    except DBAPIError as e:
        db.rollback()
        if _is_missing_function(e):
            return {
                "exists": False,
                "working": False,
                "function": name,
                "message": MIGRATION_HINT.format(name=name),
            }
        return {"exists": True, "working": False, "function": name, "message": str(e.orig)}
    return {"exists": True, "working": True, "function": name, "message": "Function exists and is working"}
