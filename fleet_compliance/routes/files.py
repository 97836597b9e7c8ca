from mimetypes import guess_type

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from ..auth.security import get_current_user
from ..errors import NotFound
from ..storage.local_provider import LocalStorageProvider, get_storage

router = APIRouter(prefix="/files", tags=["files"])


@router.get("/local/{file_path:path}")
def serve_local_file(
    file_path: str,
    storage: LocalStorageProvider = Depends(get_storage),
    _=Depends(get_current_user),
):
    """Uploaded documents stored on the local filesystem"""
    path = storage._get_path(file_path)
    base = (storage.base_dir / "uploads").resolve()
    resolved = path.resolve()
    # keys never escape the uploads root
    if base not in resolved.parents or not resolved.is_file():
        raise NotFound("File not found")
    media_type = guess_type(str(resolved))[0] or "application/octet-stream"
    return FileResponse(path=str(resolved), media_type=media_type, filename=resolved.name)
