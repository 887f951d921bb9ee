"""Static UI bundle with single-page-app fallback."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from jobshot_api.core.config import Settings, get_settings

SettingsDep = Annotated[Settings, Depends(get_settings)]

router = APIRouter(tags=["ui"])


@router.get("/{full_path:path}", include_in_schema=False)
async def serve_ui(full_path: str, settings: SettingsDep) -> FileResponse:
    """Serve a bundle file, or index.html for client-side routes."""
    if full_path.startswith("api/"):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    root = settings.static_dir.resolve()
    if full_path:
        candidate = (root / full_path).resolve()
        if candidate.is_relative_to(root) and candidate.is_file():
            return FileResponse(candidate)

    index = root / "index.html"
    if not index.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="UI bundle not found")
    return FileResponse(index)
