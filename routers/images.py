from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import RedirectResponse

from utils.errors import ApiError
from utils.images import object_url


router = APIRouter(prefix="/image", tags=["images"])


@router.get("/{key:path}")
def image_proxy(key: str):
    """Resolve a `/image/<key>` link produced by proxy_image_url to the stored object."""
    if not key or ".." in key.split("/"):
        raise ApiError(400, "Invalid image key")
    return RedirectResponse(object_url(key), status_code=307)
