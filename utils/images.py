from __future__ import annotations

import os
import re
from typing import List, Optional
from urllib.parse import quote, unquote


def proxy_image_url(key: Optional[str]) -> Optional[str]:
    """
    Turn a stored S3 key (or full S3 URL) into the `/image/<key>` proxy path.

    Non-S3 URLs and paths that are already proxied are returned unchanged.
    """
    if not key:
        return None
    if key.startswith(("/image/", "/static/")):
        return key

    if key.startswith(("http://", "https://")):
        bucket = os.getenv("AWS_S3_BUCKET_NAME", "retail-hub-media")
        region = os.getenv("AWS_REGION", "eu-north-1")
        m = re.match(rf"https://{re.escape(bucket)}\.s3\.{re.escape(region)}\.amazonaws\.com/(.+)", key)
        if not m:
            return key
        key = m.group(1)

    return f"/image/{key.lstrip('/')}"


def proxy_image_urls(keys: Optional[List[str]]) -> List[str]:
    return [u for u in (proxy_image_url(k) for k in (keys or [])) if u]


def media_origin() -> str:
    """Where `/image/<key>` resolves: MEDIA_ORIGIN (e.g. a CDN), else the bucket's public endpoint."""
    origin = (os.getenv("MEDIA_ORIGIN") or "").strip()
    if origin:
        return origin.rstrip("/")
    bucket = os.getenv("AWS_S3_BUCKET_NAME", "retail-hub-media")
    region = os.getenv("AWS_REGION", "eu-north-1")
    return f"https://{bucket}.s3.{region}.amazonaws.com"


def object_url(key: str) -> str:
    return f"{media_origin()}/{quote(unquote(key).lstrip('/'))}"
