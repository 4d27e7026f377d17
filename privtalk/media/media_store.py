import asyncio
import base64
import binascii
import io
import logging
import re
from datetime import datetime
from typing import Optional, Tuple

import cloudinary.uploader
import httpx
from cloudinary.exceptions import Error as CloudinaryError
from PIL import Image, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool

from privtalk.configs.cloudinary_config import initialize_cloudinary
from privtalk.configs.settings import (
    MEDIA_BACKEND,
    MEDIA_UPLOAD_TIMEOUT_SECONDS,
    MAX_UPLOAD_BYTES,
    PUBLIC_BASE_URL,
)

logger = logging.getLogger(__name__)

IMAGE_FOLDER = "chat_images"
VIDEO_FOLDER = "chat_videos"

DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[\w-]+=[^;,]*)*)(?P<b64>;base64)?,(?P<data>.*)$", re.S)
REMOTE_URL_RE = re.compile(r"^https?://", re.I)


class MediaUploadError(Exception):
    pass


class InvalidMediaError(MediaUploadError):
    """Payload rejected before reaching the store"""


def folder_for(kind: str) -> str:
    return IMAGE_FOLDER if kind == "image" else VIDEO_FOLDER


def decode_data_uri(value: str, max_bytes: int = MAX_UPLOAD_BYTES) -> Tuple[bytes, str]:
    """Decode a browser FileReader data URI into (bytes, mime)"""
    m = DATA_URI_RE.match(value or "")
    if not m:
        raise InvalidMediaError("payload is not a data URI")
    if not m.group("b64"):
        raise InvalidMediaError("only base64 data URIs are supported")

    try:
        data = base64.b64decode(m.group("data"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidMediaError(f"invalid base64 payload: {e}") from e

    if len(data) > max_bytes:
        raise InvalidMediaError(f"file too large (max {max_bytes // (1024 * 1024)}MB)")
    return data, m.group("mime") or "application/octet-stream"


async def fetch_remote(url: str, max_bytes: int = MAX_UPLOAD_BYTES, transport=None) -> Tuple[bytes, str]:
    """Download an http(s) attachment reference into (bytes, mime)"""
    chunks = []
    size = 0
    try:
        async with httpx.AsyncClient(timeout=MEDIA_UPLOAD_TIMEOUT_SECONDS, follow_redirects=True,
                                     transport=transport) as client:
            async with client.stream("GET", url) as resp:
                if resp.status_code >= 400:
                    raise InvalidMediaError(f"could not fetch {url}: HTTP {resp.status_code}")
                async for chunk in resp.aiter_bytes():
                    size += len(chunk)
                    if size > max_bytes:
                        raise InvalidMediaError(f"file too large (max {max_bytes // (1024 * 1024)}MB)")
                    chunks.append(chunk)
                mime = resp.headers.get("content-type", "application/octet-stream").split(";")[0].strip()
    except httpx.InvalidURL as e:
        raise InvalidMediaError(f"invalid URL: {e}") from e
    except httpx.HTTPError as e:
        logger.error(f"Error fetching {url}: {e}")
        raise MediaUploadError(f"could not fetch {url}: {e}") from e
    return b"".join(chunks), mime or "application/octet-stream"


def generate_image_thumbnail(image_data: bytes, max_size: int = 300) -> bytes:
    img = Image.open(io.BytesIO(image_data))

    # JPEG has no alpha channel
    if img.mode == 'RGBA':
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[3])
        img = background
    elif img.mode != 'RGB':
        img = img.convert('RGB')

    img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)

    output = io.BytesIO()
    img.save(output, format='JPEG', quality=85, optimize=True)
    return output.getvalue()


class MediaStore:
    """Uploads an attachment and returns its canonical URL"""

    async def upload(self, data: str, kind: str, folder: Optional[str] = None) -> str:
        folder = folder or folder_for(kind)
        try:
            return await asyncio.wait_for(self._upload(data, kind, folder), timeout=MEDIA_UPLOAD_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as e:
            raise MediaUploadError(f"{kind} upload timed out") from e

    async def _upload(self, data: str, kind: str, folder: str) -> str:
        raise NotImplementedError


class CloudinaryMediaStore(MediaStore):
    async def _upload(self, data: str, kind: str, folder: str) -> str:
        try:
            res = await run_in_threadpool(
                cloudinary.uploader.upload,
                data,
                resource_type=kind,
                folder=folder,
            )
        except CloudinaryError as e:
            logger.error(f"Error uploading {kind} to Cloudinary: {e}")
            raise MediaUploadError(str(e)) from e

        url = res.get("secure_url") or res.get("url")
        if not url:
            raise MediaUploadError("Cloudinary response has no URL")
        return url


class GridFSMediaStore(MediaStore):
    """Stores attachments in a GridFS bucket, served back by media_routes"""

    def __init__(self, bucket, base_url: str = PUBLIC_BASE_URL, transport=None):
        self.bucket = bucket
        self.base_url = base_url
        self.transport = transport

    def url_for(self, file_id) -> str:
        return f"{self.base_url}/api/files/{file_id}"

    async def _upload(self, data: str, kind: str, folder: str) -> str:
        if REMOTE_URL_RE.match(data or ""):
            raw, mime = await fetch_remote(data, transport=self.transport)
        else:
            raw, mime = decode_data_uri(data)
        metadata = {
            "mime": mime,
            "kind": kind,
            "folder": folder,
            "size": len(raw),
            "created_at": datetime.utcnow(),
        }

        if kind == "image":
            try:
                thumb = generate_image_thumbnail(raw)
            except (UnidentifiedImageError, OSError) as e:
                raise InvalidMediaError(f"invalid image: {e}") from e
            thumb_id = await self.bucket.upload_from_stream(
                f"{folder}/thumb", thumb, metadata={"mime": "image/jpeg", "kind": "thumbnail"}
            )
            metadata["thumbnail_id"] = thumb_id

        file_id = await self.bucket.upload_from_stream(folder, raw, metadata=metadata)
        logger.info(f"Stored {kind} in GridFS with ID: {file_id} ({len(raw)} bytes)")
        return self.url_for(file_id)


def build_media_store(bucket=None) -> MediaStore:
    if MEDIA_BACKEND == "cloudinary":
        initialize_cloudinary()
        return CloudinaryMediaStore()
    if MEDIA_BACKEND == "gridfs":
        if bucket is None:
            raise RuntimeError("GridFS media backend needs a bucket")
        return GridFSMediaStore(bucket)
    raise RuntimeError(f"Unknown MEDIA_BACKEND: {MEDIA_BACKEND}")
