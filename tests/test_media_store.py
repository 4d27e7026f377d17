from __future__ import annotations

import asyncio
import base64
import io

import cloudinary.uploader
import httpx
import pytest
from bson import ObjectId
from cloudinary.exceptions import Error as CloudinaryError
from PIL import Image

from privtalk.media.media_store import (
    CloudinaryMediaStore,
    GridFSMediaStore,
    InvalidMediaError,
    MediaUploadError,
    decode_data_uri,
    fetch_remote,
    generate_image_thumbnail,
)


def _png_bytes(size=(800, 400), mode="RGBA") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, (200, 30, 30, 255) if mode == "RGBA" else (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


def _data_uri(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"


class RecordingBucket:
    def __init__(self):
        self.uploads = []

    async def upload_from_stream(self, filename, source, metadata=None):
        file_id = ObjectId()
        self.uploads.append((file_id, filename, source, metadata))
        return file_id


def test_decode_data_uri():
    data, mime = decode_data_uri("data:video/mp4;base64," + base64.b64encode(b"\x00\x01video").decode())
    assert data == b"\x00\x01video"
    assert mime == "video/mp4"


@pytest.mark.parametrize("value", ["https://example.com/cat.png", "data:image/png,notbase64", "data:image/png;base64,@@@"])
def test_decode_rejects_malformed_payloads(value):
    with pytest.raises(InvalidMediaError):
        decode_data_uri(value)


def test_decode_enforces_size_limit():
    with pytest.raises(InvalidMediaError, match="too large"):
        decode_data_uri(_data_uri(b"x" * 2048), max_bytes=1024)


def test_thumbnail_fits_bounding_box():
    thumb = Image.open(io.BytesIO(generate_image_thumbnail(_png_bytes((800, 400)))))
    assert thumb.format == "JPEG"
    assert thumb.size == (300, 150)


def test_gridfs_image_upload_stores_original_and_thumbnail():
    bucket = RecordingBucket()
    store = GridFSMediaStore(bucket, base_url="https://chat.example")
    raw = _png_bytes()

    url = asyncio.run(store.upload(_data_uri(raw), "image"))

    assert len(bucket.uploads) == 2
    thumb_id = bucket.uploads[0][0]
    file_id, filename, source, metadata = bucket.uploads[1]
    assert url == f"https://chat.example/api/files/{file_id}"
    assert filename == "chat_images"
    assert source == raw
    assert metadata["mime"] == "image/png"
    assert metadata["thumbnail_id"] == thumb_id
    assert metadata["size"] == len(raw)


def test_gridfs_video_upload_has_no_thumbnail():
    bucket = RecordingBucket()
    store = GridFSMediaStore(bucket, base_url="")
    url = asyncio.run(store.upload(_data_uri(b"fake-mp4", "video/mp4"), "video"))

    assert len(bucket.uploads) == 1
    assert url.startswith("/api/files/")
    assert "thumbnail_id" not in bucket.uploads[0][3]


def test_gridfs_rejects_undecodable_image():
    store = GridFSMediaStore(RecordingBucket())
    with pytest.raises(InvalidMediaError):
        asyncio.run(store.upload(_data_uri(b"not an image"), "image"))


def test_cloudinary_upload_returns_secure_url(monkeypatch):
    calls = []

    def fake_upload(data, **options):
        calls.append((data, options))
        return {"secure_url": "https://res.cloudinary.com/demo/chat_images/abc.png"}

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)
    url = asyncio.run(CloudinaryMediaStore().upload("data:image/png;base64,AAAA", "image"))

    assert url == "https://res.cloudinary.com/demo/chat_images/abc.png"
    assert calls == [("data:image/png;base64,AAAA", {"resource_type": "image", "folder": "chat_images"})]


def test_cloudinary_failure_becomes_upload_error(monkeypatch):
    def failing_upload(data, **options):
        raise CloudinaryError("quota exceeded")

    monkeypatch.setattr(cloudinary.uploader, "upload", failing_upload)
    with pytest.raises(MediaUploadError, match="quota exceeded"):
        asyncio.run(CloudinaryMediaStore().upload("data:video/mp4;base64,AAAA", "video"))


def test_gridfs_fetches_remote_image_reference():
    raw = _png_bytes((640, 480), mode="RGB")
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, content=raw, headers={"content-type": "image/png; charset=binary"})

    bucket = RecordingBucket()
    store = GridFSMediaStore(bucket, base_url="https://chat.example", transport=httpx.MockTransport(handler))
    url = asyncio.run(store.upload("https://cdn.example/cat.png", "image"))

    assert requested == ["https://cdn.example/cat.png"]
    file_id, _, source, metadata = bucket.uploads[-1]
    assert url == f"https://chat.example/api/files/{file_id}"
    assert source == raw
    assert metadata["mime"] == "image/png"
    assert "thumbnail_id" in metadata


def test_gridfs_remote_reference_not_found_is_invalid():
    transport = httpx.MockTransport(lambda request: httpx.Response(404))
    store = GridFSMediaStore(RecordingBucket(), transport=transport)
    with pytest.raises(InvalidMediaError, match="HTTP 404"):
        asyncio.run(store.upload("https://cdn.example/missing.mp4", "video"))


def test_gridfs_remote_reference_unreachable_is_upload_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store = GridFSMediaStore(RecordingBucket(), transport=httpx.MockTransport(handler))
    with pytest.raises(MediaUploadError) as excinfo:
        asyncio.run(store.upload("http://cdn.example/clip.mp4", "video"))
    assert not isinstance(excinfo.value, InvalidMediaError)


def test_fetch_remote_enforces_size_limit():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"x" * 4096))
    with pytest.raises(InvalidMediaError, match="too large"):
        asyncio.run(fetch_remote("https://cdn.example/big.bin", max_bytes=1024, transport=transport))
