import logging

from bson import ObjectId
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from gridfs.errors import NoFile
from pymongo.errors import PyMongoError

from privtalk.chat import convertors  # noqa: F401  registers the objectid path convertor
from privtalk.chat.deps import get_services
from privtalk.chat.errors import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])


async def _open(bucket, file_id):
    if bucket is None:
        raise NotFoundError("file not found")
    try:
        return await bucket.open_download_stream(ObjectId(str(file_id)))
    except NoFile:
        raise NotFoundError("file not found")
    except PyMongoError as e:
        logger.error(f"Error getting file {file_id}: {e}", exc_info=True)
        raise UpstreamError("Internal server error", detail=str(e))


def _stream(grid_out, etag: str) -> StreamingResponse:
    async def iterfile():
        while True:
            chunk = await grid_out.readchunk()
            if not chunk:
                break
            yield chunk

    metadata = grid_out.metadata or {}
    return StreamingResponse(
        iterfile(),
        media_type=metadata.get("mime", "application/octet-stream"),
        headers={
            "Content-Disposition": f'inline; filename="{grid_out.filename}"',
            "Cache-Control": "public, max-age=31536000, immutable",
            "ETag": f'"{etag}"',
        }
    )


@router.get("/{file_id:objectid}")
async def get_file(file_id: str, services=Depends(get_services)):
    """Attachment stored by the GridFS media backend"""
    grid_out = await _open(services.media_bucket, file_id)
    return _stream(grid_out, file_id)


@router.get("/{file_id:objectid}/thumbnail")
async def get_thumbnail(file_id: str, services=Depends(get_services)):
    """Thumbnail for image attachments, the original file otherwise"""
    grid_out = await _open(services.media_bucket, file_id)
    thumbnail_id = (grid_out.metadata or {}).get("thumbnail_id")
    if not thumbnail_id:
        return _stream(grid_out, file_id)

    thumb = await _open(services.media_bucket, thumbnail_id)
    return _stream(thumb, f"{file_id}-thumb")
