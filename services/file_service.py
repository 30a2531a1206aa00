"""
File upload service backed by the platform blob store.

Images are resized and re-encoded with Pillow before upload so receipts
photographed on a phone don't travel at full resolution.
"""

import asyncio
import io
import logging
from collections import Counter
from typing import List, Optional

from PIL import Image, UnidentifiedImageError

from core.errors import InvalidInput, map_platform_error
from core.platform import Platform, new_id
from models.file import FileUpload, StorageStats, UploadedFile, UploadReport

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 20 * 1024 * 1024  # 20MB
ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "application/pdf")

MAX_IMAGE_DIMENSION = 1920
DEFAULT_IMAGE_QUALITY = 80

_PIL_FORMATS = {"image/jpeg": "JPEG", "image/png": "PNG"}

# Folder Prefixes
GENERAL_FOLDER = "general"
RECEIPTS_FOLDER = "receipts"
PROFILES_FOLDER = "profiles"
ATTACHMENTS_FOLDER = "attachments"


def validate_file(file: FileUpload) -> None:
    """Reject files over MAX_FILE_SIZE (inclusive limit) or outside the MIME allowlist."""
    if file.size > MAX_FILE_SIZE:
        raise InvalidInput(f"File too large. Maximum allowed: {MAX_FILE_SIZE // (1024 * 1024)}MB")
    if file.mime_type not in ALLOWED_MIME_TYPES:
        raise InvalidInput("File type not allowed. Use JPG, PNG or PDF")


def compress_image(
    file: FileUpload,
    quality: int = DEFAULT_IMAGE_QUALITY,
    max_dimension: int = MAX_IMAGE_DIMENSION,
) -> FileUpload:
    """
    Resize an image so its longest side is at most max_dimension and re-encode it.

    Non-image files, images Pillow cannot read and re-encodes that come out
    larger than the original are returned unchanged.
    """
    image_format = _PIL_FORMATS.get(file.mime_type)
    if image_format is None:
        return file

    try:
        img = Image.open(io.BytesIO(file.content))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Could not read image {file.name}, uploading as-is: {e}")
        return file

    width, height = img.size
    longest = max(width, height)
    if longest > max_dimension:
        scale = max_dimension / longest
        new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
        img = img.resize(new_size, Image.Resampling.LANCZOS)

    output = io.BytesIO()
    if image_format == "JPEG":
        if img.mode != "RGB":
            img = img.convert("RGB")
        img.save(output, format="JPEG", quality=quality, optimize=True)
    else:
        img.save(output, format="PNG", optimize=True)
    compressed = output.getvalue()

    if len(compressed) >= file.size and longest <= max_dimension:
        return file

    logger.info(
        f"Compressed {file.name}: {file.size} -> {len(compressed)} bytes "
        f"({width}x{height} -> {img.width}x{img.height})"
    )
    return FileUpload(name=file.name, mime_type=file.mime_type, content=compressed)


class FileService:
    def __init__(self, platform: Platform) -> None:
        self.platform = platform

    # --- Uploads ---

    async def upload_file(self, file: FileUpload, folder: str = GENERAL_FOLDER) -> UploadedFile:
        validate_file(file)
        blob_name = f"{folder}/{file.name}"
        try:
            blob = await self.platform.blobs.create(new_id(), blob_name, file.content, file.mime_type)
        except Exception as e:
            logger.error(f"Upload file error for {blob_name}: {e}")
            raise map_platform_error(e)

        logger.info(f"Uploaded {blob_name} as {blob.id} ({blob.size} bytes)")
        return UploadedFile.from_blob(blob)

    async def _upload_image(self, file: FileUpload, folder: str) -> UploadedFile:
        validate_file(file)
        compressed = await asyncio.to_thread(compress_image, file)
        return await self.upload_file(compressed, folder)

    async def upload_receipt(self, file: FileUpload) -> UploadedFile:
        return await self._upload_image(file, RECEIPTS_FOLDER)

    async def upload_profile_picture(self, file: FileUpload) -> UploadedFile:
        return await self._upload_image(file, PROFILES_FOLDER)

    async def upload_attachment(self, file: FileUpload) -> UploadedFile:
        return await self.upload_file(file, ATTACHMENTS_FOLDER)

    async def upload_many(self, files: List[FileUpload], folder: str = GENERAL_FOLDER) -> UploadReport:
        """Upload everything concurrently; one failed file never aborts the rest."""
        results = await asyncio.gather(
            *(self.upload_file(f, folder) for f in files), return_exceptions=True
        )

        report = UploadReport()
        for file, result in zip(files, results):
            if isinstance(result, BaseException):
                report.failed.append(file.name)
            else:
                report.uploaded.append(result)

        if report.failed:
            logger.warning(f"Some files failed to upload: {report.failed}")
        return report

    # --- URLs ---

    def get_file_url(self, file_id: str) -> str:
        return self.platform.blobs.view_url(file_id)

    def get_download_url(self, file_id: str) -> str:
        return self.platform.blobs.download_url(file_id)

    def get_preview_url(self, file_id: str, width: Optional[int] = None, height: Optional[int] = None) -> str:
        return self.platform.blobs.preview_url(file_id, width=width, height=height)

    # --- Metadata ---

    async def get_file_info(self, file_id: str) -> Optional[UploadedFile]:
        try:
            return UploadedFile.from_blob(await self.platform.blobs.get(file_id))
        except Exception as e:
            logger.error(f"Get file info error for {file_id}: {e}")
            return None

    async def delete_file(self, file_id: str) -> bool:
        try:
            await self.platform.blobs.delete(file_id)
            return True
        except Exception as e:
            logger.error(f"Delete file error for {file_id}: {e}")
            return False

    async def list_files(self, limit: Optional[int] = None) -> List[UploadedFile]:
        try:
            blobs = await self.platform.blobs.list(limit=limit)
        except Exception as e:
            logger.error(f"List files error: {e}")
            raise map_platform_error(e)
        return [UploadedFile.from_blob(b) for b in blobs]

    async def storage_stats(self) -> StorageStats:
        files = await self.list_files()
        return StorageStats(
            total_files=len(files),
            total_size=sum(f.size for f in files),
            file_types=dict(Counter(_extension(f.name) for f in files)),
            folders=dict(Counter(_folder(f.name) for f in files)),
        )


def _extension(name: str) -> str:
    base = name.rsplit("/", 1)[-1]
    if "." not in base:
        return "unknown"
    return base.rsplit(".", 1)[-1].lower() or "unknown"


def _folder(name: str) -> str:
    return name.split("/", 1)[0] if "/" in name else "root"
