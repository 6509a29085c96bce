import base64
import logging
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

import config
from exceptions import UploadError, UpstreamFailure

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/pjpeg", "image/png", "image/x-png", "image/webp", "image/gif"}
MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10MB

cloudinary.config(
    cloud_name=config.CLOUDINARY_CLOUD_NAME,
    api_key=config.CLOUDINARY_API_KEY,
    api_secret=config.CLOUDINARY_API_SECRET,
    secure=True,
)

class AssetHostClient:
    def __init__(self, folder: str = "events", timeout: float = 30.0):
        self.folder = folder
        self.timeout = timeout

    async def upload_image(self, content: bytes, content_type: str) -> str:
        """Upload raw image bytes and return the public HTTPS URL."""
        data_uri = f"data:{content_type};base64,{base64.b64encode(content).decode()}"
        try:
            result = await run_in_threadpool(
                cloudinary.uploader.upload, data_uri, folder=self.folder, timeout=self.timeout,
            )
        except cloudinary.exceptions.Error as e:
            logger.error(f"Asset host error: {str(e)}")
            raise UpstreamFailure("Error uploading image") from e

        url = result.get("secure_url") if isinstance(result, dict) else None
        if not url:
            logger.error(f"Asset host response had no secure_url: {result}")
            raise UpstreamFailure("Error uploading image")
        return url

def get_asset_host() -> AssetHostClient:
    return AssetHostClient(folder=config.UPLOAD_FOLDER, timeout=config.UPLOAD_TIMEOUT_SECONDS)

async def read_image(file: Optional[UploadFile]) -> tuple[bytes, str]:
    """Validate an uploaded image and return its bytes and content type."""
    if file is None or not file.filename:
        raise UploadError("No image file provided")
    content_type = (file.content_type or "").lower()
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise UploadError("Invalid file type. Only JPEG, PNG, WebP and GIF images are allowed.")
    content = await file.read()
    if not content:
        raise UploadError("Empty file received")
    if len(content) > MAX_IMAGE_SIZE:
        raise UploadError("File too large (max 10MB)")
    return content, content_type
