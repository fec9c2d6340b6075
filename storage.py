"""
Hotel image storage (Cloudinary).
"""
import logging
import uuid
from typing import List, Optional, Sequence

import cloudinary
import cloudinary.uploader
from fastapi import UploadFile

from errors import UpstreamFailure, ValidationError
from settings import settings

logger = logging.getLogger(__name__)

FOLDER = "hotels"
MAX_FILES = 6
MAX_FILE_SIZE = 5 * 1024 * 1024


def public_id_from_url(url: str) -> Optional[str]:
    """https://res.cloudinary.com/<cloud>/image/upload/v123/hotels/abc.jpg -> hotels/abc"""
    marker = "/upload/"
    idx = url.find(marker)
    if idx == -1:
        return None
    path = url[idx + len(marker):].split("?")[0]
    parts = path.split("/")
    if parts and parts[0].startswith("v") and parts[0][1:].isdigit():
        parts = parts[1:]
    if not parts or not parts[-1]:
        return None
    parts[-1] = parts[-1].rsplit(".", 1)[0]
    return "/".join(parts)


class ImageStore:
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, timeout: float = 30.0):
        cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, secure=True)
        self.timeout = timeout

    def upload(self, files: Sequence[UploadFile]) -> List[str]:
        if len(files) > MAX_FILES:
            raise ValidationError(f"At most {MAX_FILES} images may be uploaded")
        urls = []
        for upload in files:
            content = upload.file.read()
            if len(content) > MAX_FILE_SIZE:
                raise ValidationError(f"{upload.filename} is larger than 5MB")
            try:
                result = cloudinary.uploader.upload(
                    content,
                    folder=FOLDER,
                    public_id=uuid.uuid4().hex,
                    resource_type="image",
                    timeout=self.timeout,
                )
            except Exception as exc:
                logger.warning("Image upload failed for %s: %s", upload.filename, exc)
                raise UpstreamFailure("Image upload failed")
            urls.append(result["secure_url"])
        return urls

    def delete(self, url: str) -> None:
        public_id = public_id_from_url(url)
        if not public_id:
            return
        try:
            cloudinary.uploader.destroy(public_id, invalidate=True, timeout=self.timeout)
        except Exception as exc:
            logger.warning("Failed to delete image %s: %s", public_id, exc)


_store: Optional[ImageStore] = None


def get_image_store() -> ImageStore:
    global _store
    if _store is None:
        _store = ImageStore(
            settings.cloudinary_cloud_name,
            settings.cloudinary_api_key,
            settings.cloudinary_api_secret,
            timeout=settings.outbound_timeout_seconds,
        )
    return _store
