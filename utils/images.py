"""Processing and storage of uploaded item images.

Uploads are re-encoded before they are stored: EXIF orientation is applied,
metadata is dropped, large images are scaled down to fit 1920x1080 and the
result is saved as a progressive JPEG next to a 300x300 thumbnail.

Copyright (c) Bryn Gwalad 2025
"""

import logging
import os
import uuid
from io import BytesIO
from pathlib import Path
from typing import Optional

from fastapi import UploadFile
from PIL import Image, ImageOps, UnidentifiedImageError

from utils.errors import BadRequestError

logger = logging.getLogger("custom_tables.images")

MAX_WIDTH = 1920
MAX_HEIGHT = 1080
THUMBNAIL_SIZE = 300
JPEG_QUALITY = 85

ALLOWED_EXTENSIONS = frozenset([".jpg", ".jpeg", ".png", ".gif", ".webp"])
ALLOWED_CONTENT_TYPES = frozenset(["image/jpeg", "image/png", "image/gif", "image/webp"])


class ImageStore:
    def __init__(self, upload_dir, max_bytes: int):
        self.upload_dir = Path(upload_dir)
        self.max_bytes = max_bytes

    def validate(self, upload: UploadFile) -> None:
        """Reject files by name and declared type before anything is read."""
        ext = os.path.splitext(upload.filename or "")[1].lower()
        if ext not in ALLOWED_EXTENSIONS or upload.content_type not in ALLOWED_CONTENT_TYPES:
            raise BadRequestError("Invalid format. Allowed: JPEG, PNG, GIF, WebP.")

    def save(self, prefix: str, upload: UploadFile) -> str:
        """Process one upload and return the public path of the stored JPEG."""
        self.validate(upload)
        try:
            data = upload.file.read(self.max_bytes + 1)
        finally:
            upload.file.close()
        if len(data) > self.max_bytes:
            raise BadRequestError(f"File too large. Max {self.max_bytes // (1024 * 1024)}MB each.")

        try:
            image = Image.open(BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise BadRequestError(f"Could not read image {upload.filename}") from exc

        image = ImageOps.exif_transpose(image).convert("RGB")
        base_name = f"{prefix}-{uuid.uuid4().hex}"
        self.upload_dir.mkdir(parents=True, exist_ok=True)

        main = image.copy()
        main.thumbnail((MAX_WIDTH, MAX_HEIGHT))
        main.save(self.upload_dir / f"{base_name}.jpg", "JPEG", quality=JPEG_QUALITY, progressive=True)

        thumb = ImageOps.fit(image, (THUMBNAIL_SIZE, THUMBNAIL_SIZE))
        thumb.save(self.upload_dir / f"{base_name}-thumb.jpg", "JPEG", quality=JPEG_QUALITY)

        logger.info("Processed %s: %s -> %s bytes", upload.filename, len(data), (self.upload_dir / f"{base_name}.jpg").stat().st_size)
        return f"/uploads/{base_name}.jpg"

    def delete(self, image_path: Optional[str]) -> None:
        """Remove a stored image and its thumbnail. Failures are logged, never raised."""
        if not image_path:
            return
        name = Path(image_path).name
        stem, _ = os.path.splitext(name)
        for file_path in (self.upload_dir / name, self.upload_dir / f"{stem}-thumb.jpg"):
            try:
                file_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("Failed to delete image %s: %s", file_path, exc)
