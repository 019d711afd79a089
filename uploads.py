"""
Image upload storage.

Files land in UPLOAD_DIR and the catalog only ever sees the public
`/uploads/<name>` paths returned from here.
"""
import logging
import os
import re
import time
import uuid
from typing import List, Optional

from fastapi import HTTPException, UploadFile

logger = logging.getLogger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1000 * 1000)))
MAX_PRODUCT_IMAGES = 5

ALLOWED_TYPES = re.compile(r"jpeg|jpg|png|gif")


def is_image(upload: UploadFile) -> bool:
    ext = os.path.splitext(upload.filename or "")[1].lower()
    return bool(ALLOWED_TYPES.search(ext)) and bool(ALLOWED_TYPES.search(upload.content_type or ""))


def save_upload(upload: UploadFile, field: str, directory: Optional[str] = None) -> str:
    """Store one image and return its public path."""
    if not is_image(upload):
        raise HTTPException(status_code=400, detail="Images only!")
    data = upload.file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File too large")

    target_dir = directory or UPLOAD_DIR
    os.makedirs(target_dir, exist_ok=True)
    ext = os.path.splitext(upload.filename)[1].lower()
    filename = f"{field}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"
    with open(os.path.join(target_dir, filename), "wb") as fh:
        fh.write(data)
    logger.info("Stored upload %s (%d bytes)", filename, len(data))
    return f"/uploads/{filename}"


def save_uploads(uploads: Optional[List[UploadFile]], field: str, limit: int = MAX_PRODUCT_IMAGES,
                 directory: Optional[str] = None) -> List[str]:
    uploads = [u for u in (uploads or []) if u is not None and u.filename]
    if len(uploads) > limit:
        raise HTTPException(status_code=400, detail=f"At most {limit} images allowed")
    # Validate everything before anything is written.
    for upload in uploads:
        if not is_image(upload):
            raise HTTPException(status_code=400, detail="Images only!")
    return [save_upload(u, field, directory) for u in uploads]
