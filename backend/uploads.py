import logging
import os
import secrets
import time
from typing import Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile

from config import MAX_UPLOAD_MB, UPLOAD_DIR
from errors import BadRequestError
from models import User
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])

ALLOWED_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}

MAX_UPLOAD_BYTES = MAX_UPLOAD_MB * 1024 * 1024


def save_image(file: UploadFile, upload_dir: Optional[str] = None) -> str:
    """Persist an uploaded image and return its stored file name."""
    upload_dir = upload_dir or UPLOAD_DIR
    extension = ALLOWED_TYPES.get(file.content_type)
    if extension is None:
        raise BadRequestError("Only image files can be uploaded")
    data = file.file.read(MAX_UPLOAD_BYTES + 1)
    if not data:
        raise BadRequestError("Uploaded file is empty")
    if len(data) > MAX_UPLOAD_BYTES:
        raise BadRequestError(f"File exceeds the {MAX_UPLOAD_MB}MB limit")

    os.makedirs(upload_dir, exist_ok=True)
    filename = f"product_{int(time.time() * 1000)}_{secrets.token_hex(4)}.{extension}"
    with open(os.path.join(upload_dir, filename), "wb") as fh:
        fh.write(data)
    logger.info("Stored upload %s (%d bytes)", filename, len(data))
    return filename


# ========== ROUTES ==========

@router.post("/upload", status_code=201)
def upload_file(request: Request, file: UploadFile = File(...), user: User = Depends(get_current_user)):
    filename = save_image(file)
    return {"url": str(request.base_url) + f"uploads/{filename}"}
