import logging
import mimetypes
import os
import uuid
from pathlib import Path
from typing import Dict, Optional

from errors import UploadRejected

logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", os.path.join(os.path.dirname(__file__), "uploads")))
SERVER_BASE_URL = os.getenv("SERVER_BASE_URL", "http://localhost:8000")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))  # 5MB/file
BANK_SLIP_FOLDER = "bank-slips"


def ensure_upload_dirs(root: Optional[Path] = None) -> Path:
    folder = (root or UPLOAD_DIR) / BANK_SLIP_FOLDER
    folder.mkdir(parents=True, exist_ok=True)
    return folder


def store_image(data: bytes, content_type: Optional[str], filename: Optional[str] = None,
                root: Optional[Path] = None) -> Dict[str, str]:
    """Save an uploaded bank slip and return where it can be fetched from."""
    if not data:
        raise UploadRejected("No file uploaded")
    if not (content_type or "").startswith("image/"):
        raise UploadRejected("Only image files are allowed")
    if len(data) > MAX_UPLOAD_BYTES:
        raise UploadRejected(f"File exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit")

    # extension follows the checked content type, never the client filename
    ext = mimetypes.guess_extension(content_type.split(";")[0].strip().lower()) or ""
    name = f"{uuid.uuid4()}{ext}"
    folder = ensure_upload_dirs(root)
    (folder / name).write_bytes(data)

    relative = f"/uploads/{BANK_SLIP_FOLDER}/{name}"
    logger.info("Stored bank slip %s from %s (%d bytes)", name, filename or "upload", len(data))
    return {
        "fileUrl": f"{SERVER_BASE_URL.rstrip('/')}{relative}",
        "relativePath": relative,
        "fileName": name,
    }
