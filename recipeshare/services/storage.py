import os
import uuid
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from ..settings import settings
from .errors import UploadRejectedError

logger = logging.getLogger("recipeshare.storage")

RECIPE_FOLDER = "recipes"
STEP_FOLDER = "steps"
STUDENT_FOLDER = "students"


@dataclass
class StoredFile:
    key: str  # e.g. "recipes/3f2c...e1.jpg"
    extension: str
    url: str


class UploadStorage(Protocol):
    def save(self, folder: str, filename: Optional[str], data: bytes) -> StoredFile: ...

    def delete(self, key: str) -> bool: ...


def image_extension(filename: Optional[str]) -> str:
    """Return the lowercased extension of an allowed image file, or raise."""
    ext = Path(filename or "").suffix.lower().lstrip(".")
    if ext not in settings.allowed_image_extensions:
        allowed = ", ".join(settings.allowed_image_extensions)
        raise UploadRejectedError(filename, f"only image files are allowed ({allowed})")
    return ext


def check_upload_size(filename: Optional[str], data: bytes) -> None:
    if len(data) > settings.max_upload_bytes:
        raise UploadRejectedError(
            filename, f"file exceeds {settings.max_upload_bytes} bytes"
        )


def new_storage_key(folder: str, ext: str) -> str:
    return f"{folder}/{uuid.uuid4().hex}.{ext}"


class LocalUploadStorage:
    """Keeps uploads on local disk, served under settings.upload_public_path."""

    def __init__(self, root: Optional[str] = None, public_path: Optional[str] = None):
        self.root = Path(root or settings.upload_root)
        if not self.root.is_absolute():
            self.root = Path(os.getcwd()) / self.root
        self.public_path = (public_path or settings.upload_public_path).rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def save(self, folder: str, filename: Optional[str], data: bytes) -> StoredFile:
        """
        Save an uploaded image.
        folder: "recipes" (cover images) or "steps"
        Returns: StoredFile with a public URL like /uploads/steps/<hex>.png
        """
        ext = image_extension(filename)
        check_upload_size(filename, data)

        key = new_storage_key(folder, ext)
        file_path = self.root / key
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "wb") as f:
            f.write(data)

        logger.info(f"Saved {len(data)} bytes from '{filename}' to {file_path}")
        return StoredFile(key=key, extension=ext, url=f"{self.public_path}/{key}")

    def delete(self, key: str) -> bool:
        """
        Delete a stored file.
        Returns True if deleted or didn't exist, False on error.
        """
        if ".." in key:
            logger.warning(f"Invalid delete key: {key}")
            return False

        file_path = self.root / key
        try:
            if file_path.exists():
                file_path.unlink()
                logger.info(f"Deleted file {file_path}")
            return True
        except OSError as e:
            logger.error(f"Failed to delete {file_path}: {e}")
            return False


_storage: Optional[UploadStorage] = None


def get_storage() -> UploadStorage:
    """FastAPI dependency returning the configured storage backend."""
    global _storage
    if _storage is None:
        if settings.storage_backend == "s3":
            from ..storage.s3_compat import get_store
            _storage = get_store()
        else:
            _storage = LocalUploadStorage()
    return _storage
