import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol
from uuid import uuid4

from db import ROOT_DIR
from errors import ValidationError

logger = logging.getLogger("app.signatures")

MAX_SIGNATURE_BYTES = 5 * 1024 * 1024
URL_PREFIX = "/uploads/signatures/"

_MAGIC = {
    "png": b"\x89PNG\r\n\x1a\n",
    "jpg": b"\xff\xd8\xff",
}
_CONTENT_TYPES = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
}


class SignatureStore(Protocol):
    def save(self, data: bytes, content_type: Optional[str] = None) -> str: ...

    def delete(self, url: str) -> None: ...


def resolve_signatures_dir(root_dir: Path) -> Path:
    custom_path = os.getenv("APP_SIGNATURES_DIR")
    if not custom_path:
        return root_dir / "data" / "signatures"

    path = Path(custom_path).expanduser()
    if not path.is_absolute():
        path = (root_dir / path).resolve()
    return path


def detect_extension(data: bytes) -> Optional[str]:
    for ext, magic in _MAGIC.items():
        if data.startswith(magic):
            return ext
    return None


class FileSignatureStore:
    """Signature images on the local filesystem, addressed by URL."""

    def __init__(self, directory: Path):
        self.directory = directory

    def path_for(self, url: str) -> Path:
        # only the basename is trusted
        return self.directory / Path(url).name

    def save(self, data: bytes, content_type: Optional[str] = None) -> str:
        if not data:
            raise ValidationError("signature image is empty")
        if len(data) > MAX_SIGNATURE_BYTES:
            raise ValidationError("signature image exceeds 5MB")

        ext = detect_extension(data)
        if ext is None:
            raise ValidationError("signature must be a PNG or JPEG image")
        if content_type:
            declared = _CONTENT_TYPES.get(content_type.lower())
            if declared is None:
                raise ValidationError("signature must be a PNG or JPEG image")
            if declared != ext:
                raise ValidationError("signature content type does not match the image data")

        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        filename = f"{stamp}-{uuid4().hex}-signature.{ext}"
        (self.directory / filename).write_bytes(data)
        logger.info("saved signature file=%s bytes=%s", filename, len(data))
        return URL_PREFIX + filename

    def delete(self, url: str) -> None:
        if not url:
            return
        path = self.path_for(url)
        path.unlink()
        logger.info("deleted signature file=%s", path.name)


_default_store: Optional[FileSignatureStore] = None


def get_signature_store() -> SignatureStore:
    global _default_store
    if _default_store is None:
        _default_store = FileSignatureStore(resolve_signatures_dir(ROOT_DIR))
    return _default_store


def delete_quietly(store: SignatureStore, urls: list[str]) -> None:
    """Best-effort removal; failures are logged, never raised."""
    for url in urls:
        try:
            store.delete(url)
        except Exception:
            logger.warning("failed to delete signature url=%s", url, exc_info=True)
