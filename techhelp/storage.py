"""
Bucketed object storage rooted at a local directory.

Objects are addressed by (bucket, path); paths are caller-chosen, e.g.
``private/<owner_id>/<timestamp_ms>.<ext>``.
"""

import time
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from techhelp.config import DOCUMENT_BUCKETS, PRIVATE_PREFIX


class StorageError(Exception):
    """Raised when an object cannot be stored, read or removed."""


def object_key(owner_id: str, filename: str, now: Optional[float] = None) -> str:
    """Build ``{owner_id}/{timestamp_ms}.{ext}`` for an uploaded file."""
    ts = int((now if now is not None else time.time()) * 1000)
    ext = filename.rsplit(".", 1)[-1] if "." in filename else "bin"
    return f"{owner_id}/{ts}.{ext.lower()}"


def private_path(key: str) -> str:
    return f"{PRIVATE_PREFIX}/{key}"


def bucket_for_category(category: str) -> str:
    try:
        return DOCUMENT_BUCKETS[category]
    except KeyError:
        raise StorageError(f"No bucket for document category '{category}'") from None


class ObjectStorage:
    """Upload / download / remove / public URL, one directory per bucket."""

    def __init__(self, root, public_base_url: str = ""):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, bucket: str, path: str) -> Path:
        parts = [p for p in path.split("/") if p]
        if not bucket or not parts or any(p in (".", "..") for p in parts) or path.startswith("/"):
            raise StorageError(f"Invalid object path '{path}'")
        return self.root.joinpath(bucket, *parts)

    def upload(self, bucket: str, path: str, data: bytes, upsert: bool = False) -> str:
        target = self._resolve(bucket, path)
        if target.exists() and not upsert:
            raise StorageError(f"Object {bucket}/{path} already exists")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Upload to {bucket}/{path} failed: {e}") from e
        return path

    def download(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        try:
            return target.read_bytes()
        except FileNotFoundError:
            raise StorageError(f"Object {bucket}/{path} not found") from None
        except OSError as e:
            raise StorageError(f"Download of {bucket}/{path} failed: {e}") from e

    def remove(self, bucket: str, paths: List[str]) -> List[str]:
        """Delete objects; already missing ones are skipped."""
        removed = []
        for path in paths:
            target = self._resolve(bucket, path)
            try:
                target.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StorageError(f"Removal of {bucket}/{path} failed: {e}") from e
            removed.append(path)
        return removed

    def exists(self, bucket: str, path: str) -> bool:
        return self._resolve(bucket, path).is_file()

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/storage/{quote(bucket)}/{quote(path)}"

    def ping(self) -> bool:
        """True when the storage root exists (or can be created) as a directory."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return self.root.is_dir()
