"""
Object Storage Service

One logical "recordings" area addressed by slash-separated paths. Two backends:
1. SupabaseStorage - Supabase Storage bucket through the official SDK
2. LocalStorage - a directory on disk, served by the app under /media
"""
import logging
import mimetypes
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from screencast.errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)


class ObjectStorage(ABC):
    """upload / download / list / remove / get_public_url over one bucket."""

    @abstractmethod
    def upload(self, path: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        ...

    @abstractmethod
    def download(self, path: str) -> bytes:
        """Return the object's bytes, or raise NotFoundError."""

    @abstractmethod
    def list(self, prefix: str, newest_first: bool = True) -> List[Dict]:
        """List a directory as dicts with at least `name` and `created_at`."""

    @abstractmethod
    def remove(self, paths: List[str]) -> None:
        ...

    @abstractmethod
    def get_public_url(self, path: str) -> str:
        ...

    def exists(self, path: str) -> bool:
        folder, _, name = path.rpartition("/")
        return any(item["name"] == name for item in self.list(folder))

    def close(self) -> None:
        pass


class SupabaseStorage(ObjectStorage):
    def __init__(self, url: str, key: str, bucket: str):
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY are required for the supabase backend")
        from supabase import create_client

        self.bucket_name = bucket
        self._client = create_client(url, key)

    @property
    def _bucket(self):
        return self._client.storage.from_(self.bucket_name)

    def upload(self, path: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        try:
            self._bucket.upload(
                path,
                data,
                file_options={"content-type": content_type, "upsert": "true" if upsert else "false"},
            )
        except Exception as e:
            logger.error(f"[Storage] Upload failed for {path}: {e}")
            raise StorageError(f"Storage error: {e}") from e

    def download(self, path: str) -> bytes:
        try:
            return self._bucket.download(path)
        except Exception as e:
            status = str(getattr(e, "status", "") or getattr(e, "code", ""))
            if status == "404" or "not found" in str(e).lower():
                raise NotFoundError(path) from e
            raise StorageError(f"Storage error: {e}") from e

    def list(self, prefix: str, newest_first: bool = True) -> List[Dict]:
        try:
            return self._bucket.list(
                prefix,
                {
                    "limit": 1000,
                    "sortBy": {"column": "created_at", "order": "desc" if newest_first else "asc"},
                },
            ) or []
        except Exception as e:
            raise StorageError(f"Storage error: {e}") from e

    def remove(self, paths: List[str]) -> None:
        try:
            self._bucket.remove(paths)
        except Exception as e:
            raise StorageError(f"Storage error: {e}") from e

    def get_public_url(self, path: str) -> str:
        return self._bucket.get_public_url(path)


class LocalStorage(ObjectStorage):
    """Stores objects under `root/bucket`; public URLs point at the /media mount."""

    def __init__(self, root: str, bucket: str, base_url: Callable[[], str]):
        self.root = Path(root) / bucket
        self.root.mkdir(parents=True, exist_ok=True)
        self._base_url = base_url

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents and target != self.root.resolve():
            raise StorageError(f"Invalid path: {path}")
        return target

    def upload(self, path: str, data: bytes, content_type: str, upsert: bool = False) -> None:
        target = self._resolve(path)
        if target.exists() and not upsert:
            raise StorageError("Storage error: The resource already exists")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            logger.error(f"[Storage] Upload failed for {path}: {e}")
            raise StorageError(f"Storage error: {e}") from e
        logger.debug(f"[Storage] Stored {path} ({len(data)} bytes, {content_type})")

    def download(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise NotFoundError(path)
        return target.read_bytes()

    def list(self, prefix: str, newest_first: bool = True) -> List[Dict]:
        folder = self._resolve(prefix) if prefix else self.root
        if not folder.is_dir():
            return []
        entries = []
        for entry in folder.iterdir():
            if not entry.is_file():
                continue
            stat = entry.stat()
            entries.append((stat.st_mtime, entry.name, {
                "name": entry.name,
                "created_at": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
                "metadata": {
                    "size": stat.st_size,
                    "mimetype": mimetypes.guess_type(entry.name)[0] or "application/octet-stream",
                },
            }))
        entries.sort(key=lambda e: (e[0], e[1]), reverse=newest_first)
        return [item for _, _, item in entries]

    def remove(self, paths: List[str]) -> None:
        for path in paths:
            target = self._resolve(path)
            try:
                target.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"Storage error: {e}") from e

    def get_public_url(self, path: str) -> str:
        return f"{self._base_url()}/media/{path}"


def build_storage(config, base_url: Optional[Callable[[], str]] = None) -> ObjectStorage:
    """Construct the storage client for the configured backend."""
    backend = config.STORAGE_BACKEND.lower()
    if backend == "supabase":
        logger.info(f"[Storage] Using Supabase bucket '{config.STORAGE_BUCKET}'")
        return SupabaseStorage(config.SUPABASE_URL, config.SUPABASE_KEY, config.STORAGE_BUCKET)
    if backend == "local":
        logger.info(f"[Storage] Using local directory {config.LOCAL_STORAGE_DIR}")
        return LocalStorage(
            config.LOCAL_STORAGE_DIR,
            config.STORAGE_BUCKET,
            base_url or (lambda: f"http://localhost:{config.API_PORT}"),
        )
    raise ValueError(f"Unknown STORAGE_BACKEND: {config.STORAGE_BACKEND}")
