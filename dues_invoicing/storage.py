from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Protocol

from .config import StorageSettings
from .errors import StorageError

_LOG = logging.getLogger(__name__)

MAX_KEY_PART_LENGTH = 60
PDF_CONTENT_TYPE = "application/pdf"
CSV_CONTENT_TYPE = "text/csv"

_ILLEGAL_KEY_CHARS = re.compile(r"[^A-Za-z0-9 ._-]+")
_WHITESPACE = re.compile(r"\s+")
_DASH_RUNS = re.compile(r"-{2,}")


class ObjectStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> str: ...

    def get(self, key: str) -> bytes: ...

    def list(self, prefix: str = "") -> list[str]: ...


def sanitize_key_part(value: str, *, max_length: int = MAX_KEY_PART_LENGTH) -> str:
    """Storage-safe fragment: illegal characters dropped, whitespace collapsed to ``-``."""
    cleaned = _ILLEGAL_KEY_CHARS.sub("", value or "")
    cleaned = _WHITESPACE.sub("-", cleaned.strip())
    cleaned = _DASH_RUNS.sub("-", cleaned).strip("-.")
    return cleaned[:max_length].rstrip("-.") or "unnamed"


def invoice_pdf_key(period: str, entity_kind: str, name: str, entity_id: str) -> str:
    return (
        f"invoices/{period}/{sanitize_key_part(entity_kind.lower())}/"
        f"{sanitize_key_part(name)}-{sanitize_key_part(str(entity_id))}.pdf"
    )


class LocalObjectStore:
    def __init__(self, root: Path, *, base_url: str | None = None) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/") if base_url else None

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Storage key escapes the storage root: {key!r}")
        return path

    def url_for(self, key: str) -> str:
        if self.base_url:
            return f"{self.base_url}/{key}"
        return self._path(key).as_uri()

    def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Could not write {key}: {exc}") from exc
        _LOG.info("Stored %s (%s, %d bytes)", key, content_type, len(data))
        return self.url_for(key)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise StorageError(f"Object not found: {key}")
        return path.read_bytes()

    def list(self, prefix: str = "") -> list[str]:
        if not self.root.exists():
            return []
        keys = [path.relative_to(self.root).as_posix() for path in self.root.rglob("*") if path.is_file()]
        return sorted(key for key in keys if key.startswith(prefix))


class SupabaseObjectStore:
    def __init__(self, client: Any, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    def _bucket(self) -> Any:
        return self.client.storage.from_(self.bucket)

    def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            response = self._bucket().upload(key, data, {"content-type": content_type, "upsert": "true"})
        except Exception as exc:  # storage3 raises its own hierarchy
            raise StorageError(f"Supabase upload failed for {key}: {exc}") from exc
        error = getattr(response, "error", None)
        if error:
            raise StorageError(f"Supabase upload failed for {key}: {error}")
        _LOG.info("Uploaded %s to bucket %s (%d bytes)", key, self.bucket, len(data))
        return self._bucket().get_public_url(key)

    def get(self, key: str) -> bytes:
        try:
            return self._bucket().download(key)
        except Exception as exc:
            raise StorageError(f"Supabase download failed for {key}: {exc}") from exc

    def list(self, prefix: str = "") -> list[str]:
        folder, _, name_prefix = prefix.rpartition("/")
        try:
            entries = self._bucket().list(folder)
        except Exception as exc:
            raise StorageError(f"Supabase list failed for {prefix!r}: {exc}") from exc
        keys = []
        for entry in entries or []:
            name = str(entry.get("name") or "")
            if name and name.startswith(name_prefix):
                keys.append(f"{folder}/{name}" if folder else name)
        return sorted(keys)


class DryRunObjectStore:
    """Reports where an object would go without writing it."""

    def __init__(self, target: ObjectStore | None = None) -> None:
        self.target = target
        self.keys: list[str] = []

    def put(self, key: str, data: bytes, content_type: str) -> str:
        self.keys.append(key)
        _LOG.info("[dry run] would store %s (%s, %d bytes)", key, content_type, len(data))
        return f"dry-run://{key}"

    def get(self, key: str) -> bytes:
        if self.target is None:
            raise StorageError(f"Object not found: {key}")
        return self.target.get(key)

    def list(self, prefix: str = "") -> list[str]:
        return self.target.list(prefix) if self.target is not None else []


def build_object_store(settings: StorageSettings) -> ObjectStore:
    if settings.uses_supabase:
        from supabase import create_client

        return SupabaseObjectStore(create_client(settings.supabase_url, settings.supabase_key), settings.bucket)
    return LocalObjectStore(settings.local_dir)
