"""
Temporary storage for import previews.
Stores the computed diff and validation in memory with TTL expiration.
Single-process only; the operation lock lives in the same process.
"""
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from config.settings import settings

_cache: dict[str, tuple[datetime, Any]] = {}
_guard = threading.Lock()


def store_preview(data: Any, ttl_minutes: Optional[int] = None) -> str:
    """Store a preview, return preview_id."""
    preview_id = str(uuid.uuid4())
    expires_at = datetime.now() + timedelta(minutes=ttl_minutes or settings.preview_ttl_minutes)
    with _guard:
        _cache[preview_id] = (expires_at, data)
        _cleanup_expired()
    return preview_id


def retrieve_preview(preview_id: str) -> Optional[Any]:
    """Retrieve a preview by preview_id. Returns None if expired/not found."""
    with _guard:
        entry = _cache.get(preview_id)
        if entry is None:
            return None
        expires_at, data = entry
        if datetime.now() > expires_at:
            del _cache[preview_id]
            return None
        return data


def delete_preview(preview_id: str) -> None:
    """Remove preview after execute or cancel."""
    with _guard:
        _cache.pop(preview_id, None)


def clear_previews() -> None:
    with _guard:
        _cache.clear()


def _cleanup_expired() -> None:
    """Remove all expired entries. Caller holds _guard."""
    now = datetime.now()
    expired = [k for k, (exp, _) in _cache.items() if now > exp]
    for k in expired:
        del _cache[k]
