from typing import Dict

from pydantic import BaseModel


class CacheStatus(BaseModel):
    """Read-only snapshot of the in-process caches for monitoring."""
    entries: Dict[str, int]
    size_bytes: Dict[str, int]
    size: Dict[str, str]  # human readable, e.g. "1.2 KB"
    needs_cleanup: bool = False
