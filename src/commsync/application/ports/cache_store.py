from __future__ import annotations
from typing import Iterable, Optional, Protocol


class CacheStore(Protocol):
    """Per-user key/value cache. Disposable; rebuilt from providers."""

    def get(self, user_id: str, key: str) -> Optional[str]: ...
    def set(self, user_id: str, key: str, value: str) -> None: ...
    def delete(self, user_id: str, key: str) -> None: ...

    # Single aggregate over every row owned by the given users, in bytes
    def total_size(self, user_ids: Iterable[str]) -> int: ...
