from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional, Sequence, TypeVar

log = logging.getLogger("dual_subtitles.sources.credentials")

T = TypeVar("T")


class CredentialsExhausted(RuntimeError):
    """Every key in the pool was rejected for the same operation."""


class CredentialPool:
    """Round-robin pool of API keys, rotated when the upstream rejects one.

    The current index is shared by all callers so a key that ran out of quota
    is skipped by the next request too.
    """

    def __init__(self, keys: Sequence[str]):
        self._keys: List[str] = [key.strip() for key in keys if key and key.strip()]
        self._index = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._keys)

    def __bool__(self) -> bool:
        return bool(self._keys)

    @property
    def current(self) -> Optional[str]:
        with self._lock:
            if not self._keys:
                return None
            return self._keys[self._index]

    @property
    def position(self) -> int:
        return self._index + 1

    def rotate(self) -> None:
        with self._lock:
            if self._keys:
                self._index = (self._index + 1) % len(self._keys)

    def run(
        self,
        operation_name: str,
        operation: Callable[[str], T],
        should_rotate: Callable[[Exception], bool],
    ) -> T:
        """Call ``operation`` with the current key, rotating on quota errors.

        Each key is tried at most once. Errors for which ``should_rotate`` is
        false propagate immediately.
        """
        if not self._keys:
            raise CredentialsExhausted(f"No API keys configured for {operation_name}")

        last_exc: Optional[Exception] = None
        for _ in range(len(self._keys)):
            key = self.current
            try:
                return operation(key)
            except Exception as exc:  # noqa: BLE001
                if not should_rotate(exc):
                    raise
                last_exc = exc
                log.warning(
                    "%s: key %d/%d rejected (%s); rotating",
                    operation_name,
                    self.position,
                    len(self._keys),
                    exc,
                )
                self.rotate()
        raise CredentialsExhausted(
            f"All {len(self._keys)} API keys exhausted for {operation_name}"
        ) from last_exc
