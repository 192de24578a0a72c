"""Ownership tracking for ephemeral binary resources.

Every uploaded image, voice take and rendered artifact is wrapped in a
``ResourceHandle`` issued by a ``ResourceRegistry``. A handle is released at
most once; after release its bytes and any file materialized for it are gone
and further access raises ``ResourceRevokedError``.
"""
from __future__ import annotations

import uuid
from pathlib import Path
from typing import Dict, Generic, List, Optional, TypeVar

from logging_utils import get_logger

from .errors import ResourceRevokedError

logger = get_logger(__name__)


class ResourceHandle:
    """A revocable reference to an owned binary payload."""

    def __init__(self, registry: "ResourceRegistry", handle_id: str, data: bytes, media_type: str, name: str) -> None:
        self._registry = registry
        self.handle_id = handle_id
        self.media_type = media_type
        self.name = name
        self._data: Optional[bytes] = data
        self._path: Optional[Path] = None

    def __repr__(self) -> str:
        state = "live" if self.is_valid else "revoked"
        return f"ResourceHandle({self.url}, {self.media_type}, {state})"

    @property
    def url(self) -> str:
        return f"blob:{self.handle_id}"

    @property
    def is_valid(self) -> bool:
        return self._data is not None

    @property
    def size(self) -> int:
        return len(self.read_bytes())

    def read_bytes(self) -> bytes:
        if self._data is None:
            raise ResourceRevokedError(f"Resource {self.url} has been released")
        return self._data

    def materialize(self, directory: Path) -> Path:
        """Write the payload to ``directory`` once and return the file path.

        The file is owned by the handle and removed when the handle is released.
        """
        data = self.read_bytes()
        if self._path is not None and self._path.exists():
            return self._path
        directory.mkdir(parents=True, exist_ok=True)
        suffix = Path(self.name).suffix
        path = directory / f"{self.handle_id}{suffix}"
        path.write_bytes(data)
        self._path = path
        return path

    def release(self) -> bool:
        return self._registry.release(self)

    def _revoke(self) -> None:
        self._data = None
        if self._path is not None:
            try:
                self._path.unlink(missing_ok=True)
            except OSError:
                logger.warning("Failed to delete materialized resource file: %s", self._path)
            self._path = None


class ResourceRegistry:
    """Issue handles and guarantee that each one is released exactly once."""

    def __init__(self) -> None:
        self._live: Dict[str, ResourceHandle] = {}
        self.released_total = 0

    def acquire(self, data: bytes, *, media_type: str, name: str) -> ResourceHandle:
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError("Resource payload must be bytes")
        handle = ResourceHandle(self, uuid.uuid4().hex, bytes(data), media_type, name)
        self._live[handle.handle_id] = handle
        logger.debug("Acquired %s (%s, %d bytes)", handle.url, media_type, len(data))
        return handle

    def release(self, handle: ResourceHandle) -> bool:
        """Release ``handle``. Returns False when it was already released."""
        if self._live.pop(handle.handle_id, None) is None:
            return False
        handle._revoke()
        self.released_total += 1
        logger.debug("Released %s", handle.url)
        return True

    def release_all(self) -> int:
        handles = list(self._live.values())
        for handle in handles:
            self.release(handle)
        return len(handles)

    @property
    def live_handles(self) -> List[ResourceHandle]:
        return list(self._live.values())

    def is_live(self, handle: ResourceHandle) -> bool:
        return handle.handle_id in self._live


T = TypeVar("T")


class ExclusiveSlot(Generic[T]):
    """Hold at most one owned value; replacing it releases the previous one.

    ``release_of`` maps the held value to the handles it owns.
    """

    def __init__(self, release_of) -> None:
        self._release_of = release_of
        self._value: Optional[T] = None

    @property
    def value(self) -> Optional[T]:
        return self._value

    def replace(self, value: Optional[T]) -> Optional[T]:
        previous = self._value
        self._value = value
        if previous is not None and previous is not value:
            for handle in self._release_of(previous):
                handle.release()
        return previous

    def clear(self) -> Optional[T]:
        return self.replace(None)
