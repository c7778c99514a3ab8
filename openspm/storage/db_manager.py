from abc import ABC, abstractmethod
from typing import List

from openspm.domain.errors import NotFoundError


class BlobStore(ABC):
    """
    Abstract base class for the keyed blob store that backs all OpenSPM state.

    Names are opaque UTF-8 keys; there are no directory semantics.
    """

    @abstractmethod
    def ensure_created(self) -> None:
        """Create an empty store if none exists. Idempotent."""
        pass

    @abstractmethod
    def put(self, name: str, data: bytes) -> None:
        """Insert or overwrite the entry ``name``; all other entries are preserved."""
        pass

    @abstractmethod
    def get(self, name: str) -> bytes:
        """Return the bytes last stored under ``name`` (BlobNotFoundError if absent)."""
        pass

    @abstractmethod
    def delete(self, name: str) -> None:
        """Remove ``name`` (BlobNotFoundError if absent, store left unchanged)."""
        pass

    @abstractmethod
    def list(self) -> List[str]:
        """Return all entry names. Order is not significant."""
        pass

    def exists(self, name: str) -> bool:
        try:
            return name in self.list()
        except NotFoundError:
            return False

    def get_text(self, name: str) -> str:
        return self.get(name).decode("utf-8")

    def put_text(self, name: str, text: str) -> None:
        self.put(name, text.encode("utf-8"))
