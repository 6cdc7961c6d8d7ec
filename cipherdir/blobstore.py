from typing import Set

from .addressing import is_content_id
from .directory import Directory
from .logging import get_logger

LOG = get_logger()


def _require_content_id(content_id: str) -> str:
    if not is_content_id(content_id):
        raise ValueError(f"{content_id!r} is not a content id")
    return content_id


class BlobStore:
    """Maps content ids to envelope bytes inside a Directory."""

    def __init__(self, directory: Directory):
        self.directory = directory

    def put(self, content_id: str, envelope_bytes: bytes) -> None:
        _require_content_id(content_id)
        self.directory.ensure_writable()
        self.directory.put(content_id, envelope_bytes)
        LOG.debug("blob_written", content_id=content_id, size=len(envelope_bytes))

    def get(self, content_id: str) -> bytes:
        return self.directory.get(_require_content_id(content_id))

    def remove(self, content_id: str) -> None:
        self.directory.remove(_require_content_id(content_id))
        LOG.debug("blob_removed", content_id=content_id)

    def exists(self, content_id: str) -> bool:
        return self.directory.exists(_require_content_id(content_id))

    def content_ids(self) -> Set[str]:
        """Every key in the directory shaped like a content id."""
        return {k for k in self.directory.list() if is_content_id(k)}
