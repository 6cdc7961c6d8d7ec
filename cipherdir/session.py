"""
Session / consistency manager.

A session binds one directory and one password to the loaded index and is
the only entry point for callers. It enforces the ordering that keeps the
index and the blob set consistent across interruptions:

* adding writes the blob first and then rewrites the index, so a crash in
  between leaves an orphaned blob, never a dangling reference;
* deleting rewrites the index first and then removes the blob, for the
  same reason.

Mutations are serialized by a per-session lock; reads of distinct blobs
only snapshot the entry list and may run concurrently.
"""
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .addressing import mint, sanitize_name
from .blobstore import BlobStore
from .directory import Directory
from .envelope import seal_bytes, open_bytes
from .errors import IncorrectPassword, IntegrityInconsistency, NotFound, SessionStateError
from .index import MetadataIndex
from .logging import get_logger
from .models import DEFAULT_MEDIA_TYPE, IndexEntry, KdfParams, utcnow

LOG = get_logger()

SORT_KEYS = {
    "name": lambda e: (e.name, e.created),
    "type": lambda e: (e.media_type, e.name),
    "date": lambda e: (e.created, e.name),
}


class SessionState(str, Enum):
    NO_DIRECTORY = "no_directory"
    DIRECTORY_BOUND = "directory_bound"
    INDEX_LOADED = "index_loaded"


@dataclass
class ConsistencyReport:
    dangling: List[str] = field(default_factory=list)
    orphans: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.dangling


def sort_entries(entries, key: str = "date", reverse: bool = False) -> List[IndexEntry]:
    """Presentation ordering by `name`, `type` or `date`; the index itself stays in insertion order."""
    try:
        sort_key = SORT_KEYS[key]
    except KeyError:
        raise ValueError(f"unknown sort key {key!r}; use one of {', '.join(SORT_KEYS)}") from None
    return sorted(entries, key=sort_key, reverse=reverse)


class Session:
    def __init__(self, kdf_params: KdfParams = KdfParams()):
        self.kdf_params = kdf_params
        self.state = SessionState.NO_DIRECTORY
        self.directory: Optional[Directory] = None
        self._blobs: Optional[BlobStore] = None
        self._index: Optional[MetadataIndex] = None
        self._password: Optional[str] = None
        self._entries: List[IndexEntry] = []
        self._lock = threading.RLock()

    # -- lifecycle ---------------------------------------------------------

    def bind_directory(self, directory: Directory) -> None:
        with self._lock:
            self._clear()
            self.directory = directory
            self._blobs = BlobStore(directory)
            self._index = MetadataIndex(directory, self.kdf_params)
            self.state = SessionState.DIRECTORY_BOUND
            LOG.info("directory_bound", directory=repr(directory))

    def unlock(self, password: str) -> bool:
        """Load (or create) the index; returns True if a fresh index was created."""
        with self._lock:
            self._require(SessionState.DIRECTORY_BOUND)
            if not password:
                raise ValueError("password must not be empty")
            try:
                entries, created = self._index.load_or_init(password)
            except IncorrectPassword:
                LOG.warning("unlock_failed", directory=repr(self.directory))
                raise
            self._password = password
            self._entries = entries
            self.state = SessionState.INDEX_LOADED
            LOG.info("session_unlocked", directory=repr(self.directory), entries=len(entries), created=created)
            return created

    def lock(self) -> None:
        with self._lock:
            if self.state is SessionState.NO_DIRECTORY:
                raise SessionStateError("no directory bound")
            self._clear()
            self.state = SessionState.DIRECTORY_BOUND
            LOG.info("session_locked", directory=repr(self.directory))

    def _clear(self):
        self._password = None
        self._entries = []

    def _require(self, state: SessionState):
        if self.state is not state:
            raise SessionStateError(f"operation requires state {state.value}, session is {self.state.value}")

    # -- queries -----------------------------------------------------------

    @property
    def entries(self) -> Tuple[IndexEntry, ...]:
        self._require(SessionState.INDEX_LOADED)
        return tuple(self._entries)

    def find(self, content_id: str) -> IndexEntry:
        self._require(SessionState.INDEX_LOADED)
        for entry in self._entries:
            if entry.content_id == content_id:
                return entry
        raise NotFound(f"no entry with content id {content_id}")

    def search(self, query: str) -> List[IndexEntry]:
        """Entries whose name, type or ISO date contain `query`, case-insensitively."""
        needle = (query or "").lower()
        return [
            e for e in self.entries
            if needle in (e.name + e.media_type + e.created.isoformat()).lower()
        ]

    def read_file(self, content_id: str) -> bytes:
        with self._lock:
            entry = self.find(content_id)
            password = self._password
        try:
            raw = self._blobs.get(entry.content_id)
        except NotFound as exc:
            LOG.error("dangling_reference", content_id=content_id, name=entry.name)
            raise IntegrityInconsistency(f"blob for {entry.name} ({content_id}) is missing") from exc
        return open_bytes(raw, password)

    # -- mutations ---------------------------------------------------------

    def add_file(self, name: str, media_type: Optional[str], data: bytes) -> IndexEntry:
        with self._lock:
            self._require(SessionState.INDEX_LOADED)
            clean_name = sanitize_name(name)
            content_id = mint(clean_name, len(data))
            self._blobs.put(content_id, seal_bytes(data, self._password, self.kdf_params))
            entry = IndexEntry(
                name=clean_name,
                media_type=media_type or DEFAULT_MEDIA_TYPE,
                created=utcnow(),
                content_id=content_id,
                size=len(data),
            )
            updated = self._entries + [entry]
            self._index.persist(updated, self._password)
            self._entries = updated
            LOG.info("file_added", content_id=content_id, name=clean_name, size=len(data))
            return entry

    def delete_file(self, content_id: str) -> IndexEntry:
        with self._lock:
            entry = self.find(content_id)
            updated = [e for e in self._entries if e.content_id != content_id]
            self._index.persist(updated, self._password)
            self._entries = updated
            try:
                self._blobs.remove(content_id)
            except NotFound:
                LOG.info("blob_already_absent", content_id=content_id)
            except OSError as exc:
                LOG.warning("blob_remove_failed", content_id=content_id, error=str(exc))
            LOG.info("file_deleted", content_id=content_id, name=entry.name)
            return entry

    # -- maintenance -------------------------------------------------------

    def check(self) -> ConsistencyReport:
        """Compare the live index against the blobs present in the directory."""
        with self._lock:
            self._require(SessionState.INDEX_LOADED)
            present = self._blobs.content_ids()
            live = [e.content_id for e in self._entries]
        report = ConsistencyReport(
            dangling=[cid for cid in live if cid not in present],
            orphans=sorted(present - set(live)),
        )
        if report.dangling:
            LOG.error("index_dangling_references", count=len(report.dangling))
        return report

    def collect_garbage(self) -> List[str]:
        """Remove blobs no live entry references; returns the removed content ids."""
        with self._lock:
            removed = []
            for content_id in self.check().orphans:
                try:
                    self._blobs.remove(content_id)
                except NotFound:
                    continue
                removed.append(content_id)
            LOG.info("garbage_collected", removed=len(removed))
            return removed
