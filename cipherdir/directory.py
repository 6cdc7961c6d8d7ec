"""
Directory capability consumed by the store.

The store never touches paths itself: it asks a `Directory` to get, put,
remove and list opaque byte resources by key. `FolderDirectory` maps a key
`k` to the file `<root>/k.enc`; `MemoryDirectory` keeps everything in a dict.
"""
import os, pathlib, re, stat, tempfile, threading
from abc import ABC, abstractmethod
from typing import Dict, Set

from .errors import AccessDenied, NotFound
from .logging import get_logger

LOG = get_logger()

KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
FILE_SUFFIX = ".enc"
NOFOLLOW_FLAG = getattr(os, "O_NOFOLLOW", 0)


def validate_key(key: str) -> str:
    if not isinstance(key, str) or not KEY_PATTERN.fullmatch(key) or ".." in key:
        raise ValueError(f"invalid storage key {key!r}")
    return key


class Directory(ABC):
    """Abstract named-blob storage the engine is layered over."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the bytes stored under `key`, raising NotFound if absent."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Create or atomically replace the resource under `key`."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete the resource under `key`, raising NotFound if absent."""

    @abstractmethod
    def list(self) -> Set[str]:
        """Return every key currently present."""

    def ensure_writable(self) -> None:
        """Raise AccessDenied if the directory refuses writes. Default: always writable."""

    def exists(self, key: str) -> bool:
        return key in self.list()


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------

def ensure_not_symlink(path: pathlib.Path, label: str):
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        return
    if stat.S_ISLNK(st.st_mode):
        raise AccessDenied(f"{label} {path} is a symlink, which is not allowed")


def ensure_regular_file(path: pathlib.Path, label: str):
    st = os.lstat(path)
    if not stat.S_ISREG(st.st_mode):
        raise AccessDenied(f"{label} {path} is not a regular file")
    if st.st_nlink > 1:
        raise AccessDenied(f"{label} {path} has unexpected hard links")


def safe_read_bytes(path: pathlib.Path) -> bytes:
    """
    Open and read a file while holding the descriptor, refusing symlinks.
    """
    ensure_regular_file(path, "Resource")
    flags = os.O_RDONLY
    if NOFOLLOW_FLAG:
        flags |= NOFOLLOW_FLAG
    fd = os.open(path, flags)
    with os.fdopen(fd, "rb") as f:
        return f.read()


def write_secure_file(path: pathlib.Path, data: bytes):
    """Write-temp-fsync-rename with mode 0600, so readers never see a truncated file."""
    ensure_not_symlink(path.parent, "Parent directory")
    ensure_not_symlink(path, "Target file")
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        if os.name == "posix":
            os.chmod(path, 0o600)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def canonicalize_path(path) -> pathlib.Path:
    """Return an absolute, user-expanded version of the provided path."""
    return pathlib.Path(path).expanduser().absolute()


class FolderDirectory(Directory):
    """A plain folder; key `k` is stored in the file `k.enc`."""

    def __init__(self, root):
        self.root = canonicalize_path(root)
        ensure_not_symlink(self.root, "Folder")
        if not self.root.is_dir():
            raise NotFound(f"folder {self.root} does not exist")

    def __repr__(self):
        return f"FolderDirectory({str(self.root)!r})"

    def _path(self, key: str) -> pathlib.Path:
        return self.root / (validate_key(key) + FILE_SUFFIX)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return safe_read_bytes(path)
        except FileNotFoundError as exc:
            raise NotFound(f"{key} not found in {self.root}") from exc
        except PermissionError as exc:
            raise AccessDenied(f"read access to {path} denied") from exc

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        self.ensure_writable()
        try:
            write_secure_file(path, data)
        except PermissionError as exc:
            raise AccessDenied(f"write access to {path} denied") from exc

    def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            ensure_not_symlink(path, "Resource")
            os.remove(path)
        except FileNotFoundError as exc:
            raise NotFound(f"{key} not found in {self.root}") from exc
        except PermissionError as exc:
            raise AccessDenied(f"cannot remove {path}") from exc

    def list(self) -> Set[str]:
        keys = set()
        for entry in os.scandir(self.root):
            if not entry.is_file(follow_symlinks=False) or not entry.name.endswith(FILE_SUFFIX):
                continue
            key = entry.name[: -len(FILE_SUFFIX)]
            if KEY_PATTERN.fullmatch(key):
                keys.add(key)
        return keys

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def ensure_writable(self) -> None:
        ensure_not_symlink(self.root, "Folder")
        if not os.access(self.root, os.W_OK | os.X_OK):
            LOG.warning("folder_not_writable", folder=str(self.root))
            raise AccessDenied(f"write access to {self.root} denied")


class MemoryDirectory(Directory):
    """In-process directory; `writable=False` makes every write raise AccessDenied."""

    def __init__(self, writable: bool = True):
        self.writable = writable
        self._items: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def __repr__(self):
        return f"MemoryDirectory(keys={len(self._items)})"

    def get(self, key: str) -> bytes:
        with self._lock:
            try:
                return self._items[validate_key(key)]
            except KeyError:
                raise NotFound(f"{key} not found") from None

    def put(self, key: str, data: bytes) -> None:
        validate_key(key)
        self.ensure_writable()
        with self._lock:
            self._items[key] = bytes(data)

    def remove(self, key: str) -> None:
        validate_key(key)
        self.ensure_writable()
        with self._lock:
            try:
                del self._items[key]
            except KeyError:
                raise NotFound(f"{key} not found") from None

    def list(self) -> Set[str]:
        with self._lock:
            return set(self._items)

    def ensure_writable(self) -> None:
        if not self.writable:
            raise AccessDenied("directory is read-only")
