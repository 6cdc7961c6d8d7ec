import os
from typing import Iterable, List, Tuple

from pydantic import ValidationError

from .directory import Directory
from .envelope import seal_bytes, open_bytes
from .errors import MalformedEnvelope, NotFound
from .logging import get_logger
from .models import IndexEntry, IndexFile, KdfParams, utcnow

LOG = get_logger()

# Contains a non-hex character and is not 64 long, so no content id can equal it.
INDEX_KEY = "data"
QUARANTINE_PREFIX = INDEX_KEY + ".corrupt-"
QUARANTINE_SUFFIX_BYTES = 4


def decode_index(plaintext: bytes) -> IndexFile:
    try:
        return IndexFile.model_validate_json(plaintext)
    except (ValidationError, ValueError) as exc:
        raise MalformedEnvelope("index payload is not a valid entry list") from exc


class MetadataIndex:
    """The single encrypted record listing every live file in a directory."""

    def __init__(self, directory: Directory, kdf_params: KdfParams = KdfParams()):
        self.directory = directory
        self.kdf_params = kdf_params

    def load(self, password: str) -> List[IndexEntry]:
        raw = self.directory.get(INDEX_KEY)
        return list(decode_index(open_bytes(raw, password)).entries)

    def load_or_init(self, password: str) -> Tuple[List[IndexEntry], bool]:
        """
        Read and open the index; create an empty one if there is none.

        IncorrectPassword propagates untouched and the directory is left as is.
        A present but unreadable index is quarantined before reinitialization.
        """
        try:
            raw = self.directory.get(INDEX_KEY)
        except NotFound:
            LOG.info("index_missing", directory=repr(self.directory))
            raw = None
        if raw is not None:
            try:
                return list(decode_index(open_bytes(raw, password)).entries), False
            except MalformedEnvelope as exc:
                LOG.warning("index_malformed", directory=repr(self.directory), error=str(exc))
                self._quarantine(raw)
        self.persist([], password)
        LOG.info("index_created", directory=repr(self.directory))
        return [], True

    def persist(self, entries: Iterable[IndexEntry], password: str) -> None:
        """Seal the full entry collection and overwrite the index in one write."""
        payload = IndexFile(entries=list(entries)).model_dump_json().encode("utf-8")
        self.directory.ensure_writable()
        self.directory.put(INDEX_KEY, seal_bytes(payload, password, self.kdf_params))

    def _quarantine(self, raw: bytes) -> str:
        stamp = utcnow().strftime("%Y%m%dT%H%M%SZ")
        key = f"{QUARANTINE_PREFIX}{stamp}-{os.urandom(QUARANTINE_SUFFIX_BYTES).hex()}"
        self.directory.put(key, raw)
        LOG.warning("index_quarantined", directory=repr(self.directory), quarantine_key=key)
        return key
