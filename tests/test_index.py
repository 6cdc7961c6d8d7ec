import json
import unittest
from datetime import datetime, timezone
from unittest import mock

from cipherdir.addressing import is_content_id, mint
from cipherdir.directory import MemoryDirectory
from cipherdir.envelope import decode, open_bytes, seal_bytes
from cipherdir.errors import AccessDenied, IncorrectPassword, MalformedEnvelope
from cipherdir.index import INDEX_KEY, QUARANTINE_PREFIX, MetadataIndex, decode_index
from cipherdir.models import DEFAULT_MEDIA_TYPE, IndexEntry

from support import FAST_KDF


def make_entry(name="a.txt", media_type="text/plain", size=1):
    return IndexEntry(name=name, media_type=media_type, content_id=mint(name, size), size=size)


class LoadOrInitTests(unittest.TestCase):
    def setUp(self):
        self.directory = MemoryDirectory()
        self.index = MetadataIndex(self.directory, FAST_KDF)

    def test_creates_empty_index(self):
        entries, created = self.index.load_or_init("p@ss")
        self.assertTrue(created)
        self.assertEqual(entries, [])
        self.assertEqual(self.directory.list(), {INDEX_KEY})
        self.assertEqual(json.loads(open_bytes(self.directory.get(INDEX_KEY), "p@ss")), {"version": 1, "entries": []})

    def test_loads_existing_index(self):
        entry = make_entry()
        self.index.persist([entry], "p@ss")
        entries, created = self.index.load_or_init("p@ss")
        self.assertFalse(created)
        self.assertEqual(entries, [entry])

    def test_wrong_password_does_not_touch_directory(self):
        self.index.persist([make_entry()], "p@ss")
        before = self.directory.get(INDEX_KEY)
        with self.assertRaises(IncorrectPassword):
            self.index.load_or_init("wrong")
        self.assertEqual(self.directory.get(INDEX_KEY), before)
        self.assertEqual(self.directory.list(), {INDEX_KEY})

    def test_malformed_envelope_is_quarantined_and_reinitialized(self):
        self.directory.put(INDEX_KEY, b"garbage that is not an envelope")
        with mock.patch("cipherdir.index.LOG") as log:
            entries, created = self.index.load_or_init("p@ss")
        self.assertTrue(created)
        self.assertEqual(entries, [])
        quarantined = [k for k in self.directory.list() if k.startswith(QUARANTINE_PREFIX)]
        self.assertEqual(len(quarantined), 1)
        self.assertEqual(self.directory.get(quarantined[0]), b"garbage that is not an envelope")
        events = [c.args[0] for c in log.warning.call_args_list]
        self.assertIn("index_malformed", events)

    def test_quarantines_in_the_same_second_do_not_collide(self):
        frozen = datetime(2026, 1, 1, tzinfo=timezone.utc)
        with mock.patch("cipherdir.index.utcnow", return_value=frozen), mock.patch("cipherdir.index.LOG"):
            self.directory.put(INDEX_KEY, b"first broken index")
            self.index.load_or_init("p@ss")
            self.directory.put(INDEX_KEY, b"second broken index")
            self.index.load_or_init("p@ss")
        quarantined = sorted(k for k in self.directory.list() if k.startswith(QUARANTINE_PREFIX))
        self.assertEqual(len(quarantined), 2)
        self.assertEqual(
            {self.directory.get(k) for k in quarantined},
            {b"first broken index", b"second broken index"},
        )
        self.assertTrue(all(k.startswith(QUARANTINE_PREFIX + "20260101T000000Z-") for k in quarantined))
        self.assertFalse(any(is_content_id(k) for k in quarantined))

    def test_malformed_payload_is_reinitialized(self):
        self.directory.put(INDEX_KEY, seal_bytes(b"[1, 2, 3]", "p@ss", FAST_KDF))
        entries, created = self.index.load_or_init("p@ss")
        self.assertTrue(created)
        self.assertEqual(entries, [])

    def test_missing_index_on_read_only_directory(self):
        self.directory.writable = False
        with self.assertRaises(AccessDenied):
            self.index.load_or_init("p@ss")


class PersistTests(unittest.TestCase):
    def setUp(self):
        self.directory = MemoryDirectory()
        self.index = MetadataIndex(self.directory, FAST_KDF)

    def test_preserves_insertion_order(self):
        entries = [make_entry("c.txt"), make_entry("a.txt"), make_entry("b.txt")]
        self.index.persist(entries, "p@ss")
        self.assertEqual([e.name for e in self.index.load("p@ss")], ["c.txt", "a.txt", "b.txt"])

    def test_persist_twice_gives_new_envelope_same_entries(self):
        entries = [make_entry()]
        self.index.persist(entries, "p@ss")
        first = self.directory.get(INDEX_KEY)
        self.index.persist(entries, "p@ss")
        second = self.directory.get(INDEX_KEY)
        self.assertNotEqual(decode(first).salt, decode(second).salt)
        self.assertNotEqual(decode(first).nonce, decode(second).nonce)
        self.assertEqual(
            decode_index(open_bytes(first, "p@ss")),
            decode_index(open_bytes(second, "p@ss")),
        )

    def test_records_kdf_params(self):
        self.index.persist([], "p@ss")
        self.assertEqual(decode(self.directory.get(INDEX_KEY)).kdf_params, FAST_KDF)

    def test_timestamps_are_utc(self):
        self.index.persist([make_entry()], "p@ss")
        (entry,) = self.index.load("p@ss")
        self.assertIsNotNone(entry.created.tzinfo)
        self.assertEqual(entry.created.utcoffset().total_seconds(), 0)


class DecodeIndexTests(unittest.TestCase):
    def test_duplicate_content_ids_rejected(self):
        entry = make_entry()
        payload = json.dumps({"version": 1, "entries": [entry.model_dump(mode="json")] * 2}).encode()
        with self.assertRaises(MalformedEnvelope):
            decode_index(payload)

    def test_media_type_defaults(self):
        entry = IndexEntry(name="x.bin", media_type="", content_id=mint("x.bin", 0))
        self.assertEqual(entry.media_type, DEFAULT_MEDIA_TYPE)

    def test_negative_size_rejected(self):
        with self.assertRaises(ValueError):
            IndexEntry(name="x.bin", content_id=mint("x.bin", 0), size=-1)


if __name__ == "__main__":
    unittest.main()
