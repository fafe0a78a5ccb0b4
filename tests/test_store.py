"""Tests for the hash-sharded certificate store."""

import hashlib
import json

import pytest

from certkeeper.exceptions import StoreNotFoundError, StoreParseError, ValidationError
from certkeeper.record import CertificateRecord, CertState, CertType
from certkeeper.store import CertificateStore, serial_digest


@pytest.fixture
def store(tmp_path):
    return CertificateStore(tmp_path / "certs")


def _signed_record(pubkey: str, serial: int, identity: str = "alice") -> CertificateRecord:
    return CertificateRecord(
        id=identity,
        type=CertType.USER,
        pubkey=pubkey,
        certkey=f"cert-{serial}",
        principals=[identity],
        options=["permit-pty", "permit-agent-forwarding"],
        validity="+52w",
        serial=serial,
    )


class TestPathFor:
    def test_layout(self, store):
        digest = hashlib.sha256(b"1").hexdigest()
        assert serial_digest(1) == digest
        assert store.path_for(1) == store.root / digest[:2] / digest[2:4] / f"{digest}.json"

    def test_deterministic(self, store):
        assert store.path_for(12345) == store.path_for(12345)
        assert CertificateStore(store.root).path_for(12345) == store.path_for(12345)

    def test_distinct_serials_distinct_paths(self, store):
        paths = {store.path_for(s) for s in range(500)}
        assert len(paths) == 500

    def test_does_not_create_by_default(self, store):
        path = store.path_for(7)
        assert not path.parent.exists()

    def test_create_dirs_is_idempotent(self, store):
        path = store.path_for(7, create_dirs=True)
        assert path.parent.is_dir()
        assert store.path_for(7, create_dirs=True) == path
        assert not path.exists()


class TestSaveLoad:
    def test_round_trip(self, store, alice_pubkey):
        record = _signed_record(alice_pubkey, 1)
        path = store.save(record)
        assert path == store.path_for(1)
        assert store.load(1) == record

    def test_document_on_disk_is_sorted_json(self, store, alice_pubkey):
        path = store.save(_signed_record(alice_pubkey, 3))
        data = json.loads(path.read_text(encoding="utf-8"))
        assert list(data) == sorted(data)
        assert data["serial"] == 3
        assert not path.with_suffix(".json.tmp").exists()

    def test_save_overwrites(self, store, alice_pubkey):
        record = _signed_record(alice_pubkey, 4)
        store.save(record)
        record.mark_renewed()
        store.save(record)
        assert store.load(4).state is CertState.RENEWED

    def test_save_requires_serial(self, store, alice_pubkey):
        record = _signed_record(alice_pubkey, 1).model_copy(update={"serial": None})
        with pytest.raises(ValidationError, match="without a serial"):
            store.save(record)

    def test_issued_without_certkey_rejected(self, store, alice_pubkey):
        record = _signed_record(alice_pubkey, 9)
        record.certkey = None
        with pytest.raises(ValidationError, match="without a certificate"):
            store.save(record)
        assert not store.exists(9)

    def test_load_missing(self, store):
        with pytest.raises(StoreNotFoundError, match="serial 99"):
            store.load(99)

    def test_load_garbage(self, store):
        path = store.path_for(5, create_dirs=True)
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StoreParseError, match="not valid JSON"):
            store.load(5)

    def test_load_wrong_shape(self, store):
        path = store.path_for(5, create_dirs=True)
        path.write_text(json.dumps({"id": "alice"}), encoding="utf-8")
        with pytest.raises(StoreParseError, match="malformed"):
            store.load(5)

    def test_load_serial_mismatch(self, store, alice_pubkey):
        path = store.path_for(6, create_dirs=True)
        path.write_text(_signed_record(alice_pubkey, 8).to_document(), encoding="utf-8")
        with pytest.raises(StoreParseError, match="expected 6"):
            store.load(6)

    def test_exists(self, store, alice_pubkey):
        assert store.exists(1) is False
        store.save(_signed_record(alice_pubkey, 1))
        assert store.exists(1) is True


class TestIterRecords:
    def test_empty_store(self, store):
        assert list(store.iter_records()) == []

    def test_ordered_by_serial(self, store, alice_pubkey):
        for serial in (10, 2, 7):
            store.save(_signed_record(alice_pubkey, serial))
        assert [r.serial for r in store.iter_records()] == [2, 7, 10]

    def test_unreadable_document(self, store, alice_pubkey):
        store.save(_signed_record(alice_pubkey, 1))
        store.path_for(2, create_dirs=True).write_bytes(b"\xff\xfe{")
        with pytest.raises(StoreNotFoundError, match="Cannot read certificate document"):
            list(store.iter_records())
