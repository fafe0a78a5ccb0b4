"""Tests for the certificate record model."""

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from certkeeper.exceptions import ValidationError
from certkeeper.record import SCHEMA_VERSION, CertificateRecord, CertState, CertType

ALICE_PUBKEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIK0wmN/Cr3JXqmLW7u+g9pTh+wyqDHpSQEIQczXkVx9q alice@laptop"


def _make_record(**overrides) -> CertificateRecord:
    defaults = {
        "id": "alice",
        "type": CertType.USER,
        "pubkey": ALICE_PUBKEY,
        "principals": ["alice", "admin"],
        "options": ["permit-pty"],
        "validity": "+52w",
        "serial": 1,
    }
    defaults.update(overrides)
    return CertificateRecord(**defaults)


class TestCertificateRecord:
    def test_defaults(self):
        record = _make_record()
        assert record.state is CertState.ISSUED
        assert record.schema_version == SCHEMA_VERSION
        assert record.certkey is None

    def test_empty_identity_rejected(self):
        with pytest.raises(ValidationError, match="identity"):
            _make_record(id="  ")

    def test_empty_pubkey_rejected(self):
        with pytest.raises(ValidationError, match="Public key"):
            _make_record(pubkey="")

    def test_unknown_type_rejected(self):
        with pytest.raises(PydanticValidationError):
            _make_record(type="robot")

    def test_negative_serial_rejected(self):
        with pytest.raises(PydanticValidationError):
            _make_record(serial=-3)

    @pytest.mark.parametrize(
        "field, value",
        [("id", "mallory"), ("type", CertType.HOST), ("pubkey", "ssh-rsa AAAA"), ("serial", 2)],
    )
    def test_identifying_fields_are_frozen(self, field, value):
        record = _make_record()
        with pytest.raises(PydanticValidationError, match="frozen"):
            setattr(record, field, value)
        assert record.model_dump()[field] == _make_record().model_dump()[field]


class TestLifecycle:
    def test_attach_certkey_once(self):
        record = _make_record()
        record.attach_certkey("cert-blob")
        assert record.certkey == "cert-blob"
        with pytest.raises(ValidationError, match="already carries"):
            record.attach_certkey("other-blob")

    def test_attach_empty_certkey(self):
        with pytest.raises(ValidationError, match="empty certificate"):
            _make_record().attach_certkey("   ")

    def test_mark_renewed(self):
        record = _make_record()
        record.mark_renewed()
        assert record.state is CertState.RENEWED

    def test_mark_renewed_twice(self):
        record = _make_record(state=CertState.RENEWED)
        with pytest.raises(ValidationError, match="only ISSUED"):
            record.mark_renewed()


class TestDocument:
    def test_document_is_canonical(self):
        record = _make_record(certkey="cert-blob")
        text = record.to_document()
        data = json.loads(text)
        assert list(data) == sorted(data)
        assert text.endswith("\n")
        assert data["state"] == "ISSUED"
        assert data["type"] == "user"
        assert data["principals"] == ["alice", "admin"]

    def test_document_is_stable(self):
        a = _make_record(certkey="cert-blob")
        b = CertificateRecord.from_document(a.to_document())
        assert b == a
        assert b.to_document() == a.to_document()

    def test_schema_version_optional_on_load(self):
        data = json.loads(_make_record(certkey="c").to_document())
        del data["schema_version"]
        record = CertificateRecord.from_document(json.dumps(data))
        assert record.schema_version == SCHEMA_VERSION

    def test_unknown_field_rejected(self):
        data = json.loads(_make_record(certkey="c").to_document())
        data["revoked"] = True
        with pytest.raises(PydanticValidationError):
            CertificateRecord.from_document(json.dumps(data))

    def test_missing_field_rejected(self):
        data = json.loads(_make_record(certkey="c").to_document())
        del data["pubkey"]
        with pytest.raises(PydanticValidationError):
            CertificateRecord.from_document(json.dumps(data))

    def test_future_schema_version_rejected(self):
        data = json.loads(_make_record(certkey="c").to_document())
        data["schema_version"] = 2
        with pytest.raises(PydanticValidationError):
            CertificateRecord.from_document(json.dumps(data))
