"""
Certificate Store

Records live one JSON document per serial under a two-level sharded tree::

    <root>/<h[0:2]>/<h[2:4]>/<h>.json     where h = sha256(str(serial))

The placement is a pure function of the serial, so a record is found by
serial without any index, and no directory grows beyond 256 entries per
level before the leaves.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Iterator, Union

from pydantic import ValidationError as PydanticValidationError

from certkeeper.exceptions import (
    StoreNotFoundError,
    StoreParseError,
    ValidationError,
)
from certkeeper.record import CertificateRecord, CertState

logger = logging.getLogger(__name__)

RECORD_EXTENSION = ".json"


def serial_digest(serial: int) -> str:
    """Hex SHA-256 of the decimal serial, the record's storage key."""
    return hashlib.sha256(str(serial).encode("utf-8")).hexdigest()


class CertificateStore:
    """Filesystem-backed, hash-sharded record store.

    Args:
        root: Directory under which the sharded tree is kept.
    """

    def __init__(self, root: Union[str, Path]) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, serial: int, create_dirs: bool = False) -> Path:
        """Deterministic location of the record for *serial*."""
        digest = serial_digest(serial)
        directory = self._root / digest[0:2] / digest[2:4]
        if create_dirs:
            directory.mkdir(parents=True, exist_ok=True)
        return directory / f"{digest}{RECORD_EXTENSION}"

    def exists(self, serial: int) -> bool:
        return self.path_for(serial).is_file()

    def load(self, serial: int) -> CertificateRecord:
        """Load the record stored for *serial*.

        Raises:
            StoreNotFoundError: If the document is missing or unreadable.
            StoreParseError: If the document is not a valid record.
        """
        path = self.path_for(serial)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise StoreNotFoundError(f"No certificate with serial {serial} ({path})") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise StoreNotFoundError(f"Cannot read certificate {serial} at {path}: {exc}") from exc

        record = _parse_document(text, path)
        if record.serial != serial:
            raise StoreParseError(
                f"Record at {path} carries serial {record.serial}, expected {serial}"
            )
        return record

    def save(self, record: CertificateRecord) -> Path:
        """Write *record* to its location, replacing any previous document.

        The document is written to a sibling temp file and renamed into
        place, so readers never observe a half-written record.

        Raises:
            ValidationError: If the record has no serial, or is ``ISSUED``
                without a signed certificate.
        """
        if record.serial is None:
            raise ValidationError(f"Cannot store record for {record.id!r} without a serial")
        if record.state is CertState.ISSUED and not record.certkey:
            raise ValidationError(
                f"Refusing to store ISSUED record {record.serial} without a certificate"
            )

        path = self.path_for(record.serial, create_dirs=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(record.to_document(), encoding="utf-8")
        os.replace(tmp, path)
        logger.info(
            "Stored certificate %d (%s, %s) at %s",
            record.serial,
            record.id,
            record.state.value,
            path,
        )
        return path

    def iter_records(self) -> Iterator[CertificateRecord]:
        """Yield every stored record, ordered by serial."""
        records = [
            _parse_document(_read_document(path), path)
            for path in self._root.glob(f"??/??/*{RECORD_EXTENSION}")
        ]
        records.sort(key=lambda r: r.serial if r.serial is not None else -1)
        yield from records


def _read_document(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise StoreNotFoundError(f"Cannot read certificate document {path}: {exc}") from exc


def _parse_document(text: str, path: Path) -> CertificateRecord:
    try:
        return CertificateRecord.from_document(text)
    except json.JSONDecodeError as exc:
        raise StoreParseError(f"Certificate document {path} is not valid JSON: {exc}") from exc
    except (PydanticValidationError, ValidationError) as exc:
        raise StoreParseError(f"Certificate document {path} is malformed: {exc}") from exc
