"""
Certificate Record

One issued (or renewed) certificate, as persisted in the record store.
"""

from __future__ import annotations

import enum
import json
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from certkeeper.exceptions import ValidationError

SCHEMA_VERSION = 1


class CertType(str, enum.Enum):
    """Kind of principal a certificate is issued for."""

    USER = "user"
    HOST = "host"


class CertState(str, enum.Enum):
    """Lifecycle state of a record."""

    ISSUED = "ISSUED"
    RENEWED = "RENEWED"


class CertificateRecord(BaseModel):
    """A certificate record.

    ``id``, ``type``, ``pubkey`` and ``serial`` are fixed at construction;
    assigning to them raises ``pydantic.ValidationError``. ``certkey`` is
    filled in once the signer returns. The only state change a record ever sees is
    ``ISSUED`` to ``RENEWED`` when a newer record supersedes it.

    Example:
        >>> record = CertificateRecord(
        ...     id="alice",
        ...     type=CertType.USER,
        ...     pubkey="ssh-ed25519 AAAAC3Nza... alice@laptop",
        ...     principals=["alice"],
        ...     validity="+52w",
        ... )
        >>> record.state
        <CertState.ISSUED: 'ISSUED'>
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., frozen=True, description="Subject identity (certificate key id)")
    type: CertType = Field(..., frozen=True, description="user or host certificate")
    schema_version: Literal[1] = Field(default=SCHEMA_VERSION)
    state: CertState = Field(default=CertState.ISSUED)
    pubkey: str = Field(..., frozen=True, description="OpenSSH public key text")
    certkey: Optional[str] = Field(default=None, description="Signed certificate text")
    principals: list[str] = Field(default_factory=list)
    options: list[str] = Field(default_factory=list)
    validity: str = Field(..., description="Validity interval expression, e.g. +52w")
    serial: Optional[int] = Field(default=None, ge=0, frozen=True)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValidationError("Certificate identity must not be empty")
        return v

    @field_validator("pubkey")
    @classmethod
    def validate_pubkey(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValidationError("Public key must not be empty")
        return v

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def attach_certkey(self, certkey: str) -> None:
        """Record the signer's output. Allowed exactly once."""
        if self.certkey:
            raise ValidationError(f"Record {self.serial} already carries a certificate")
        if not certkey or not certkey.strip():
            raise ValidationError(f"Signer returned an empty certificate for {self.id!r}")
        self.certkey = certkey

    def mark_renewed(self) -> None:
        """Flip ``ISSUED`` to ``RENEWED``."""
        if self.state is not CertState.ISSUED:
            raise ValidationError(
                f"Record {self.serial} is {self.state.value}, only ISSUED records can be renewed"
            )
        self.state = CertState.RENEWED

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_document(self) -> str:
        """Canonical JSON text: sorted keys, two-space indent, trailing newline."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, indent=2) + "\n"

    @classmethod
    def from_document(cls, text: str) -> "CertificateRecord":
        """Parse a document produced by :meth:`to_document`.

        Raises:
            ValueError: If *text* is not JSON (``json.JSONDecodeError``).
            pydantic.ValidationError: If fields are missing, unknown or mistyped.
            ValidationError: If ``id`` or ``pubkey`` is empty.
        """
        return cls.model_validate(json.loads(text))
