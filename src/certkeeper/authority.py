"""
Certificate Authority

Coordinates serial allocation, record construction, the external signer and
the record store for issuing and renewing certificates, and lays out a new
CA home on ``initialize``.

Every operation runs strictly in this order:
allocate serial -> build record -> sign -> persist (-> mark original renewed).
A record is only written once the signer has returned successfully.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Union

from certkeeper.config import ConfigResolver
from certkeeper.exceptions import ValidationError
from certkeeper.keys import generate_ca_key, import_ca_key
from certkeeper.record import CertificateRecord, CertState, CertType
from certkeeper.serial import DEFAULT_START_SERIAL, SerialAllocator
from certkeeper.signer import Signer, SigningRequest, SSHKeygenSigner
from certkeeper.store import CertificateStore

logger = logging.getLogger(__name__)

CA_DIR_MODE = 0o700


class CertificateAuthority:
    """Issues and renews SSH certificates for one CA home.

    Collaborators not passed explicitly are built from *config* each time
    they are used, so later overrides on the resolver take effect.

    Args:
        config: Resolved configuration for this CA.
        allocator: Serial allocator (defaults to the configured ``serial_file``).
        store: Record store (defaults to the configured ``certs_dir``).
        signer: Signer (defaults to ``ssh-keygen`` from ``signer_command``).

    Example:
        >>> ca = CertificateAuthority(ConfigResolver())    # doctest: +SKIP
        >>> ca.initialize(start_serial=1)                  # doctest: +SKIP
        >>> record = ca.issue("alice", "user", pubkey, principals=["alice"])  # doctest: +SKIP
        >>> ca.renew(record.serial).serial                 # doctest: +SKIP
        2
    """

    def __init__(
        self,
        config: ConfigResolver,
        allocator: Optional[SerialAllocator] = None,
        store: Optional[CertificateStore] = None,
        signer: Optional[Signer] = None,
    ) -> None:
        self.config = config
        self._allocator = allocator
        self._store = store
        self._signer = signer

    @property
    def allocator(self) -> SerialAllocator:
        if self._allocator is not None:
            return self._allocator
        return SerialAllocator(self.config.resolve_path("serial_file"))

    @property
    def store(self) -> CertificateStore:
        if self._store is not None:
            return self._store
        return CertificateStore(self.config.resolve_path("certs_dir"))

    @property
    def signer(self) -> Signer:
        if self._signer is not None:
            return self._signer
        return SSHKeygenSigner(
            command=str(self.config.resolve("signer_command")),
            scratch_dir=self.config.resolve_path("tmp_dir"),
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize(
        self,
        start_serial: int = DEFAULT_START_SERIAL,
        user_ca_key: Optional[Union[str, Path]] = None,
        host_ca_key: Optional[Union[str, Path]] = None,
        force: bool = False,
    ) -> dict[CertType, Path]:
        """Create the CA directory layout, CA keys and serial counter.

        CA keys are imported from the given paths; otherwise an existing key
        is kept, and a missing one is generated.

        Returns:
            CA private key path per certificate type.

        Raises:
            SerialAllocationError: If the CA is already initialized and
                *force* is not set, or *start_serial* would move the counter
                back.
            ConfigError: If a key to import does not exist or cannot be
                copied. The counter is left unseeded, so init can be rerun.
        """
        allocator = self.allocator
        allocator.check_seed(start_serial, force=force)

        for key in ("base_dir", "ca_dir", "certs_dir", "tmp_dir"):
            self.config.resolve_path(key).mkdir(parents=True, exist_ok=True)
        os.chmod(self.config.resolve_path("ca_dir"), CA_DIR_MODE)

        ca_keys: dict[CertType, Path] = {}
        for cert_type, source in ((CertType.USER, user_ca_key), (CertType.HOST, host_ca_key)):
            dest = self.config.ca_key_for(cert_type)
            if source is not None:
                import_ca_key(source, dest)
            elif dest.exists():
                logger.info("Keeping existing %s CA key %s", cert_type.value, dest)
            else:
                generate_ca_key(dest, comment=f"certkeeper-{cert_type.value}-ca")
            ca_keys[cert_type] = dest

        # Seeded last: a counter on disk marks the CA as initialized.
        allocator.initialize(start=start_serial, force=force)

        logger.info(
            "Initialized CA at %s (next serial %d)",
            self.config.resolve_path("base_dir"),
            start_serial,
        )
        return ca_keys

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(
        self,
        identity: str,
        cert_type: Union[CertType, str],
        pubkey: str,
        principals: Iterable[str] = (),
        options: Iterable[str] = (),
        validity: Optional[str] = None,
    ) -> CertificateRecord:
        """Issue a new certificate.

        Args:
            identity: Subject identity, used as the certificate key id.
            cert_type: ``user`` or ``host``.
            pubkey: OpenSSH public key text.
            principals: Login names or hostnames the certificate is valid for.
            options: Signer directives (``-O``), in order.
            validity: Validity interval; defaults to the type's configured value.

        Returns:
            The stored ``ISSUED`` record.

        Raises:
            ValidationError: If identity or pubkey is empty, or the type is unknown.
            SerialAllocationError: If no serial can be allocated.
            SignerInvocationError: If signing fails. Nothing is stored.
        """
        if not identity or not identity.strip():
            raise ValidationError("Certificate identity is required")
        if not pubkey or not pubkey.strip():
            raise ValidationError(f"Public key is required to issue a certificate for {identity!r}")
        cert_type = _coerce_type(cert_type)
        validity = validity or self.config.validity_for(cert_type)

        serial = self.allocator.next_serial()
        record = CertificateRecord(
            id=identity,
            type=cert_type,
            pubkey=pubkey.strip(),
            principals=list(principals),
            options=list(options),
            validity=validity,
            serial=serial,
        )
        self._sign(record)
        self.store.save(record)
        logger.info("Issued %s certificate %d for %s", cert_type.value, serial, identity)
        return record

    def renew(self, serial: int, validity: Optional[str] = None) -> CertificateRecord:
        """Reissue the certificate stored under *serial* with a fresh serial.

        The new record copies identity, type, pubkey, principals and options
        from the original. The original is marked ``RENEWED`` only after the
        new record has been signed and stored.

        Raises:
            StoreNotFoundError: If no record exists for *serial*.
            ValidationError: If the record was already renewed.
            SignerInvocationError: If signing fails; the original is untouched.
        """
        original = self.store.load(serial)
        if original.state is not CertState.ISSUED:
            raise ValidationError(
                f"Certificate {serial} is already {original.state.value}; renew its successor"
            )

        new_serial = self.allocator.next_serial()
        renewed = CertificateRecord(
            id=original.id,
            type=original.type,
            pubkey=original.pubkey,
            principals=list(original.principals),
            options=list(original.options),
            validity=validity or self.config.validity_for(original.type),
            serial=new_serial,
        )
        self._sign(renewed)
        self.store.save(renewed)

        original.mark_renewed()
        self.store.save(original)
        logger.info("Renewed certificate %d as %d for %s", serial, new_serial, original.id)
        return renewed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, serial: int) -> CertificateRecord:
        return self.store.load(serial)

    def history(self, identity: str) -> list[CertificateRecord]:
        """All records issued for *identity*, oldest first."""
        return [record for record in self.store.iter_records() if record.id == identity]

    def _sign(self, record: CertificateRecord) -> None:
        request = SigningRequest(
            pubkey=record.pubkey,
            identity=record.id,
            cert_type=record.type,
            principals=record.principals,
            options=record.options,
            validity=record.validity,
            serial=record.serial,
            ca_key=self.config.ca_key_for(record.type),
        )
        record.attach_certkey(self.signer.sign(request))


def _coerce_type(cert_type: Union[CertType, str]) -> CertType:
    try:
        return CertType(cert_type)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown certificate type {cert_type!r}; expected 'user' or 'host'"
        ) from exc
