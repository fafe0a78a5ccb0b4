"""
Certificate Signer

The cryptography happens in an external tool. ``Signer`` is the boundary;
``SSHKeygenSigner`` drives ``ssh-keygen -s`` (or any command accepting the
same flags) and returns the signed certificate text.
"""

from __future__ import annotations

import abc
import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field

from certkeeper.exceptions import SignerInvocationError
from certkeeper.record import CertType

logger = logging.getLogger(__name__)

PUBKEY_FILENAME = "key.pub"
CERT_FILENAME = "key-cert.pub"


class SigningRequest(BaseModel):
    """Everything the signer needs to produce one certificate."""

    pubkey: str = Field(..., description="OpenSSH public key text to certify")
    identity: str = Field(..., description="Certificate key id (-I)")
    cert_type: CertType = Field(default=CertType.USER)
    principals: list[str] = Field(default_factory=list)
    options: list[str] = Field(default_factory=list)
    validity: Optional[str] = Field(default=None, description="Validity interval (-V)")
    serial: Optional[int] = Field(default=None, description="Certificate serial (-z)")
    ca_key: Path = Field(..., description="CA private key used to sign (-s)")


class Signer(abc.ABC):
    """Produces a signed certificate for a public key."""

    @abc.abstractmethod
    def sign(self, request: SigningRequest) -> str:
        """Sign ``request.pubkey`` and return the certificate text.

        Raises:
            SignerInvocationError: If signing fails or yields no certificate.
        """


class SSHKeygenSigner(Signer):
    """Signs with ``ssh-keygen -s``.

    The public key is written into a private temporary directory for the
    duration of one call; the directory is removed whether the call succeeds
    or fails.

    Args:
        command: Executable to run. Defaults to ``ssh-keygen``.
        scratch_dir: Parent directory for the temporary directory. Defaults
            to the system temp location.

    Example:
        >>> signer = SSHKeygenSigner(scratch_dir=Path("/srv/ca/tmp"))  # doctest: +SKIP
        >>> signer.sign(SigningRequest(pubkey=pub, identity="alice",  # doctest: +SKIP
        ...                            ca_key=Path("/srv/ca/ca/user_ca")))
    """

    def __init__(
        self,
        command: str = "ssh-keygen",
        scratch_dir: Optional[Union[str, Path]] = None,
    ) -> None:
        self._command = command
        self._scratch_dir = Path(scratch_dir) if scratch_dir is not None else None

    def build_command(self, request: SigningRequest, pubkey_file: Path) -> list[str]:
        """Build the argument vector for one signing call."""
        cmd = [
            self._command,
            "-s",
            str(request.ca_key),
            "-I",
            request.identity,
        ]
        if request.cert_type is CertType.HOST:
            cmd.append("-h")
        if request.principals:
            cmd.extend(["-n", ",".join(request.principals)])
        if request.validity:
            cmd.extend(["-V", request.validity])
        if request.serial is not None:
            cmd.extend(["-z", str(request.serial)])
        for opt in request.options:
            cmd.extend(["-O", opt])
        cmd.append(str(pubkey_file))
        return cmd

    def sign(self, request: SigningRequest) -> str:
        if self._scratch_dir is not None:
            self._scratch_dir.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(
            prefix="certkeeper-", dir=self._scratch_dir
        ) as workdir:
            pubkey_file = Path(workdir) / PUBKEY_FILENAME
            pubkey_file.write_text(request.pubkey.strip() + "\n", encoding="utf-8")
            cmd = self.build_command(request, pubkey_file)
            logger.debug("Running signer: %s", " ".join(cmd))

            try:
                subprocess.run(cmd, capture_output=True, text=True, check=True)
            except FileNotFoundError as exc:
                raise SignerInvocationError(
                    f"Signer executable not found: {self._command}"
                ) from exc
            except subprocess.CalledProcessError as exc:
                stderr = (exc.stderr or "").strip()
                raise SignerInvocationError(
                    f"Signer exited with status {exc.returncode} for {request.identity!r}: {stderr}"
                ) from exc

            cert_file = Path(workdir) / CERT_FILENAME
            try:
                certkey = cert_file.read_text(encoding="utf-8").strip()
            except OSError as exc:
                raise SignerInvocationError(
                    f"Signer produced no certificate for {request.identity!r}"
                ) from exc

        if not certkey:
            raise SignerInvocationError(
                f"Signer produced an empty certificate for {request.identity!r}"
            )
        logger.debug(
            "Signer returned certificate for %s (serial %s)", request.identity, request.serial
        )
        return certkey
