"""
CA Key Material

Creates or imports the CA private keys that the signer is pointed at, and
computes OpenSSH-style fingerprints for display. No signing or verification
happens here.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
import shutil
from pathlib import Path
from typing import Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from certkeeper.exceptions import ConfigError, ValidationError

logger = logging.getLogger(__name__)

PRIVATE_KEY_MODE = 0o600


def public_key_path(private_key: Path) -> Path:
    return private_key.with_name(private_key.name + ".pub")


def generate_ca_key(path: Union[str, Path], comment: str = "certkeeper-ca") -> Path:
    """Generate an Ed25519 CA keypair in OpenSSH format.

    Writes the private key to *path* (mode 0600) and the public key to
    ``<path>.pub``.

    Returns:
        Path of the public key file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    private_key = ed25519.Ed25519PrivateKey.generate()
    private_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.OpenSSH,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    )

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, PRIVATE_KEY_MODE)
    with os.fdopen(fd, "wb") as f:
        f.write(private_bytes)
    os.chmod(path, PRIVATE_KEY_MODE)

    pub_path = public_key_path(path)
    pub_path.write_text(f"{public_bytes.decode()} {comment}\n", encoding="utf-8")
    logger.info("Generated Ed25519 CA key %s", path)
    return pub_path


def import_ca_key(source: Union[str, Path], dest: Union[str, Path]) -> Path:
    """Copy an existing CA private key (and its ``.pub``, if present) into place.

    Raises:
        ConfigError: If *source* does not exist or cannot be copied.
    """
    source = Path(source).expanduser()
    dest = Path(dest)
    if not source.is_file():
        raise ConfigError(f"CA key to import not found: {source}")

    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        shutil.copyfile(source, dest)
        os.chmod(dest, PRIVATE_KEY_MODE)
        source_pub = public_key_path(source)
        if source_pub.is_file():
            shutil.copyfile(source_pub, public_key_path(dest))
    except OSError as exc:
        raise ConfigError(f"Cannot import CA key {source} to {dest}: {exc}") from exc

    logger.info("Imported CA key %s to %s", source, dest)
    return dest


def fingerprint(pubkey: str) -> str:
    """``SHA256:`` fingerprint of an OpenSSH public key line, as ssh-keygen -l prints it.

    Raises:
        ValidationError: If *pubkey* is not ``<type> <base64> [comment]``.
    """
    parts = pubkey.strip().split()
    if len(parts) < 2:
        raise ValidationError("Public key must be '<type> <base64-blob> [comment]'")
    try:
        blob = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"Public key blob is not valid base64: {exc}") from exc
    digest = hashlib.sha256(blob).digest()
    return "SHA256:" + base64.b64encode(digest).decode().rstrip("=")
