"""
certkeeper - SSH certificate authority control plane

Issues, renews and tracks SSH user and host certificates. Signing is
delegated to ``ssh-keygen``; certkeeper owns the serial counter, the
certificate records and their on-disk layout.

Version: 0.3.0
"""

__version__ = "0.3.0"

from .authority import CertificateAuthority
from .config import ConfigResolver, ConfigFile, DEFAULT_CONFIG_PATHS, ENV_BINDINGS
from .record import CertificateRecord, CertState, CertType
from .serial import SerialAllocator
from .signer import Signer, SigningRequest, SSHKeygenSigner
from .store import CertificateStore

from .exceptions import (
    CertKeeperError,
    ConfigError,
    SerialAllocationError,
    StoreError,
    StoreNotFoundError,
    StoreParseError,
    SignerInvocationError,
    ValidationError,
)

__all__ = [
    # Version
    "__version__",
    # Core
    "CertificateAuthority",
    "ConfigResolver",
    "ConfigFile",
    "DEFAULT_CONFIG_PATHS",
    "ENV_BINDINGS",
    "CertificateRecord",
    "CertState",
    "CertType",
    "SerialAllocator",
    "Signer",
    "SigningRequest",
    "SSHKeygenSigner",
    "CertificateStore",
    # Exceptions
    "CertKeeperError",
    "ConfigError",
    "SerialAllocationError",
    "StoreError",
    "StoreNotFoundError",
    "StoreParseError",
    "SignerInvocationError",
    "ValidationError",
]
