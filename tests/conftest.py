"""Shared fixtures for certkeeper tests."""

import pytest

from certkeeper.authority import CertificateAuthority
from certkeeper.config import ConfigResolver
from certkeeper.exceptions import SignerInvocationError
from certkeeper.signer import Signer, SigningRequest

ALICE_PUBKEY = (
    "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIK0wmN/Cr3JXqmLW7u+g9pTh+wyqDHpSQEIQczXkVx9q alice@laptop"
)


class FakeSigner(Signer):
    """In-process signer that records requests and returns a predictable blob."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.requests: list[SigningRequest] = []

    def sign(self, request: SigningRequest) -> str:
        self.requests.append(request)
        if self.fail:
            raise SignerInvocationError(f"signer refused {request.identity!r}")
        return f"ssh-ed25519-cert-v01@openssh.com CERT-{request.serial} {request.identity}"


@pytest.fixture
def alice_pubkey():
    return ALICE_PUBKEY


@pytest.fixture
def ca_home(tmp_path):
    return tmp_path / "ca-home"


@pytest.fixture
def config(ca_home):
    """Resolver isolated from the real environment and config files."""
    cfg = ConfigResolver(environ={})
    cfg.load(paths=[ca_home / "absent.yaml"])
    cfg.set("base_dir", str(ca_home))
    return cfg


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def authority(config, signer):
    ca = CertificateAuthority(config, signer=signer)
    ca.initialize(start_serial=1)
    return ca
