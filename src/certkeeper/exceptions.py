# Copyright (c) certkeeper Contributors. All rights reserved.
# Licensed under the MIT License.
"""Centralized exception hierarchy for certkeeper.

All certkeeper exceptions inherit from CertKeeperError, so the CLI can
report any failure with one handler and a non-zero exit.
"""


class CertKeeperError(Exception):
    """Base exception for all certkeeper errors."""


class ConfigError(CertKeeperError):
    """Config file unreadable, unparseable, or naming an unknown option."""


class SerialAllocationError(CertKeeperError):
    """Serial counter file missing, malformed, or locked by another process."""


class StoreError(CertKeeperError):
    """Errors related to the certificate record store."""


class StoreNotFoundError(StoreError):
    """No readable record exists for the requested serial."""


class StoreParseError(StoreError):
    """A persisted record document is malformed."""


class SignerInvocationError(CertKeeperError):
    """The external signing command failed or produced no certificate."""


class ValidationError(CertKeeperError):
    """Required input (identity, public key, record state) is missing or invalid."""


__all__ = [
    "CertKeeperError",
    "ConfigError",
    "SerialAllocationError",
    "StoreError",
    "StoreNotFoundError",
    "StoreParseError",
    "SignerInvocationError",
    "ValidationError",
]
